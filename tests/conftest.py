"""
ForgeLoop - Test Configuration and Fixtures
"""
import json
import os
import tempfile
from pathlib import Path

import pytest

# Set testing environment before any forgeloop import reads settings
_test_root = tempfile.mkdtemp(prefix="forgeloop-tests-")
os.environ['ENVIRONMENT'] = 'test'
os.environ['LOG_FILE'] = ''
os.environ['ANTHROPIC_API_KEY'] = 'test-api-key'
os.environ['DATA_DIR'] = os.path.join(_test_root, 'data')
os.environ['USER_PROJECTS_PATH'] = os.path.join(_test_root, 'projects')
os.environ['TASK_DELAY_SECONDS'] = '0'
os.environ['QUICK_FIX_SETTLE_SECONDS'] = '0'
os.environ['LLM_FIX_FAILURE_BACKOFF'] = '0'
os.environ['DEV_PREP_SETTLE_SECONDS'] = '0'


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A minimal Next.js-shaped project: manifest, installed deps, one page"""
    project = tmp_path / "demo-app"
    (project / "src" / "app").mkdir(parents=True)
    (project / "src" / "components").mkdir(parents=True)
    (project / "package.json").write_text(json.dumps({
        "name": "demo-app",
        "scripts": {"dev": "next dev", "build": "next build"},
        "dependencies": {"next": "14.2.0", "react": "18.2.0", "react-dom": "18.2.0"},
    }, indent=2))
    (project / "node_modules").mkdir()
    # node_modules newer than package.json: dependencies are up to date
    os.utime(project / "package.json", (1_000_000, 1_000_000))
    (project / "src" / "app" / "page.tsx").write_text(
        "export default function Home() {\n  return <main>Hello</main>;\n}\n"
    )
    return project

"""
Workspace helpers - filesystem hygiene for generated projects
"""

import shutil
from pathlib import Path
from typing import List, Union

from forgeloop.core.logging_config import logger

# Build artifacts that go stale between repair attempts
BUILD_CACHE_DIRS = [".next", "node_modules/.cache", "dist/.vite"]


def clean_build_caches(project_path: Union[str, Path], resolve_lock_conflict: bool = True) -> List[str]:
    """
    Remove stale build caches (and a conflicting npm lockfile).

    When both yarn.lock and package-lock.json exist, package-lock.json is
    removed so a single package manager owns the dependency tree.

    Returns:
        Relative paths that were removed
    """
    project_path = Path(project_path)
    removed = []

    for cache_dir in BUILD_CACHE_DIRS:
        target = project_path / cache_dir
        if target.exists():
            shutil.rmtree(target, ignore_errors=True)
            removed.append(cache_dir)

    if resolve_lock_conflict:
        npm_lock = project_path / "package-lock.json"
        if npm_lock.exists() and (project_path / "yarn.lock").exists():
            npm_lock.unlink()
            removed.append("package-lock.json")

    if removed:
        logger.info(f"[Workspace] Cleaned {', '.join(removed)} in {project_path.name}")
    return removed


def dependencies_outdated(project_path: Union[str, Path]) -> bool:
    """True when package.json is newer than the installed node_modules tree"""
    project_path = Path(project_path)
    manifest = project_path / "package.json"
    installed = project_path / "node_modules"

    if not manifest.exists():
        return False
    if not installed.exists():
        return True
    return manifest.stat().st_mtime > installed.stat().st_mtime


def is_within(project_path: Union[str, Path], relative_path: str) -> bool:
    """Reject paths that would escape the project directory"""
    root = Path(project_path).resolve()
    target = (root / relative_path).resolve()
    return target == root or root in target.parents

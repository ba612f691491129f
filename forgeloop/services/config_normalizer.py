"""
Config Normalizer - deterministic fixes for framework config files

Handles:
- next.config.ts -> next.config.js conversion (type-only syntax stripped)
- default next.config.js when none exists
- tsconfig.json compiler options and path alias
- Tailwind major-version detection and a matching postcss.config.js
- tailwind.config.js content globs
- layout fonts that need network access at build time

Every method is idempotent: running it against already-normalized files
changes nothing and returns None (or an empty list).
"""

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from forgeloop.core.logging_config import logger
from forgeloop.services.fixes import Fix, FixType

DEFAULT_NEXT_CONFIG = """/** @type {import('next').NextConfig} */
const nextConfig = {
  reactStrictMode: true,
};

module.exports = nextConfig;
"""

REQUIRED_COMPILER_OPTIONS: Dict[str, Any] = {
    "target": "es5",
    "lib": ["dom", "dom.iterable", "esnext"],
    "allowJs": True,
    "skipLibCheck": True,
    "strict": True,
    "noEmit": True,
    "esModuleInterop": True,
    "module": "esnext",
    "moduleResolution": "node",
    "resolveJsonModule": True,
    "isolatedModules": True,
    "jsx": "preserve",
    "incremental": True,
    "plugins": [{"name": "next"}],
    "paths": {"@/*": ["./src/*"]},
}
TSCONFIG_INCLUDE = ["next-env.d.ts", "**/*.ts", "**/*.tsx", ".next/types/**/*.ts"]
TSCONFIG_EXCLUDE = ["node_modules"]

POSTCSS_CONFIG_VARIANTS = ["postcss.config.js", "postcss.config.mjs", "postcss.config.cjs", "postcss.config.ts"]

POSTCSS_V4 = """module.exports = {
  plugins: {
    '@tailwindcss/postcss': {},
  },
};
"""

POSTCSS_V3 = """module.exports = {
  plugins: {
    tailwindcss: {},
    autoprefixer: {},
  },
};
"""

TAILWIND_CONTENT_GLOBS = [
    "./src/pages/**/*.{js,ts,jsx,tsx,mdx}",
    "./src/components/**/*.{js,ts,jsx,tsx,mdx}",
    "./src/app/**/*.{js,ts,jsx,tsx,mdx}",
]

DEFAULT_TAILWIND_CONFIG = """/** @type {import('tailwindcss').Config} */
module.exports = {
  content: [
%s
  ],
  theme: {
    extend: {},
  },
  plugins: [],
}
""" % "\n".join(f"    '{glob}'," for glob in TAILWIND_CONTENT_GLOBS)

DEFAULT_TAILWIND_MAJOR = 3

# next/font/google fetches at build time; generated layouts do not need it
GOOGLE_FONT_IMPORT = re.compile(r'import\s*\{\s*(?:Geist|Geist_Mono|Inter)[^}]*\}\s*from\s*["\']next/font/google["\'];?[ \t]*\n?')
GOOGLE_FONT_DECLARATION = re.compile(r'const\s+(?:geist\w*|inter)\s*=\s*(?:Geist|Geist_Mono|Inter)\([^;]*\);?[ \t]*\n?', re.DOTALL)
GOOGLE_FONT_VARIABLE = re.compile(r'\$\{(?:geistSans|geistMono|inter)\.(?:variable|className)\}\s*')
GOOGLE_FONT_ATTRIBUTE = re.compile(r'\s+className=\{(?:geistSans|geistMono|inter)\.(?:variable|className)\}')


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"[ConfigNormalizer] Could not parse {path.name}: {e}")
        return None
    return data if isinstance(data, dict) else None


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    """A nested object from a JSON file, empty when missing or not an object"""
    value = data.get(key)
    return value if isinstance(value, dict) else {}


class ConfigNormalizer:
    """Deterministic config-file fixes for Next.js + Tailwind projects"""

    # ------------------------------------------------------------------
    # next.config
    # ------------------------------------------------------------------

    def convert_next_config(self, project_path: Union[str, Path]) -> Optional[Fix]:
        """Rewrite next.config.ts as CommonJS next.config.js"""
        project_path = Path(project_path)
        ts_config = project_path / "next.config.ts"
        if not ts_config.exists():
            return None

        content = ts_config.read_text(encoding="utf-8")
        content = re.sub(r'import\s+type\s*\{[^}]*\}\s*from\s*["\'][^"\']+["\'];?\s*\n?', '', content)
        content = re.sub(r'import\s+type\s+\w+\s+from\s*["\'][^"\']+["\'];?\s*\n?', '', content)
        content = re.sub(r'(const|let|var)\s+(\w+)\s*:\s*[\w.<>\[\]| ]+\s*=', r'\1 \2 =', content)
        content = re.sub(r'\s+as\s+NextConfig\b', '', content)
        content = re.sub(r'export\s+default\s+', 'module.exports = ', content)

        if "module.exports" not in content:
            content = DEFAULT_NEXT_CONFIG

        js_config = project_path / "next.config.js"
        js_config.write_text(content.lstrip(), encoding="utf-8")
        ts_config.unlink()

        logger.info(f"[ConfigNormalizer] Converted next.config.ts to next.config.js in {project_path.name}")
        return Fix(
            type=FixType.CONFIG_EXTENSION,
            file="next.config.js",
            description="Converted next.config.ts to next.config.js",
            applied=True
        )

    def ensure_next_config(self, project_path: Union[str, Path]) -> Optional[Fix]:
        """Create a default next.config.js if no config exists"""
        project_path = Path(project_path)
        candidates = ["next.config.js", "next.config.mjs", "next.config.ts", "next.config.cjs"]
        if any((project_path / name).exists() for name in candidates):
            return None
        if not (project_path / "package.json").exists():
            return None

        (project_path / "next.config.js").write_text(DEFAULT_NEXT_CONFIG, encoding="utf-8")
        return Fix(
            type=FixType.CONFIG_EXTENSION,
            file="next.config.js",
            description="Created default next.config.js",
            applied=True
        )

    # ------------------------------------------------------------------
    # tsconfig
    # ------------------------------------------------------------------

    def normalize_tsconfig(self, project_path: Union[str, Path]) -> Optional[Fix]:
        """Merge required compiler options into tsconfig.json (or create it)"""
        project_path = Path(project_path)
        tsconfig_path = project_path / "tsconfig.json"

        if tsconfig_path.exists():
            tsconfig = _read_json(tsconfig_path)
            if tsconfig is None:
                # JSON with comments or garbage: leave it for the LLM fixer
                return None
        else:
            if not (project_path / "package.json").exists():
                return None
            tsconfig = {}

        compiler_options = {**_section(tsconfig, "compilerOptions"), **REQUIRED_COMPILER_OPTIONS}
        normalized = {
            **tsconfig,
            "compilerOptions": compiler_options,
            "include": TSCONFIG_INCLUDE,
            "exclude": TSCONFIG_EXCLUDE,
        }
        if normalized == tsconfig:
            return None

        tsconfig_path.write_text(json.dumps(normalized, indent=2) + "\n", encoding="utf-8")
        return Fix(
            type=FixType.TSCONFIG,
            file="tsconfig.json",
            description="Normalized TypeScript compiler options",
            applied=True
        )

    # ------------------------------------------------------------------
    # Tailwind / PostCSS
    # ------------------------------------------------------------------

    def detect_tailwind_major(self, project_path: Union[str, Path]) -> int:
        """Installed Tailwind major version, else the declared range, else 3"""
        project_path = Path(project_path)

        installed = project_path / "node_modules" / "tailwindcss" / "package.json"
        if installed.exists():
            data = _read_json(installed)
            if data and isinstance(data.get("version"), str):
                match = re.match(r'(\d+)\.', data["version"])
                if match:
                    return int(match.group(1))

        manifest = project_path / "package.json"
        if manifest.exists():
            data = _read_json(manifest) or {}
            declared = {**_section(data, "dependencies"), **_section(data, "devDependencies")}
            version_range = declared.get("tailwindcss")
            if isinstance(version_range, str):
                match = re.search(r'(\d+)\.', version_range)
                if match:
                    return int(match.group(1))

        return DEFAULT_TAILWIND_MAJOR

    def missing_packages(self, project_path: Union[str, Path], packages: List[str]) -> List[str]:
        """Packages not declared in package.json"""
        data = _read_json(Path(project_path) / "package.json") or {}
        declared = {**_section(data, "dependencies"), **_section(data, "devDependencies")}
        return [p for p in packages if p not in declared]

    def uses_tailwind(self, project_path: Union[str, Path]) -> bool:
        project_path = Path(project_path)
        if (project_path / "node_modules" / "tailwindcss").exists():
            return True
        if not (project_path / "package.json").exists():
            return False
        return not self.missing_packages(project_path, ["tailwindcss"])

    def configure_postcss(self, project_path: Union[str, Path]) -> Tuple[Optional[Fix], List[str]]:
        """
        Write postcss.config.js for the detected Tailwind major version.

        Returns:
            (Fix or None when already correct, companion packages still to install)
        """
        project_path = Path(project_path)
        major = self.detect_tailwind_major(project_path)
        if major >= 4:
            desired, required = POSTCSS_V4, ["@tailwindcss/postcss"]
        else:
            desired, required = POSTCSS_V3, ["autoprefixer"]

        target = project_path / "postcss.config.js"
        others = [project_path / name for name in POSTCSS_CONFIG_VARIANTS if name != "postcss.config.js"]
        stale = [p for p in others if p.exists()]
        current = target.read_text(encoding="utf-8") if target.exists() else None

        to_install = self.missing_packages(project_path, required)

        if current == desired and not stale:
            return None, to_install

        for path in stale:
            path.unlink()
        target.write_text(desired, encoding="utf-8")

        logger.info(f"[ConfigNormalizer] Wrote postcss.config.js for Tailwind v{major} in {project_path.name}")
        return Fix(
            type=FixType.POSTCSS_PIPELINE,
            file="postcss.config.js",
            description=f"Regenerated PostCSS config for Tailwind v{major}",
            applied=True
        ), to_install

    def ensure_tailwind_content(self, project_path: Union[str, Path]) -> Optional[Fix]:
        """Make tailwind.config.js scan src/pages, src/components and src/app"""
        project_path = Path(project_path)
        if self.detect_tailwind_major(project_path) >= 4:
            # v4 discovers sources itself
            return None

        config_path = None
        for name in ("tailwind.config.js", "tailwind.config.ts", "tailwind.config.mjs"):
            if (project_path / name).exists():
                config_path = project_path / name
                break

        if config_path is None:
            if not self.uses_tailwind(project_path):
                return None
            config_path = project_path / "tailwind.config.js"
            config_path.write_text(DEFAULT_TAILWIND_CONFIG, encoding="utf-8")
            return Fix(
                type=FixType.STYLE_CONFIG,
                file=config_path.name,
                description="Created tailwind.config.js",
                applied=True
            )

        content = config_path.read_text(encoding="utf-8")
        if TAILWIND_CONTENT_GLOBS[-1] in content:
            return None

        globs = ",\n".join(f"    '{glob}'" for glob in TAILWIND_CONTENT_GLOBS)
        updated, count = re.subn(r'content:\s*\[[^\]]*\]', f"content: [\n{globs},\n  ]", content, flags=re.DOTALL)
        if count == 0:
            return None

        config_path.write_text(updated, encoding="utf-8")
        return Fix(
            type=FixType.STYLE_CONFIG,
            file=config_path.name,
            description="Updated Tailwind content paths",
            applied=True
        )

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def strip_google_fonts(self, project_path: Union[str, Path]) -> Optional[Fix]:
        """Remove next/font/google usage from the root layout"""
        project_path = Path(project_path)
        layout = project_path / "src" / "app" / "layout.tsx"
        if not layout.exists():
            return None

        content = layout.read_text(encoding="utf-8")
        if "next/font/google" not in content:
            return None

        updated = GOOGLE_FONT_IMPORT.sub("", content)
        updated = GOOGLE_FONT_DECLARATION.sub("", updated)
        updated = GOOGLE_FONT_ATTRIBUTE.sub("", updated)
        updated = GOOGLE_FONT_VARIABLE.sub("", updated)
        updated = re.sub(r'className=\{`\s*`\}', '', updated)
        updated = re.sub(
            r'className=\{`([^`$]*)`\}',
            lambda m: f'className="{m.group(1).strip()}"' if m.group(1).strip() else '',
            updated
        )
        updated = re.sub(r'\s+className=""', '', updated)

        if updated == content:
            return None

        layout.write_text(updated, encoding="utf-8")
        return Fix(
            type=FixType.LAYOUT,
            file="src/app/layout.tsx",
            description="Removed next/font/google usage from layout",
            applied=True
        )

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------

    def normalize_all(self, project_path: Union[str, Path]) -> Tuple[List[Fix], List[str]]:
        """
        Run every normalization once.

        Returns:
            (applied fixes, companion packages that still need installing)
        """
        fixes: List[Fix] = []
        for step in (
            self.convert_next_config,
            self.ensure_next_config,
            self.normalize_tsconfig,
            self.strip_google_fonts,
            self.ensure_tailwind_content,
        ):
            try:
                fix = step(project_path)
            except (OSError, ValueError, TypeError) as e:
                logger.warning(f"[ConfigNormalizer] {step.__name__} failed: {e}")
                continue
            if fix:
                fixes.append(fix)

        to_install: List[str] = []
        try:
            if self.uses_tailwind(project_path):
                postcss_fix, to_install = self.configure_postcss(project_path)
                if postcss_fix:
                    fixes.append(postcss_fix)
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"[ConfigNormalizer] configure_postcss failed: {e}")

        return fixes, to_install


config_normalizer = ConfigNormalizer()

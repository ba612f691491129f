"""
Quick-Fix Engine - deterministic repairs for recognized build errors

Rule table (error signature -> fix function):

    client_directive   prepend 'use client' to files using hooks/events/browser APIs
    missing_package    install unresolved packages with the detected package manager
    config_extension   next.config.ts -> next.config.js
    postcss_pipeline   regenerate postcss.config.js for the installed Tailwind major

Every rule is idempotent. A rule that finds nothing to change raises
QuickFixInapplicableError, which the engine treats as "no fix".
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Union

from forgeloop.core.exceptions import QuickFixInapplicableError
from forgeloop.core.logging_config import logger
from forgeloop.modules.automation.toolchain import NodeToolchain, Toolchain
from forgeloop.modules.automation.workspace import is_within
from forgeloop.services.config_normalizer import ConfigNormalizer, config_normalizer
from forgeloop.services.error_classifier import ClassifiedError, ErrorClassifier, ErrorType
from forgeloop.services.fixes import Fix, FixType

USE_CLIENT_DIRECTIVE = "'use client';\n\n"

CLIENT_HOOKS_PATTERN = re.compile(
    r'\b(useState|useEffect|useContext|useReducer|useCallback|useMemo|useRef|'
    r'useImperativeHandle|useLayoutEffect|useDebugValue)\b'
)
CLIENT_EVENTS_PATTERN = re.compile(
    r'\b(onClick|onChange|onSubmit|onFocus|onBlur|onKeyDown|onKeyUp|onMouseOver|onMouseOut)\b'
)
BROWSER_API_PATTERN = re.compile(r'\b(window|document|localStorage|sessionStorage|navigator)\b')
USE_CLIENT_PATTERN = re.compile(r'^\s*["\']use client["\'];?\s*$')


def needs_use_client(content: str) -> bool:
    """Hooks, event handlers or browser globals make a component client-only"""
    return bool(
        CLIENT_HOOKS_PATTERN.search(content)
        or CLIENT_EVENTS_PATTERN.search(content)
        or BROWSER_API_PATTERN.search(content)
    )


def has_use_client(content: str) -> bool:
    """'use client' (either quote style, optional semicolon) within the first 10 lines"""
    return any(USE_CLIENT_PATTERN.match(line) for line in content.splitlines()[:10])


def add_use_client(content: str) -> str:
    """Prepend the directive; no-op when it is already there"""
    if has_use_client(content):
        return content
    return USE_CLIENT_DIRECTIVE + content


FixHandler = Callable[[Path, ClassifiedError], Awaitable[List[Fix]]]


@dataclass
class QuickFixRule:
    """One row of the rule table"""
    name: str
    error_type: ErrorType
    fix_type: FixType
    handler: FixHandler


class QuickFixEngine:
    """Applies deterministic fixes for classified build errors"""

    def __init__(
        self,
        toolchain: Optional[Toolchain] = None,
        normalizer: Optional[ConfigNormalizer] = None
    ):
        self.toolchain = toolchain or NodeToolchain()
        self.normalizer = normalizer or config_normalizer
        self.rules: List[QuickFixRule] = [
            QuickFixRule("client_directive", ErrorType.CLIENT_DIRECTIVE, FixType.CLIENT_DIRECTIVE, self._fix_client_directive),
            QuickFixRule("missing_package", ErrorType.MISSING_PACKAGE, FixType.MISSING_PACKAGE, self._fix_missing_package),
            QuickFixRule("config_extension", ErrorType.CONFIG_FORMAT, FixType.CONFIG_EXTENSION, self._fix_config_extension),
            QuickFixRule("postcss_pipeline", ErrorType.STYLE_PIPELINE, FixType.POSTCSS_PIPELINE, self._fix_postcss_pipeline),
        ]

    def rule_for(self, error_type: ErrorType) -> Optional[QuickFixRule]:
        for rule in self.rules:
            if rule.error_type == error_type:
                return rule
        return None

    async def apply(self, project_path: Union[str, Path], output: str) -> List[Fix]:
        """
        Run every rule whose signature appears in the output.

        Failures inside one rule never abort the others.

        Returns:
            Applied fixes (empty when nothing could be fixed without the LLM)
        """
        project_path = Path(project_path)
        applied: List[Fix] = []

        for classified in ErrorClassifier.classify(output):
            rule = self.rule_for(classified.error_type)
            if rule is None:
                continue

            try:
                fixes = await rule.handler(project_path, classified)
            except QuickFixInapplicableError as e:
                logger.debug(f"[QuickFixEngine] {e.message}")
                continue
            except Exception as e:
                logger.warning(f"[QuickFixEngine] Rule '{rule.name}' failed: {e}")
                continue

            for fix in fixes:
                logger.info(f"[QuickFixEngine] {fix.description}" + (f" ({fix.file})" if fix.file else ""))
            applied.extend(fixes)

        return applied

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    async def _fix_client_directive(self, project_path: Path, classified: ClassifiedError) -> List[Fix]:
        fixes = []
        for relative in classified.file_paths:
            if not is_within(project_path, relative):
                continue
            file_path = project_path / relative
            if not file_path.is_file():
                continue

            content = file_path.read_text(encoding="utf-8")
            if has_use_client(content) or not needs_use_client(content):
                continue

            file_path.write_text(add_use_client(content), encoding="utf-8")
            fixes.append(Fix(
                type=FixType.CLIENT_DIRECTIVE,
                file=relative,
                description=f"Added 'use client' directive to {relative}",
                applied=True
            ))

        if not fixes:
            raise QuickFixInapplicableError("client_directive", "no file needed the directive")
        return fixes

    async def _fix_missing_package(self, project_path: Path, classified: ClassifiedError) -> List[Fix]:
        to_install = [
            name for name in classified.packages
            if not (project_path / "node_modules" / name / "package.json").exists()
        ]
        if not to_install:
            raise QuickFixInapplicableError("missing_package", "packages already installed")

        result = await self.toolchain.install(project_path, packages=to_install)
        if not result.success:
            raise QuickFixInapplicableError("missing_package", f"install of {', '.join(to_install)} failed")

        return [
            Fix(
                type=FixType.MISSING_PACKAGE,
                file="package.json",
                description=f"Installed missing package {name}",
                applied=True
            )
            for name in to_install
        ]

    async def _fix_config_extension(self, project_path: Path, classified: ClassifiedError) -> List[Fix]:
        fix = self.normalizer.convert_next_config(project_path)
        if fix is None:
            raise QuickFixInapplicableError("config_extension", "no next.config.ts present")
        return [fix]

    async def _fix_postcss_pipeline(self, project_path: Path, classified: ClassifiedError) -> List[Fix]:
        fixes = []
        postcss_fix, to_install = self.normalizer.configure_postcss(project_path)
        if postcss_fix:
            fixes.append(postcss_fix)

        if to_install:
            result = await self.toolchain.install(project_path, packages=to_install, dev=True)
            if result.success:
                fixes.extend(
                    Fix(
                        type=FixType.POSTCSS_PIPELINE,
                        file="package.json",
                        description=f"Installed {name} for the PostCSS pipeline",
                        applied=True
                    )
                    for name in to_install
                )
            else:
                logger.warning(f"[QuickFixEngine] Could not install {', '.join(to_install)}")

        if not fixes:
            raise QuickFixInapplicableError("postcss_pipeline", "PostCSS config already matches")
        return fixes

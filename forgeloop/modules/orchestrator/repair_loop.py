"""
Repair Loop - bounded validate / fix / retry state machine

┌───────────────────────────────────────────────────────────────┐
│  (entry: clean caches, normalize configs, install deps)       │
│                          │                                    │
│                          ▼                                    │
│   ┌──────────────► VALIDATING ──────────► SUCCESS             │
│   │                 │       │                                 │
│   │        fixes ◄──┘       └──► attempts used ──► EXHAUSTED  │
│   │          │                                    (dev prep)  │
│   ├── QUICK_FIXING                                            │
│   │          │ nothing applied                                │
│   └── LLM_FIXING ◄┘                                           │
└───────────────────────────────────────────────────────────────┘

Every pass through VALIDATING consumes one attempt, whichever fixer ran
before it, so LLM invocations can never exceed max_attempts. Errors inside
a single fix step are logged and treated as "no fix"; only the final
result is reported to the caller, never an exception.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

from forgeloop.core.config import settings
from forgeloop.core.exceptions import BuildFailureError, LLMFixParseError, RepairExhaustedError
from forgeloop.core.logging_config import logger, set_project_name
from forgeloop.modules.automation.build_validator import (
    BuildResult,
    BuildValidator,
    CompileError,
    locate_error,
    summarize_errors,
)
from forgeloop.modules.automation.toolchain import NodeToolchain, Toolchain
from forgeloop.modules.automation.workspace import clean_build_caches, dependencies_outdated
from forgeloop.services.config_normalizer import ConfigNormalizer, config_normalizer
from forgeloop.services.fixes import Fix, FixType
from forgeloop.services.quick_fixes import QuickFixEngine

EXHAUSTED_MESSAGE = "Build validation failed but development environment prepared"


class RepairState(str, Enum):
    """Repair loop states"""
    VALIDATING = "validating"
    QUICK_FIXING = "quick_fixing"
    LLM_FIXING = "llm_fixing"
    SUCCESS = "success"
    EXHAUSTED = "exhausted"


REPAIR_TRANSITIONS: Dict[RepairState, Set[RepairState]] = {
    RepairState.VALIDATING: {RepairState.SUCCESS, RepairState.QUICK_FIXING, RepairState.EXHAUSTED},
    RepairState.QUICK_FIXING: {RepairState.VALIDATING, RepairState.LLM_FIXING},
    RepairState.LLM_FIXING: {RepairState.VALIDATING},
    RepairState.SUCCESS: set(),
    RepairState.EXHAUSTED: set(),
}


@dataclass
class StateTransition:
    """Record of a state transition"""
    from_state: str
    to_state: str
    attempt: int
    timestamp: datetime = field(default_factory=datetime.utcnow)
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_state,
            "to": self.to_state,
            "attempt": self.attempt,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
        }


@dataclass
class RepairLoopConfig:
    """Tunables for one repair run"""
    max_attempts: int = field(default_factory=lambda: settings.REPAIR_MAX_ATTEMPTS)
    max_errors_in_summary: int = field(default_factory=lambda: settings.MAX_ERRORS_IN_SUMMARY)
    quick_fix_settle_seconds: float = field(default_factory=lambda: settings.QUICK_FIX_SETTLE_SECONDS)
    llm_failure_backoff: float = field(default_factory=lambda: settings.LLM_FIX_FAILURE_BACKOFF)
    runtime_probe: bool = True
    prepare_on_exhaustion: bool = True


@dataclass
class RepairResult:
    """What the caller gets back, success or not"""
    success: bool
    attempts: int
    state: RepairState
    fixes: List[Fix] = field(default_factory=list)
    errors: List[CompileError] = field(default_factory=list)
    message: str = ""
    llm_invocations: int = 0
    history: List[StateTransition] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    def fixes_of_type(self, fix_type: FixType) -> List[Fix]:
        return [f for f in self.fixes if f.type == fix_type]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "attempts": self.attempts,
            "state": self.state.value,
            "fixes": [f.to_dict() for f in self.fixes],
            "errors": [e.to_dict() for e in self.errors],
            "message": self.message,
            "llm_invocations": self.llm_invocations,
            "history": [t.to_dict() for t in self.history],
            "details": self.details,
        }


@dataclass
class _Validation:
    success: bool
    output: str
    errors: List[CompileError]
    stage: str


class RepairLoop:
    """
    Turns a failing build into a passing one, or gives up after a fixed
    number of attempts and leaves the project runnable in dev mode.
    """

    def __init__(
        self,
        validator: Optional[BuildValidator] = None,
        quick_fix_engine: Optional[QuickFixEngine] = None,
        llm_fixer: Any = None,
        normalizer: Optional[ConfigNormalizer] = None,
        toolchain: Optional[Toolchain] = None,
        config: Optional[RepairLoopConfig] = None
    ):
        self.toolchain = toolchain or NodeToolchain()
        self.validator = validator or BuildValidator(toolchain=self.toolchain)
        self.normalizer = normalizer or config_normalizer
        self.quick_fix_engine = quick_fix_engine or QuickFixEngine(self.toolchain, self.normalizer)
        self._llm_fixer = llm_fixer
        self.config = config or RepairLoopConfig()

    @property
    def llm_fixer(self):
        if self._llm_fixer is None:
            from forgeloop.services.llm_fixer import LLMFixer
            self._llm_fixer = LLMFixer()
        return self._llm_fixer

    # ------------------------------------------------------------------
    # State tracking
    # ------------------------------------------------------------------

    def _transition(
        self,
        project_name: str,
        history: List[StateTransition],
        current: RepairState,
        target: RepairState,
        attempt: int,
        reason: Optional[str] = None
    ) -> RepairState:
        if target not in REPAIR_TRANSITIONS[current]:
            raise ValueError(f"Invalid repair transition: {current.value} -> {target.value}")
        history.append(StateTransition(current.value, target.value, attempt, reason=reason))
        logger.log_repair_event(project_name, target.value, attempt, reason=reason)
        return target

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _prepare(self, project_path: Path) -> List[Fix]:
        """Unconditional one-time cleanup before the first validation"""
        fixes: List[Fix] = []
        try:
            await self._prepare_steps(project_path, fixes)
        except Exception as e:
            logger.log_error_with_context(e, context="repair preparation", project_path=str(project_path))
        return fixes

    async def _prepare_steps(self, project_path: Path, fixes: List[Fix]) -> None:
        removed = clean_build_caches(project_path, resolve_lock_conflict=True)
        if removed:
            fixes.append(Fix(
                type=FixType.CACHE_CLEANUP,
                file=None,
                description=f"Removed stale build artifacts: {', '.join(removed)}"
            ))

        normalized, to_install = self.normalizer.normalize_all(project_path)
        fixes.extend(normalized)

        if dependencies_outdated(project_path):
            result = await self.toolchain.install(project_path)
            if not result.success:
                logger.warning(f"[RepairLoop] Dependency install failed for {project_path.name}")

        if to_install:
            result = await self.toolchain.install(project_path, packages=to_install, dev=True)
            if result.success:
                fixes.extend(
                    Fix(type=FixType.POSTCSS_PIPELINE, file="package.json", description=f"Installed {name}")
                    for name in to_install
                )
            else:
                logger.warning(f"[RepairLoop] Could not install {', '.join(to_install)}")

    async def _validate(self, project_path: Path) -> _Validation:
        build: BuildResult = await self.validator.run(project_path)
        if not build.success:
            return _Validation(False, build.raw_output, list(build.errors), "build")

        if not self.config.runtime_probe:
            return _Validation(True, build.raw_output, [], "build")

        probe = await self.validator.probe_runtime(project_path)
        if probe.success:
            return _Validation(True, build.raw_output, [], "runtime")

        errors = []
        for line in probe.errors:
            file, line_no = locate_error(line)
            errors.append(CompileError(file=file, line=line_no, message=line))
        output = "\n".join([probe.output] + probe.errors)
        return _Validation(False, output, errors, "runtime")

    async def _quick_fix(self, project_path: Path, output: str) -> List[Fix]:
        try:
            return await self.quick_fix_engine.apply(project_path, output)
        except Exception as e:
            logger.log_error_with_context(e, context="quick fix engine", project_path=str(project_path))
            return []

    async def _llm_fix(
        self,
        project_path: Path,
        validation: _Validation,
        requirement: str
    ) -> List[Fix]:
        summary = summarize_errors(validation.errors, validation.output, self.config.max_errors_in_summary)
        try:
            result = await self.llm_fixer.fix(
                project_path,
                summary,
                requirement=requirement,
                raw_output=validation.output,
                errors=validation.errors
            )
        except LLMFixParseError as e:
            logger.warning(f"[RepairLoop] {e.message}")
            return []
        except Exception as e:
            logger.log_error_with_context(e, context="LLM fixer", project_path=str(project_path))
            return []
        return list(result.fixes)

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------

    async def run(self, project_path: Union[str, Path], requirement: str = "") -> RepairResult:
        """
        Validate and repair a generated project.

        Args:
            project_path: Project root
            requirement: Requirement text given to the LLM fixer as context

        Returns:
            RepairResult; success=False with a message when attempts ran out
        """
        project_path = Path(project_path)
        project_name = project_path.name
        set_project_name(project_name)

        history: List[StateTransition] = []
        fixes = await self._prepare(project_path)
        state = RepairState.VALIDATING
        attempts = 0
        llm_invocations = 0
        validation: Optional[_Validation] = None

        logger.log_repair_event(project_name, state.value, 0, prepared_fixes=len(fixes))

        while attempts < self.config.max_attempts:
            attempts += 1
            validation = await self._validate(project_path)

            if validation.success:
                state = self._transition(project_name, history, state, RepairState.SUCCESS, attempts, validation.stage)
                return RepairResult(
                    success=True,
                    attempts=attempts,
                    state=state,
                    fixes=fixes,
                    message=f"Build succeeded after {attempts} attempt(s)",
                    llm_invocations=llm_invocations,
                    history=history
                )

            if attempts >= self.config.max_attempts:
                break

            state = self._transition(
                project_name, history, state, RepairState.QUICK_FIXING, attempts,
                f"{validation.stage} failed with {len(validation.errors)} error(s)"
            )
            quick_fixes = await self._quick_fix(project_path, validation.output)
            if quick_fixes:
                fixes.extend(quick_fixes)
                await asyncio.sleep(self.config.quick_fix_settle_seconds)
                state = self._transition(
                    project_name, history, state, RepairState.VALIDATING, attempts,
                    f"{len(quick_fixes)} quick fix(es) applied"
                )
                continue

            state = self._transition(project_name, history, state, RepairState.LLM_FIXING, attempts, "no quick fix")
            llm_invocations += 1
            llm_fixes = await self._llm_fix(project_path, validation, requirement)
            if llm_fixes:
                fixes.extend(llm_fixes)
            else:
                await asyncio.sleep(self.config.llm_failure_backoff)
            state = self._transition(
                project_name, history, state, RepairState.VALIDATING, attempts,
                f"{len(llm_fixes)} file(s) patched"
            )

        state = self._transition(project_name, history, state, RepairState.EXHAUSTED, attempts)
        exhausted = RepairExhaustedError(attempts)
        logger.warning(f"[RepairLoop] {exhausted.message} for {project_name}")

        prepared = False
        if self.config.prepare_on_exhaustion:
            clean_build_caches(project_path, resolve_lock_conflict=False)
            prepared = await self.validator.prepare_dev_environment(project_path)

        details = exhausted.to_dict()
        details["dev_environment_prepared"] = prepared
        if validation:
            details["last_failure"] = BuildFailureError(f"{validation.stage} failed", validation.output).to_dict()
        return RepairResult(
            success=False,
            attempts=attempts,
            state=state,
            fixes=fixes,
            errors=validation.errors if validation else [],
            message=EXHAUSTED_MESSAGE if prepared else exhausted.message,
            llm_invocations=llm_invocations,
            history=history,
            details=details
        )

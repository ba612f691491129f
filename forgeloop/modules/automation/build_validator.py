"""
Build Validator
Runs a project's build, classifies the outcome and extracts compile errors.

Some toolchains print a failure and still exit 0, so the raw output is
scanned for known failure substrings as well as the exit code.

A second, shorter check (`probe_runtime`) starts the dev server and watches
its output for errors that only appear at runtime (styling pipeline,
unresolved modules).
"""

import asyncio
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from forgeloop.core.config import settings
from forgeloop.core.exceptions import NoPortAvailableError, ProcessSpawnError
from forgeloop.core.logging_config import logger
from forgeloop.modules.automation.toolchain import NodeToolchain, Toolchain, terminate_process
from forgeloop.modules.runtime.port_allocator import find_available_port

# Substrings that mean the build failed even when the exit code says otherwise
BUILD_FAILURE_MARKERS = ["Failed to compile", "Module parse failed", "Type error:", "Error:"]

# Lines that open a new error record
ERROR_START_MARKERS = ["Failed to compile", "Module parse failed", "Type error:", "Error:", "⨯"]
FILE_MARKER = "./src/"
RECORD_END_MARKER = "`----"
HEADER_ONLY_RECORDS = {"Failed to compile", "Failed to compile."}

# path:line:col as printed by bundlers and tsc --pretty
FILE_LOCATION_PATTERN = re.compile(r'[./]*(src/[^:\s\'"]+\.(?:tsx?|jsx?|mjs|cjs))(?::(\d+)(?::(\d+))?)?')
# path(line,col) as printed by tsc
PAREN_LOCATION_PATTERN = re.compile(r'([^\s(\'"]+\.tsx?)\((\d+),(\d+)\)')

# Runtime-only error signatures watched during the dev-server probe
RUNTIME_ERROR_PATTERNS = [
    re.compile(r'Cannot apply unknown utility class'),
    re.compile(r'PostCSS plugin'),
    re.compile(r'Tailwind CSS'),
    re.compile(r'Error:'),
    re.compile(r'Module not found'),
    re.compile(r'Failed to compile'),
]
DEV_READY_MARKERS = ["Ready in", "started server"]
DEV_PREP_READY_MARKERS = ["Ready in", "compiled successfully", "✓ Compiled"]
ERROR_SETTLE_SECONDS = 2.0


@dataclass(frozen=True)
class CompileError:
    """One error extracted from build output"""
    file: Optional[str]
    line: Optional[int]
    message: str

    def to_dict(self) -> Dict:
        return {"file": self.file, "line": self.line, "message": self.message}

    def __str__(self) -> str:
        if self.file:
            location = f"{self.file}:{self.line}" if self.line else self.file
            return f"{location}: {self.message}"
        return self.message


@dataclass(frozen=True)
class BuildResult:
    """Outcome of one Build Validator invocation"""
    success: bool
    exit_code: int
    raw_output: str
    errors: List[CompileError] = field(default_factory=list)
    duration: float = 0.0
    stage: str = "build"

    def to_dict(self) -> Dict:
        return {
            "success": self.success,
            "exit_code": self.exit_code,
            "errors": [e.to_dict() for e in self.errors],
            "duration": round(self.duration, 2),
            "stage": self.stage,
        }


@dataclass
class RuntimeProbeResult:
    """Outcome of briefly running the dev server"""
    success: bool
    output: str
    errors: List[str] = field(default_factory=list)
    timed_out: bool = False

    def to_dict(self) -> Dict:
        return {"success": self.success, "errors": self.errors, "timed_out": self.timed_out}


def locate_error(text: str) -> Tuple[Optional[str], Optional[int]]:
    """Find the first file/line reference in an error record"""
    match = FILE_LOCATION_PATTERN.search(text)
    if match:
        line = int(match.group(2)) if match.group(2) else None
        return match.group(1), line

    match = PAREN_LOCATION_PATTERN.search(text)
    if match:
        path = match.group(1)
        if path.startswith("./"):
            path = path[2:]
        return path, int(match.group(2))

    return None, None


def _record_to_error(lines: List[str]) -> Optional[CompileError]:
    text = "\n".join(lines).strip()
    if not text or text in HEADER_ONLY_RECORDS:
        return None

    file_path, line_number = locate_error(text)

    # Prefer the lines that describe the problem over bare location lines
    message_lines = [l.strip() for l in lines if l.strip() and not FILE_LOCATION_PATTERN.fullmatch(l.strip())]
    message = " ".join(message_lines) if message_lines else text
    return CompileError(file=file_path, line=line_number, message=message[:500])


def extract_errors(output: str, max_errors: Optional[int] = None) -> List[CompileError]:
    """
    Scan build output line by line for error records.

    A record opens on an error-start marker or a file marker and closes on a
    blank line, a code-frame terminator, or the next file marker.

    Args:
        output: Combined build output
        max_errors: Cap on the number of records returned

    Returns:
        Ordered list of CompileError, at most max_errors long
    """
    max_errors = max_errors or settings.MAX_ERRORS_IN_SUMMARY
    errors: List[CompileError] = []
    current: Optional[List[str]] = None

    def flush():
        nonlocal current
        if current:
            error = _record_to_error(current)
            if error and error not in errors:
                errors.append(error)
        current = None

    for raw_line in output.splitlines():
        if len(errors) >= max_errors:
            break

        line = raw_line.rstrip()
        stripped = line.strip()
        is_file_marker = FILE_MARKER in stripped
        is_start = any(marker in stripped for marker in ERROR_START_MARKERS)

        if current is not None:
            if not stripped or stripped.startswith(RECORD_END_MARKER):
                flush()
            elif is_file_marker and any(FILE_MARKER in l for l in current):
                flush()
                current = [line]
            else:
                current.append(line)
        elif is_start or is_file_marker:
            current = [line]

    if len(errors) < max_errors:
        flush()

    return errors[:max_errors]


def summarize_errors(errors: List[CompileError], raw_output: str = "", max_errors: Optional[int] = None) -> str:
    """Render a capped error list for the LLM fixer prompt"""
    max_errors = max_errors or settings.MAX_ERRORS_IN_SUMMARY
    if errors:
        return "\n".join(f"{i}. {error}" for i, error in enumerate(errors[:max_errors], 1))

    # Nothing structured: fall back to the last lines of raw output
    tail = [l for l in raw_output.splitlines() if l.strip()][-max_errors * 3:]
    return "\n".join(tail)


def detect_build_failure(exit_code: int, output: str) -> bool:
    return exit_code != 0 or any(marker in output for marker in BUILD_FAILURE_MARKERS)


class BuildValidator:
    """Static build check plus a short runtime probe"""

    def __init__(
        self,
        toolchain: Optional[Toolchain] = None,
        max_errors: Optional[int] = None,
        probe_timeout: Optional[float] = None,
        dev_prep_timeout: Optional[float] = None,
        dev_prep_settle: Optional[float] = None
    ):
        self.toolchain = toolchain or NodeToolchain()
        self.max_errors = max_errors or settings.MAX_ERRORS_IN_SUMMARY
        self.probe_timeout = probe_timeout or settings.RUNTIME_PROBE_TIMEOUT
        self.dev_prep_timeout = dev_prep_timeout or settings.DEV_PREP_TIMEOUT
        self.dev_prep_settle = dev_prep_settle if dev_prep_settle is not None else settings.DEV_PREP_SETTLE_SECONDS

    async def run(self, project_path: Union[str, Path]) -> BuildResult:
        """
        Build the project and classify the result.

        Returns:
            BuildResult (never raises for a failing build)
        """
        project_path = Path(project_path)
        start_time = time.time()

        try:
            command_result = await self.toolchain.build(project_path)
        except ProcessSpawnError as e:
            logger.error(f"[BuildValidator] Could not run build for {project_path.name}: {e.message}")
            return BuildResult(
                success=False,
                exit_code=-1,
                raw_output=e.message,
                errors=[CompileError(file=None, line=None, message=e.message)],
                duration=time.time() - start_time
            )

        output = command_result.output
        failed = command_result.timed_out or detect_build_failure(command_result.exit_code, output)
        errors = extract_errors(output, self.max_errors) if failed else []

        if failed:
            logger.warning(
                f"[BuildValidator] Build failed for {project_path.name} "
                f"(exit {command_result.exit_code}, {len(errors)} error(s))"
            )
        else:
            logger.info(f"[BuildValidator] Build succeeded for {project_path.name} ({command_result.duration:.1f}s)")

        return BuildResult(
            success=not failed,
            exit_code=command_result.exit_code,
            raw_output=output,
            errors=errors,
            duration=time.time() - start_time
        )

    async def _start_dev(self, project_path: Path, env: Dict[str, str]) -> Optional[asyncio.subprocess.Process]:
        try:
            port = await find_available_port()
            return await self.toolchain.run_dev(project_path, port=port, env=env)
        except (NoPortAvailableError, ProcessSpawnError) as e:
            logger.error(f"[BuildValidator] Could not start dev server for {project_path.name}: {e.message}")
            return None

    async def _read_line(self, process: asyncio.subprocess.Process, deadline: float) -> Optional[str]:
        """Next output line, or None on EOF / deadline"""
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return None
        try:
            raw = await asyncio.wait_for(process.stdout.readline(), timeout=remaining)
        except asyncio.TimeoutError:
            return None
        if not raw:
            return None
        return raw.decode("utf-8", errors="replace").rstrip()

    async def probe_runtime(self, project_path: Union[str, Path]) -> RuntimeProbeResult:
        """
        Run the dev server for a short window and watch for runtime errors.

        Success means a ready line appeared before any error signature and
        before the timeout.
        """
        project_path = Path(project_path)
        process = await self._start_dev(project_path, env={"NODE_ENV": "development"})
        if process is None:
            return RuntimeProbeResult(success=False, output="", errors=["dev server could not be started"])

        deadline = time.monotonic() + self.probe_timeout
        lines: List[str] = []
        errors: List[str] = []
        ready = False
        timed_out = False

        try:
            while True:
                line = await self._read_line(process, deadline)
                if line is None:
                    timed_out = not errors and time.monotonic() >= deadline
                    break
                lines.append(line)

                if any(pattern.search(line) for pattern in RUNTIME_ERROR_PATTERNS):
                    errors.append(line.strip())
                elif "ENOENT" in line and ".next" in line:
                    errors.append(f"{line.strip()} (build manifest missing, .next cache is stale)")

                if errors:
                    # Give the rest of the error block a moment to arrive, then stop
                    deadline = min(deadline, time.monotonic() + ERROR_SETTLE_SECONDS)
                    continue
                if any(marker in line for marker in DEV_READY_MARKERS):
                    ready = True
                    break
        finally:
            await terminate_process(process, grace_seconds=5)

        success = ready and not errors
        if success:
            logger.info(f"[BuildValidator] Runtime probe passed for {project_path.name}")
        else:
            logger.warning(
                f"[BuildValidator] Runtime probe failed for {project_path.name} "
                f"({len(errors)} error line(s), timed_out={timed_out})"
            )
        return RuntimeProbeResult(success=success, output="\n".join(lines), errors=errors, timed_out=timed_out)

    async def prepare_dev_environment(self, project_path: Union[str, Path]) -> bool:
        """
        Run the dev server just long enough to materialize its files.

        Returns:
            True if a ready/compiled line appeared before the timeout
        """
        project_path = Path(project_path)
        logger.info(f"[BuildValidator] Preparing dev environment for {project_path.name}")

        process = await self._start_dev(
            project_path,
            env={"NODE_ENV": "development", "NEXT_TELEMETRY_DISABLED": "1"}
        )
        if process is None:
            return False

        deadline = time.monotonic() + self.dev_prep_timeout
        ready = False
        try:
            while True:
                line = await self._read_line(process, deadline)
                if line is None:
                    break
                if any(marker in line for marker in DEV_PREP_READY_MARKERS):
                    ready = True
                    await asyncio.sleep(self.dev_prep_settle)
                    break
        finally:
            await terminate_process(process, grace_seconds=5)

        if ready:
            logger.info(f"[BuildValidator] Dev environment prepared for {project_path.name}")
        else:
            logger.warning(f"[BuildValidator] Dev environment not ready after {self.dev_prep_timeout}s")
        return ready

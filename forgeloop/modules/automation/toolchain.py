"""
Toolchain - install / build / run-dev for generated projects

The Repair Loop and the Process Supervisor never shell out directly; they go
through a Toolchain so both can be driven by a fake in tests.
"""

import asyncio
import os
import signal
import sys
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

from forgeloop.core.config import settings
from forgeloop.core.exceptions import ProcessSpawnError
from forgeloop.core.logging_config import logger


class PackageManagerType(str, Enum):
    """Supported JavaScript package managers"""
    NPM = "npm"
    YARN = "yarn"
    PNPM = "pnpm"


@dataclass
class CommandResult:
    """Outcome of one finished toolchain command"""
    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def output(self) -> str:
        """Combined stdout and stderr"""
        if self.stdout and self.stderr:
            return f"{self.stdout}\n{self.stderr}"
        return self.stdout or self.stderr

    def to_dict(self) -> Dict:
        return {
            "command": self.command,
            "exit_code": self.exit_code,
            "success": self.success,
            "duration": round(self.duration, 2),
            "timed_out": self.timed_out,
        }


def is_installable_package(name: str) -> bool:
    """Relative and alias imports are never package names"""
    return bool(name) and not name.startswith(".") and not name.startswith("@/") and not name.startswith("/")


class Toolchain(ABC):
    """External build tooling for one project type"""

    @abstractmethod
    async def install(
        self,
        project_path: Union[str, Path],
        packages: Optional[List[str]] = None,
        dev: bool = False
    ) -> CommandResult:
        """Install the manifest's dependencies, or the given packages"""

    @abstractmethod
    async def build(self, project_path: Union[str, Path]) -> CommandResult:
        """Run the production build non-interactively"""

    @abstractmethod
    async def run_dev(
        self,
        project_path: Union[str, Path],
        port: Optional[int] = None,
        env: Optional[Dict[str, str]] = None
    ) -> asyncio.subprocess.Process:
        """Spawn the long-running dev server (stdout+stderr piped together)"""


class NodeToolchain(Toolchain):
    """npm / yarn / pnpm toolchain for JavaScript projects"""

    def __init__(self, build_timeout: Optional[int] = None, install_timeout: Optional[int] = None):
        self.build_timeout = build_timeout or settings.BUILD_TIMEOUT
        self.install_timeout = install_timeout or settings.INSTALL_TIMEOUT

    def detect_package_manager(self, project_path: Union[str, Path]) -> PackageManagerType:
        """Lock files decide the package manager"""
        project_path = Path(project_path)
        if (project_path / "pnpm-lock.yaml").exists():
            return PackageManagerType.PNPM
        if (project_path / "yarn.lock").exists():
            return PackageManagerType.YARN
        return PackageManagerType.NPM

    def _install_command(
        self,
        manager: PackageManagerType,
        packages: Optional[List[str]],
        dev: bool
    ) -> str:
        if not packages:
            return f"{manager.value} install"

        package_list = " ".join(packages)
        if manager == PackageManagerType.NPM:
            return f"npm install {'--save-dev ' if dev else ''}{package_list}"
        # yarn and pnpm share the same add syntax
        return f"{manager.value} add {'-D ' if dev else ''}{package_list}"

    async def _run(
        self,
        command: str,
        cwd: Union[str, Path],
        timeout: float,
        extra_env: Optional[Dict[str, str]] = None
    ) -> CommandResult:
        env = {**os.environ, **(extra_env or {})}
        start_time = time.time()

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                cwd=str(cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env
            )
        except OSError as e:
            raise ProcessSpawnError(command, str(e))

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[NodeToolchain] '{command}' timed out after {timeout}s")
            process.kill()
            stdout, stderr = await process.communicate()
            return CommandResult(
                command=command,
                exit_code=-1,
                stdout=stdout.decode("utf-8", errors="replace") if stdout else "",
                stderr=stderr.decode("utf-8", errors="replace") if stderr else "",
                duration=time.time() - start_time,
                timed_out=True
            )

        return CommandResult(
            command=command,
            exit_code=process.returncode,
            stdout=stdout.decode("utf-8", errors="replace") if stdout else "",
            stderr=stderr.decode("utf-8", errors="replace") if stderr else "",
            duration=time.time() - start_time
        )

    async def install(
        self,
        project_path: Union[str, Path],
        packages: Optional[List[str]] = None,
        dev: bool = False
    ) -> CommandResult:
        if packages:
            packages = [p for p in packages if is_installable_package(p)]
            if not packages:
                return CommandResult(command="install", exit_code=0)

        manager = self.detect_package_manager(project_path)
        command = self._install_command(manager, packages, dev)
        logger.info(f"[NodeToolchain] Installing in {project_path}: {command}")

        result = await self._run(command, project_path, self.install_timeout)
        if not result.success:
            logger.error(f"[NodeToolchain] Install failed ({result.exit_code}): {result.stderr[:500]}")
        return result

    async def build(self, project_path: Union[str, Path]) -> CommandResult:
        manager = self.detect_package_manager(project_path)
        command = f"{manager.value} run build"
        logger.info(f"[NodeToolchain] Building {project_path}: {command}")

        result = await self._run(
            command,
            project_path,
            self.build_timeout,
            extra_env={"CI": "true", "FORCE_COLOR": "0"}
        )
        logger.log_performance(f"build {Path(project_path).name}", result.duration * 1000, threshold_ms=120000)
        return result

    async def run_dev(
        self,
        project_path: Union[str, Path],
        port: Optional[int] = None,
        env: Optional[Dict[str, str]] = None
    ) -> asyncio.subprocess.Process:
        manager = self.detect_package_manager(project_path)
        command = f"{manager.value} run dev"
        process_env = {**os.environ, **(env or {})}
        if port is not None:
            process_env["PORT"] = str(port)

        logger.info(f"[NodeToolchain] Starting dev server in {project_path}: {command} (PORT={port})")

        try:
            return await asyncio.create_subprocess_shell(
                command,
                cwd=str(project_path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=process_env,
                # Own process group so the whole npm -> node tree can be signalled
                start_new_session=sys.platform != "win32"
            )
        except OSError as e:
            raise ProcessSpawnError(command, str(e))


def signal_process(process: asyncio.subprocess.Process, sig: int) -> None:
    """Signal a spawned command, including its children when it owns a process group"""
    try:
        if sys.platform != "win32" and os.getpgid(process.pid) != os.getpgid(0):
            os.killpg(os.getpgid(process.pid), sig)
        else:
            process.send_signal(sig)
    except (ProcessLookupError, PermissionError):
        # Already gone, or the group was reaped underneath us
        pass


async def terminate_process(process: asyncio.subprocess.Process, grace_seconds: float) -> Optional[int]:
    """
    SIGTERM, then SIGKILL if the process outlives the grace period.

    Returns:
        The exit code
    """
    if process.returncode is not None:
        return process.returncode

    signal_process(process, signal.SIGTERM)
    try:
        return await asyncio.wait_for(process.wait(), timeout=grace_seconds)
    except asyncio.TimeoutError:
        logger.warning(f"[Toolchain] pid {process.pid} still alive after {grace_seconds}s, sending SIGKILL")
        signal_process(process, getattr(signal, "SIGKILL", signal.SIGTERM))
        return await process.wait()

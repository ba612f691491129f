"""
Process Supervisor
Owns the dev-server child process of every running project.

Lifecycle per project:

    start() ──► STARTING ──► OUTPUT* ──► READY ──► OUTPUT* ──► EXITED
                   │
                   └──► ERROR (spawn failed / exited early / never ready)

Events are delivered through a bounded per-project queue and consumed with
`async for event in supervisor.events(name)`. The durable store is updated
once a server answers HTTP, and the entry is removed again on stop or exit.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Union

import httpx

from forgeloop.core.config import settings
from forgeloop.core.exceptions import ProcessSpawnError, ServerStartTimeoutError
from forgeloop.core.logging_config import logger
from forgeloop.modules.automation.toolchain import NodeToolchain, Toolchain, terminate_process
from forgeloop.modules.automation.workspace import clean_build_caches, dependencies_outdated
from forgeloop.modules.runtime.port_allocator import find_available_port, kill_process_on_port
from forgeloop.modules.runtime.state_store import ProjectRecord, ProjectStateStore

READY_MARKERS = ("Ready in", "started server")
COMPILING_MARKERS = ("Compiling", "Building")
WARNING_MARKERS = ("Warning",)

EVENT_QUEUE_SIZE = 1000


class ProcessEventKind(str, Enum):
    """Closed set of lifecycle events"""
    STARTING = "starting"
    OUTPUT = "output"
    READY = "ready"
    EXITED = "exited"
    ERROR = "error"


@dataclass
class ProcessEvent:
    """One lifecycle event of a supervised dev server"""
    kind: ProcessEventKind
    project_name: str
    line: Optional[str] = None
    code: Optional[int] = None
    reason: Optional[str] = None
    url: Optional[str] = None
    port: Optional[int] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict:
        return {
            "kind": self.kind.value,
            "project_name": self.project_name,
            "line": self.line,
            "code": self.code,
            "reason": self.reason,
            "url": self.url,
            "port": self.port,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ProjectRuntimeInfo:
    """Live dev server; the process handle never leaves this object"""
    name: str
    port: int
    url: str
    project_path: str
    start_time: datetime
    process: Optional[asyncio.subprocess.Process] = None
    monitor_task: Optional[asyncio.Task] = None
    ready_line_seen: bool = False

    def to_record(self) -> ProjectRecord:
        return ProjectRecord(
            name=self.name,
            port=self.port,
            url=self.url,
            project_path=self.project_path,
            start_time=self.start_time.isoformat(),
        )


def classify_output_line(line: str) -> str:
    """Tag a dev-server line as ready / compiling / warning / info"""
    if any(marker in line for marker in READY_MARKERS):
        return "ready"
    if any(marker in line for marker in COMPILING_MARKERS):
        return "compiling"
    if any(marker in line for marker in WARNING_MARKERS):
        return "warning"
    return "info"


class ProcessSupervisor:
    """Starts, monitors and stops one dev server per project name"""

    def __init__(
        self,
        state_store: ProjectStateStore,
        toolchain: Optional[Toolchain] = None,
        ready_poll_interval: Optional[float] = None,
        ready_max_attempts: Optional[int] = None,
        stop_grace_seconds: Optional[float] = None,
        base_port: Optional[int] = None
    ):
        self.state_store = state_store
        self.toolchain = toolchain or NodeToolchain()
        self.ready_poll_interval = ready_poll_interval if ready_poll_interval is not None else settings.SERVER_READY_POLL_INTERVAL
        self.ready_max_attempts = ready_max_attempts or settings.SERVER_READY_MAX_ATTEMPTS
        self.stop_grace_seconds = stop_grace_seconds if stop_grace_seconds is not None else settings.SERVER_STOP_GRACE_SECONDS
        self.base_port = base_port or settings.BASE_PORT
        self._live: Dict[str, ProjectRuntimeInfo] = {}
        self._queues: Dict[str, asyncio.Queue] = {}

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _open_stream(self, name: str) -> None:
        self._queues[name] = asyncio.Queue(maxsize=EVENT_QUEUE_SIZE)

    def _emit(self, event: ProcessEvent) -> None:
        queue = self._queues.get(event.project_name)
        if event.kind != ProcessEventKind.OUTPUT:
            logger.log_process_event(
                event.project_name,
                event.kind.value,
                port=event.port,
                reason=event.reason,
                exit_code=event.code
            )
        if queue is None:
            return
        if queue.full():
            # Drop the oldest event so a slow consumer never blocks the monitor
            queue.get_nowait()
        queue.put_nowait(event)

    def _close_stream(self, name: str) -> None:
        queue = self._queues.get(name)
        if queue is None:
            return
        if queue.full():
            queue.get_nowait()
        queue.put_nowait(None)

    async def events(self, name: str) -> AsyncIterator[ProcessEvent]:
        """Iterate lifecycle events of a project until its stream closes"""
        queue = self._queues.get(name)
        if queue is None:
            return
        while True:
            event = await queue.get()
            if event is None:
                return
            yield event

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_running(self, name: str) -> bool:
        return name in self._live or name in self.state_store

    def get_project_info(self, name: str) -> Optional[ProjectRuntimeInfo]:
        return self._live.get(name)

    def get_running_projects(self) -> List[Dict]:
        """Durable projection of running projects plus any still starting"""
        projects = {record.name: record.to_summary() for record in self.state_store.all()}
        for name, info in self._live.items():
            projects.setdefault(name, info.to_record().to_summary())
        return list(projects.values())

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def start(self, project_path: Union[str, Path], name: Optional[str] = None) -> Dict:
        """
        Start the dev server for a project.

        Args:
            project_path: Project directory
            name: Project name (defaults to the directory name)

        Returns:
            Dict with success, port, url (and error when the server died)

        Raises:
            NoPortAvailableError: no free port in the allocation window
            ProcessSpawnError: the dev command could not be spawned
            ServerStartTimeoutError: the server never answered HTTP
        """
        project_path = Path(project_path)
        name = name or project_path.name

        existing = self._live.get(name)
        if existing:
            return {
                "success": True,
                "already_running": True,
                "port": existing.port,
                "url": existing.url,
                "message": "Server already running"
            }

        record = self.state_store.get(name)
        if record:
            return {
                "success": True,
                "already_running": True,
                "port": record.port,
                "url": record.url,
                "message": "Server already running (restored)"
            }

        self._open_stream(name)
        self._emit(ProcessEvent(ProcessEventKind.STARTING, name))

        clean_build_caches(project_path, resolve_lock_conflict=False)

        if dependencies_outdated(project_path):
            logger.info(f"[ProcessSupervisor:{name}] Manifest newer than node_modules, installing")
            install_result = await self.toolchain.install(project_path)
            if not install_result.success:
                logger.warning(f"[ProcessSupervisor:{name}] Dependency install failed, starting anyway")

        port = await find_available_port(self.base_port)
        url = f"http://localhost:{port}"

        try:
            process = await self.toolchain.run_dev(project_path, port=port)
        except ProcessSpawnError as e:
            self._emit(ProcessEvent(ProcessEventKind.ERROR, name, reason=e.message))
            self._close_stream(name)
            raise

        info = ProjectRuntimeInfo(
            name=name,
            port=port,
            url=url,
            project_path=str(project_path),
            start_time=datetime.utcnow(),
            process=process,
        )
        self._live[name] = info
        info.monitor_task = asyncio.create_task(self._monitor(info))

        if not await self._wait_until_ready(info):
            if process.returncode is not None:
                if self._live.get(name) is info:
                    del self._live[name]
                reason = f"Dev server exited with code {process.returncode} before becoming ready"
                self._emit(ProcessEvent(ProcessEventKind.ERROR, name, reason=reason, code=process.returncode))
                return {"success": False, "port": port, "url": url, "error": reason}

            self._emit(ProcessEvent(
                ProcessEventKind.ERROR, name,
                reason=f"No HTTP response after {self.ready_max_attempts} attempts"
            ))
            await self.stop(name)
            raise ServerStartTimeoutError(name, self.ready_max_attempts)

        await self.state_store.add(info.to_record())
        self._emit(ProcessEvent(ProcessEventKind.READY, name, url=url, port=port))

        return {
            "success": True,
            "already_running": False,
            "port": port,
            "url": url,
            "message": f"Server started on {url}"
        }

    async def _wait_until_ready(self, info: ProjectRuntimeInfo) -> bool:
        """Poll the server over HTTP until a non-5xx answer or the process exits"""
        async with httpx.AsyncClient(timeout=2.0) as client:
            for attempt in range(1, self.ready_max_attempts + 1):
                if info.process.returncode is not None:
                    return False
                try:
                    response = await client.get(info.url)
                    if response.status_code < 500:
                        logger.debug(
                            f"[ProcessSupervisor:{info.name}] Ready after {attempt} attempt(s) "
                            f"(HTTP {response.status_code})"
                        )
                        return True
                except httpx.HTTPError:
                    pass
                await asyncio.sleep(self.ready_poll_interval)
        return False

    async def _monitor(self, info: ProjectRuntimeInfo) -> None:
        """Turn process output into events; clean up when the process exits"""
        process = info.process
        try:
            while True:
                raw = await process.stdout.readline()
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").rstrip()
                if not line:
                    continue

                kind = classify_output_line(line)
                if kind == "ready":
                    info.ready_line_seen = True
                    logger.info(f"[{info.name}] {line}")
                elif kind == "warning":
                    logger.warning(f"[{info.name}] {line}")
                else:
                    logger.debug(f"[{info.name}] {line}")

                self._emit(ProcessEvent(ProcessEventKind.OUTPUT, info.name, line=line))

            code = await process.wait()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[ProcessSupervisor:{info.name}] Monitor failed: {e}")
            self._emit(ProcessEvent(ProcessEventKind.ERROR, info.name, reason=str(e)))
            code = process.returncode

        self._emit(ProcessEvent(ProcessEventKind.EXITED, info.name, code=code, port=info.port))
        self._close_stream(info.name)

        # Only forget the project if nobody replaced it in the meantime
        if self._live.get(info.name) is info:
            del self._live[info.name]
            await self.state_store.remove(info.name)

    # ------------------------------------------------------------------
    # Stop
    # ------------------------------------------------------------------

    async def _terminate(self, info: ProjectRuntimeInfo) -> None:
        """Escalating termination, then wait for the monitor to drain"""
        await terminate_process(info.process, self.stop_grace_seconds)

        if info.monitor_task and not info.monitor_task.done():
            try:
                await asyncio.wait_for(info.monitor_task, timeout=self.stop_grace_seconds)
            except asyncio.TimeoutError:
                info.monitor_task.cancel()

    async def stop(self, name: str) -> Dict:
        """
        Stop a project's dev server.

        The entry leaves the live map before the process is signalled. A
        project known only from the durable store is stopped by killing
        whatever listens on its recorded port.
        """
        info = self._live.pop(name, None)
        record = await self.state_store.remove(name)

        if info is not None:
            logger.info(f"[ProcessSupervisor:{name}] Stopping (port {info.port})")
            await self._terminate(info)
            return {"success": True, "message": "Server stopped", "port": info.port}

        if record is not None:
            logger.info(f"[ProcessSupervisor:{name}] No live handle, killing process on port {record.port}")
            await kill_process_on_port(record.port)
            return {"success": True, "message": "Server stopped (by port)", "port": record.port}

        return {"success": False, "error": "Server not running"}

    async def restart(self, name: str) -> Dict:
        """Stop and start again from the recorded project path"""
        info = self._live.get(name)
        record = self.state_store.get(name)
        project_path = info.project_path if info else (record.project_path if record else None)

        if not project_path:
            return {"success": False, "error": "Server not running"}

        logger.info(f"[ProcessSupervisor:{name}] Restarting")
        await self.stop(name)
        return await self.start(project_path, name)

    async def stop_all(self) -> int:
        """Stop every live or recorded project; returns how many were stopped"""
        names = set(self._live.keys()) | set(self.state_store.names())
        if names:
            logger.info(f"[ProcessSupervisor] Stopping all projects: {', '.join(sorted(names))}")
        stopped = 0
        for name in sorted(names):
            result = await self.stop(name)
            if result.get("success"):
                stopped += 1
        return stopped

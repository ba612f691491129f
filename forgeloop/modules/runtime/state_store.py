"""
Project State Store - durable record of running dev servers

Keeps a JSON projection of every running project so a supervisor restart
does not orphan dev servers:

    {
      "project-1a2b3c4d": {
        "port": 3002,
        "url": "http://localhost:3002",
        "projectPath": "/srv/user-projects/project-1a2b3c4d",
        "startTime": "2024-05-01T10:00:00"
      }
    }

The file is rewritten on every add/remove and on a fixed timer. Entries
whose port is no longer bound are dropped at load time and by the periodic
reconciliation. Process handles are never persisted.
"""

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import aiofiles
import aiofiles.os

from forgeloop.core.config import settings
from forgeloop.core.exceptions import StaleStateDetectedError
from forgeloop.core.logging_config import logger
from forgeloop.modules.runtime.port_allocator import is_port_in_use


@dataclass(frozen=True)
class ProjectRecord:
    """Serializable projection of a running project"""
    name: str
    port: int
    url: str
    project_path: str
    start_time: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "port": self.port,
            "url": self.url,
            "projectPath": self.project_path,
            "startTime": self.start_time,
        }

    def to_summary(self) -> Dict[str, Any]:
        return {"name": self.name, **self.to_dict()}

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "ProjectRecord":
        return cls(
            name=name,
            port=int(data["port"]),
            url=data.get("url") or f"http://localhost:{data['port']}",
            project_path=data.get("projectPath", ""),
            start_time=data.get("startTime") or datetime.utcnow().isoformat(),
        )


class ProjectStateStore:
    """
    Single-writer owner of the running-projects map.

    Usage:
        store = ProjectStateStore()
        await store.initialize()   # load + drop stale entries
        store.start()              # periodic persist / reconcile
        ...
        await store.close()
    """

    def __init__(
        self,
        state_file: Optional[Union[str, Path]] = None,
        persist_interval: Optional[float] = None,
        cleanup_interval: Optional[float] = None
    ):
        self.state_file = Path(state_file) if state_file else settings.STATE_FILE
        self.persist_interval = persist_interval or settings.STATE_PERSIST_INTERVAL
        self.cleanup_interval = cleanup_interval or settings.STATE_CLEANUP_INTERVAL
        self._projects: Dict[str, ProjectRecord] = {}
        self._tasks: List[asyncio.Task] = []
        self._initialized = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> int:
        """
        Load the persisted map, keeping only entries whose port is bound.

        Returns:
            Number of entries restored
        """
        if self._initialized:
            return len(self._projects)

        data = await self._read_file()
        restored = 0

        for name, entry in data.items():
            try:
                record = ProjectRecord.from_dict(name, entry)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"[ProjectStateStore] Skipping malformed entry '{name}': {e}")
                continue

            if await is_port_in_use(record.port):
                self._projects[name] = record
                restored += 1
                logger.info(f"[ProjectStateStore] Restored {name} on port {record.port}")
            else:
                logger.info(f"[ProjectStateStore] {StaleStateDetectedError(name, record.port).message}, dropping")

        self._initialized = True

        # Rewrite so dropped entries disappear from disk too
        if restored != len(data):
            await self.persist()

        return restored

    def start(self) -> None:
        """Start the periodic persist and reconcile tasks"""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._periodic(self.persist_interval, self.persist, "persist")),
            asyncio.create_task(self._periodic(self.cleanup_interval, self.reconcile_stale, "reconcile")),
        ]
        logger.debug(
            f"[ProjectStateStore] Timers started (persist={self.persist_interval}s, "
            f"cleanup={self.cleanup_interval}s)"
        )

    async def close(self, persist: bool = True) -> None:
        """Stop timers and, unless told otherwise, flush state to disk"""
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        if persist:
            await self.persist()

    async def _periodic(self, interval: float, action, label: str) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await action()
            except Exception as e:
                logger.error(f"[ProjectStateStore] Periodic {label} failed: {e}")

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add(self, record: ProjectRecord) -> None:
        """Record a running project and persist immediately"""
        self._projects[record.name] = record
        logger.debug(f"[ProjectStateStore] Added {record.name} (port {record.port})")
        await self.persist()

    async def remove(self, name: str) -> Optional[ProjectRecord]:
        """Forget a project and persist immediately"""
        record = self._projects.pop(name, None)
        if record is not None:
            logger.debug(f"[ProjectStateStore] Removed {name}")
            await self.persist()
        return record

    async def reconcile_stale(self) -> List[str]:
        """
        Re-probe every tracked port and evict entries nobody is listening on.

        Returns:
            Names of evicted projects
        """
        evicted = []
        for name, record in list(self._projects.items()):
            if await is_port_in_use(record.port):
                continue
            # The entry may have been replaced while we were probing
            if self._projects.get(name) is record:
                del self._projects[name]
                evicted.append(name)
                logger.info(f"[ProjectStateStore] {StaleStateDetectedError(name, record.port).message}, evicting")

        if evicted:
            await self.persist()
        return evicted

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, name: str) -> Optional[ProjectRecord]:
        return self._projects.get(name)

    def all(self) -> List[ProjectRecord]:
        return list(self._projects.values())

    def names(self) -> List[str]:
        return list(self._projects.keys())

    def __contains__(self, name: str) -> bool:
        return name in self._projects

    def __len__(self) -> int:
        return len(self._projects)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {name: record.to_dict() for name, record in self._projects.items()}

    async def persist(self) -> None:
        """Write the whole map atomically (temp file + replace)"""
        payload = json.dumps(self.to_dict(), indent=2)
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.state_file.with_name(self.state_file.name + ".tmp")

        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(payload)
        await aiofiles.os.replace(tmp_path, self.state_file)

    async def _read_file(self) -> Dict[str, Any]:
        if not self.state_file.exists():
            return {}
        try:
            async with aiofiles.open(self.state_file, "r", encoding="utf-8") as f:
                content = await f.read()
            data = json.loads(content) if content.strip() else {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"[ProjectStateStore] Could not read {self.state_file}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"[ProjectStateStore] Ignoring non-object state file {self.state_file}")
            return {}
        return data

"""
Project Pipeline - requirement in, running project out

    generate: plan → generate → repair loop → start dev server
    update:   snapshot → plan → generate → change impact →
              (skip validation, rely on hot reload) | (repair loop → restart)
"""

import re
import time
from pathlib import Path
from typing import Any, Dict, Optional

from forgeloop.core.config import settings
from forgeloop.core.exceptions import ForgeLoopError, error_response
from forgeloop.core.logging_config import logger, set_project_name
from forgeloop.modules.agents.generation_executor import SOURCE_EXTENSIONS, GenerationExecutor
from forgeloop.modules.agents.task_planner import TaskPlanner
from forgeloop.modules.orchestrator.repair_loop import RepairLoop
from forgeloop.modules.runtime.process_supervisor import ProcessSupervisor
from forgeloop.services.change_impact import ChangeImpactClassifier, diff_snapshots

COMPONENT_EXTENSIONS = (".tsx", ".jsx")
SNAPSHOT_SKIP_DIRS = {"node_modules", ".next", ".git", "dist"}


def slugify(text: str, max_words: int = 4) -> str:
    words = re.findall(r'[a-z0-9]+', text.lower())[:max_words]
    return "-".join(words) or f"project-{int(time.time())}"


def is_existing_project(project_path: Path) -> bool:
    """An update only makes sense when components were generated before"""
    src = project_path / "src"
    if not src.is_dir():
        return False
    return any(p.suffix in COMPONENT_EXTENSIONS for p in src.rglob("*") if p.is_file())


def snapshot_sources(project_path: Path) -> Dict[str, str]:
    """Relative path -> content for every source file outside build dirs"""
    snapshot = {}
    candidates = list((project_path / "src").rglob("*")) if (project_path / "src").is_dir() else []
    candidates.append(project_path / "package.json")
    for path in candidates:
        if not path.is_file():
            continue
        relative = path.relative_to(project_path)
        if SNAPSHOT_SKIP_DIRS.intersection(relative.parts):
            continue
        if path.suffix not in SOURCE_EXTENSIONS + (".json", ".css"):
            continue
        snapshot[relative.as_posix()] = path.read_text(encoding="utf-8", errors="replace")
    return snapshot


class ProjectPipeline:
    """Wires planner, executor, repair loop and supervisor together"""

    def __init__(
        self,
        supervisor: Optional[ProcessSupervisor] = None,
        planner: Optional[TaskPlanner] = None,
        executor: Optional[GenerationExecutor] = None,
        repair_loop: Optional[RepairLoop] = None,
        projects_dir: Optional[Path] = None
    ):
        self.supervisor = supervisor
        self._planner = planner
        self._executor = executor
        self.repair_loop = repair_loop or RepairLoop()
        self.projects_dir = Path(projects_dir) if projects_dir else settings.USER_PROJECTS_DIR

    @property
    def planner(self) -> TaskPlanner:
        if self._planner is None:
            self._planner = TaskPlanner()
        return self._planner

    @property
    def executor(self) -> GenerationExecutor:
        if self._executor is None:
            self._executor = GenerationExecutor()
        return self._executor

    def project_path(self, name: str) -> Path:
        return self.projects_dir / name

    async def _start(self, name: str, project_path: Path) -> Dict[str, Any]:
        if self.supervisor is None:
            return {"success": False, "error": "No process supervisor configured"}
        try:
            return await self.supervisor.start(project_path, name)
        except ForgeLoopError as e:
            logger.error(f"[ProjectPipeline:{name}] Could not start dev server: {e.message}")
            return error_response(e)

    async def generate(self, requirement: str, name: Optional[str] = None, start: bool = True) -> Dict[str, Any]:
        """
        Build a new project from a requirement.

        Returns:
            Dict with success, generation summary, repair result and server info
        """
        name = name or slugify(requirement)
        project_path = self.project_path(name)
        project_path.mkdir(parents=True, exist_ok=True)
        set_project_name(name)

        logger.info(f"[ProjectPipeline:{name}] Generating into {project_path}")
        tasks = await self.planner.create_task_list(requirement)
        generation = await self.executor.execute(tasks, project_path, requirement)
        generation.pop("generated_files", None)

        repair = await self.repair_loop.run(project_path, requirement)

        server = None
        if start:
            server = await self._start(name, project_path)

        return {
            "success": repair.success,
            "project": name,
            "project_path": str(project_path),
            "tasks": [t.to_dict() for t in tasks],
            "generation": generation,
            "repair": repair.to_dict(),
            "server": server,
            "message": repair.message,
        }

    async def update(self, name: str, requirement: str) -> Dict[str, Any]:
        """
        Apply a follow-up requirement to an existing project.

        Small updates skip validation and rely on the dev server's hot
        reload; everything else goes through the repair loop and restarts
        a running server.
        """
        project_path = self.project_path(name)
        if not project_path.is_dir():
            return {"success": False, "error": f"Project '{name}' not found"}
        set_project_name(name)

        is_update = is_existing_project(project_path)
        before = snapshot_sources(project_path) if is_update else {}
        logger.info(f"[ProjectPipeline:{name}] {'Updating' if is_update else 'Generating'} from requirement")

        tasks = await self.planner.create_task_list(requirement)
        generation = await self.executor.execute(tasks, project_path, requirement)
        generated_files = generation.pop("generated_files", {})

        result: Dict[str, Any] = {
            "project": name,
            "project_path": str(project_path),
            "is_update": is_update,
            "generation": generation,
        }

        if is_update:
            impact = ChangeImpactClassifier.classify(diff_snapshots(before, generated_files))
            result["impact"] = impact.to_dict()
            if impact.should_skip_validation:
                logger.info(f"[ProjectPipeline:{name}] Simple change, relying on hot reload")
                result.update({
                    "success": generation["failed"] == 0,
                    "validation_skipped": True,
                    "message": "Change applied; validation skipped (hot reload)",
                })
                return result

        repair = await self.repair_loop.run(project_path, requirement)
        result.update({
            "success": repair.success,
            "validation_skipped": False,
            "repair": repair.to_dict(),
            "message": repair.message,
        })

        if self.supervisor is not None and self.supervisor.is_running(name):
            try:
                result["server"] = await self.supervisor.restart(name)
            except ForgeLoopError as e:
                logger.error(f"[ProjectPipeline:{name}] Restart failed: {e.message}")
                result["server"] = error_response(e)

        return result

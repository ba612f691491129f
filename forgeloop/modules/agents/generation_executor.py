"""
Generation Executor - realizes planned tasks into files, one task at a time

For each task (priority order):
    1. ask the generation collaborator for the task's files, passing the
       names of everything generated so far
    2. write every returned file, creating parent directories
    3. insert obviously missing imports (hooks, known components)

A failing task is recorded and skipped; repair is the Repair Loop's job.
"""

import asyncio
import os
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

import aiofiles

from forgeloop.core.config import settings
from forgeloop.core.logging_config import logger
from forgeloop.modules.agents.task_planner import Task
from forgeloop.modules.automation.workspace import is_within
from forgeloop.utils.response_parser import ParseError, parse_generated_files

SOURCE_EXTENSIONS = (".tsx", ".ts", ".jsx", ".js")
PROTECTED_FILES = ("globals.css",)

REACT_HOOKS = ["useState", "useEffect", "useContext", "useReducer", "useCallback", "useMemo", "useRef"]

JSX_TAG_PATTERN = re.compile(r'<([A-Z][A-Za-z0-9]*)[\s/>]')
HOOK_CALL_PATTERN = re.compile(r'\b(use[A-Z][A-Za-z0-9]*)\(')
IMPORT_LINE_PATTERN = re.compile(r'^\s*import\s')
IMPORT_STATEMENT_PATTERN = re.compile(r'import\s+([^;]+?)\s+from\s+[\'"][^\'"]+[\'"]')
IDENTIFIER_PATTERN = re.compile(r'[A-Za-z_$][\w$]*')
LOCAL_DECLARATION_PATTERN = r'\b(?:function|const|let|var|class|interface|type)\s+{name}\b'

COMPONENT_SEARCH_PATHS = [
    "src/components/{name}.tsx",
    "src/components/{name}.jsx",
    "src/components/{name}/index.tsx",
    "src/components/{name}/index.jsx",
    "components/{name}.tsx",
    "components/{name}.jsx",
]

GENERATION_SYSTEM_PROMPT = """You are an expert Next.js developer. Generate code for ONE task.

- Next.js App Router, TypeScript, Tailwind CSS utility classes
- Generate ONLY the files listed for the task, each COMPLETE with all imports
- 'use client' must be the FIRST line of any file using hooks, event handlers or browser APIs
- Do NOT modify package.json, postcss config or src/app/globals.css
- Do NOT import fonts from next/font/google
- Do NOT use external animation libraries

Return ONLY a JSON object:
{"files": {"src/components/Header.tsx": "...full content..."}, "description": "what was implemented"}"""


# ============================================
# Progress tracking
# ============================================

@dataclass
class GenerationProgress:
    """Progress of one in-flight generation run"""
    total_tasks: int
    completed_tasks: int = 0
    current_task: Optional[str] = None
    status: str = "in_progress"
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalTasks": self.total_tasks,
            "completedTasks": self.completed_tasks,
            "currentTask": self.current_task,
            "status": self.status,
            "updatedAt": self.updated_at.isoformat(),
        }


class ProgressTracker:
    """Owns the per-project progress map; the executor is its only writer"""

    def __init__(self):
        self._progress: Dict[str, GenerationProgress] = {}

    def begin(self, project_name: str, total_tasks: int) -> GenerationProgress:
        progress = GenerationProgress(total_tasks=total_tasks)
        self._progress[project_name] = progress
        return progress

    def update(self, project_name: str, **changes) -> None:
        progress = self._progress.get(project_name)
        if progress is None:
            return
        for key, value in changes.items():
            setattr(progress, key, value)
        progress.updated_at = datetime.utcnow()

    def get(self, project_name: str) -> Optional[GenerationProgress]:
        return self._progress.get(project_name)

    def clear(self, project_name: str) -> None:
        self._progress.pop(project_name, None)


# ============================================
# Results
# ============================================

class GeneratedFileSet:
    """Files produced so far in one run, in write order"""

    def __init__(self):
        self._files: Dict[str, str] = {}

    def add(self, path: str, content: str) -> None:
        self._files[path] = content

    def get(self, path: str) -> Optional[str]:
        return self._files.get(path)

    @property
    def paths(self) -> List[str]:
        return list(self._files)

    def items(self) -> Iterator[Tuple[str, str]]:
        return iter(self._files.items())

    def as_dict(self) -> Dict[str, str]:
        return dict(self._files)

    def __contains__(self, path: str) -> bool:
        return path in self._files

    def __len__(self) -> int:
        return len(self._files)


@dataclass
class TaskResult:
    task_id: str
    task_name: str
    success: bool
    files: List[str] = field(default_factory=list)
    description: str = ""
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "task_id": self.task_id,
            "task_name": self.task_name,
            "success": self.success,
            "files": self.files,
        }
        if self.description:
            data["description"] = self.description
        if self.error:
            data["error"] = self.error
        return data


# ============================================
# Missing-import insertion
# ============================================

def _imported_names(content: str) -> set:
    names = set()
    for match in IMPORT_STATEMENT_PATTERN.finditer(content):
        clause = match.group(1)
        names.update(IDENTIFIER_PATTERN.findall(clause.replace(" as ", " ")))
    return names


def _relative_import(from_path: str, target_path: str) -> str:
    relative = os.path.relpath(target_path, os.path.dirname(from_path) or ".").replace("\\", "/")
    relative = re.sub(r'\.(tsx?|jsx?)$', '', relative)
    relative = re.sub(r'/index$', '', relative)
    if not relative.startswith("."):
        relative = "./" + relative
    return relative


def find_component_path(
    name: str,
    from_path: str,
    generated: GeneratedFileSet,
    project_path: Optional[Path] = None
) -> Optional[str]:
    """
    Import path for a component, or None when it is unknown or ambiguous.

    Generated files are searched first, then the project on disk.
    """
    candidates = [pattern.format(name=name) for pattern in COMPONENT_SEARCH_PATHS]

    matches = [c for c in candidates if c in generated]
    if not matches and project_path is not None:
        matches = [c for c in candidates if (project_path / c).is_file()]

    if len(matches) != 1:
        if len(matches) > 1:
            logger.debug(f"[GenerationExecutor] Ambiguous location for {name}: {matches}")
        return None
    return _relative_import(from_path, matches[0])


def add_missing_imports(
    content: str,
    file_path: str,
    generated: GeneratedFileSet,
    project_path: Optional[Path] = None
) -> str:
    """Insert import lines for React hooks and known components that lack one"""
    if not file_path.endswith(SOURCE_EXTENSIONS):
        return content

    existing = _imported_names(content)
    new_imports: List[str] = []

    used_hooks = []
    for hook in HOOK_CALL_PATTERN.findall(content):
        if hook in REACT_HOOKS and hook not in existing and hook not in used_hooks:
            used_hooks.append(hook)
    if used_hooks and "'react'" not in content and '"react"' not in content:
        new_imports.append(f"import {{ {', '.join(used_hooks)} }} from 'react';")

    own_name = Path(file_path).stem
    for component in dict.fromkeys(JSX_TAG_PATTERN.findall(content)):
        if component in existing or component == own_name:
            continue
        if re.search(LOCAL_DECLARATION_PATTERN.format(name=component), content):
            continue
        import_path = find_component_path(component, file_path, generated, project_path)
        if import_path:
            new_imports.append(f"import {component} from '{import_path}';")

    if not new_imports:
        return content

    lines = content.split("\n")
    last_import = -1
    for index, line in enumerate(lines):
        if IMPORT_LINE_PATTERN.match(line):
            last_import = index

    if last_import >= 0:
        lines[last_import + 1:last_import + 1] = new_imports
        return "\n".join(lines)

    # Keep a leading 'use client' directive first
    if lines and lines[0].strip().strip(";").strip("'\"") == "use client":
        return "\n".join([lines[0]] + new_imports + lines[1:])
    return "\n".join(new_imports) + "\n\n" + content


# ============================================
# Executor
# ============================================

class GenerationExecutor:
    """Runs tasks sequentially against the generation collaborator"""

    def __init__(
        self,
        client: Any = None,
        task_delay: Optional[float] = None,
        progress_tracker: Optional[ProgressTracker] = None
    ):
        if client is None:
            from forgeloop.utils.claude_client import get_claude_client
            client = get_claude_client()
        self.client = client
        self.task_delay = settings.TASK_DELAY_SECONDS if task_delay is None else task_delay
        self.progress = progress_tracker or ProgressTracker()

    def _task_prompt(self, task: Task, requirement: str, generated: GeneratedFileSet) -> str:
        existing = ", ".join(generated.paths) or "None yet"
        return (
            f"TASK: {task.name}\n"
            f"DESCRIPTION: {task.description}\n"
            f"FILES TO CREATE/UPDATE: {', '.join(task.files)}\n\n"
            f"PROJECT CONTEXT:\n{requirement}\n\n"
            f"EXISTING FILES IN PROJECT:\n{existing}"
        )

    async def _write(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(content)

    async def run_task(
        self,
        task: Task,
        project_path: Path,
        requirement: str,
        generated: GeneratedFileSet
    ) -> TaskResult:
        response = await self.client.generate(
            prompt=self._task_prompt(task, requirement, generated),
            system_prompt=GENERATION_SYSTEM_PROMPT
        )
        parsed = parse_generated_files(response.get("content", ""))
        if isinstance(parsed, ParseError):
            return TaskResult(task.id, task.name, success=False, error=f"Unparseable response: {parsed.reason}")

        written = []
        for relative, content in parsed.files.items():
            if relative.endswith(PROTECTED_FILES) or not is_within(project_path, relative):
                logger.warning(f"[GenerationExecutor] Skipping {relative} from task {task.id}")
                continue
            await self._write(project_path / relative, content)
            generated.add(relative, content)
            written.append(relative)

        for relative in written:
            content = generated.get(relative)
            patched = add_missing_imports(content, relative, generated, project_path)
            if patched != content:
                await self._write(project_path / relative, patched)
                generated.add(relative, patched)
                logger.info(f"[GenerationExecutor] Added missing imports to {relative}")

        if not written:
            return TaskResult(task.id, task.name, success=False, error="No files returned")
        return TaskResult(task.id, task.name, success=True, files=written)

    async def execute(
        self,
        tasks: List[Task],
        project_path: Union[str, Path],
        requirement: str
    ) -> Dict[str, Any]:
        """
        Generate every task, continuing past failures.

        Returns:
            Dict with total, successful, failed, generated_file_count,
            results (per task) and generated_files ({path: content})
        """
        project_path = Path(project_path)
        project_name = project_path.name
        ordered = sorted(tasks, key=lambda t: t.priority)
        generated = GeneratedFileSet()
        results: List[TaskResult] = []

        self.progress.begin(project_name, len(ordered))

        for index, task in enumerate(ordered, 1):
            self.progress.update(project_name, current_task=task.name)
            logger.info(f"[GenerationExecutor] Task {index}/{len(ordered)}: {task.name}")

            try:
                result = await self.run_task(task, project_path, requirement, generated)
            except Exception as e:
                logger.log_error_with_context(e, context=f"generation task {task.id}")
                result = TaskResult(task.id, task.name, success=False, error=str(e))

            results.append(result)
            if result.success:
                self.progress.update(project_name, completed_tasks=sum(1 for r in results if r.success))
            else:
                logger.warning(f"[GenerationExecutor] Task {task.id} failed: {result.error}")

            if index < len(ordered) and self.task_delay:
                await asyncio.sleep(self.task_delay)

        successful = sum(1 for r in results if r.success)
        failed = len(results) - successful
        self.progress.update(
            project_name,
            current_task=None,
            status="completed" if failed == 0 else ("failed" if successful == 0 else "partial")
        )

        logger.info(
            f"[GenerationExecutor] {project_name}: {successful}/{len(results)} task(s), "
            f"{len(generated)} file(s)"
        )
        return {
            "total": len(results),
            "successful": successful,
            "failed": failed,
            "generated_file_count": len(generated),
            "results": [r.to_dict() for r in results],
            "generated_files": generated.as_dict(),
        }

"""
Task Planner - turns a requirement document into an ordered task list
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from forgeloop.core.logging_config import logger
from forgeloop.utils.response_parser import ParseError, coerce_content, extract_json

FALLBACK_ENTRY_PAGE = "src/app/page.tsx"

OFFLINE_PATTERN = re.compile(r'offline|service worker|\bpwa\b', re.IGNORECASE)
ANIMATION_PATTERN = re.compile(r'animation|transition', re.IGNORECASE)


@dataclass(frozen=True)
class Task:
    """One unit of planned generation work"""
    id: str
    name: str
    description: str = ""
    dependencies: List[str] = field(default_factory=list)
    files: List[str] = field(default_factory=list)
    priority: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "dependencies": list(self.dependencies),
            "files": list(self.files),
            "priority": self.priority,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: int) -> Optional["Task"]:
        name = coerce_content(data.get("name")).strip()
        files = [f.strip() for f in data.get("files") or [] if isinstance(f, str) and f.strip()]
        if not name or not files:
            return None

        try:
            priority = int(data.get("priority") or 0)
        except (TypeError, ValueError):
            priority = 0

        return cls(
            id=coerce_content(data.get("id")).strip() or f"task-{index}",
            name=name,
            description=coerce_content(data.get("description")),
            dependencies=[d for d in data.get("dependencies") or [] if isinstance(d, str)],
            files=files,
            priority=priority
        )


def exclusion_reason(task: Task) -> Optional[str]:
    """Why a planned task falls into an excluded category, if it does"""
    name = task.name.lower()
    description = task.description.lower()

    if OFFLINE_PATTERN.search(name) or OFFLINE_PATTERN.search(description):
        return "offline/PWA"
    if ("accessibility" in name and "component" not in name) or \
            ("accessibility" in description and "features" in description):
        return "accessibility-only"
    if ANIMATION_PATTERN.search(name) or ANIMATION_PATTERN.search(description):
        return "animation-only"
    if any(path.endswith("globals.css") for path in task.files):
        return "touches globals.css"
    return None


def fallback_task(requirement: str) -> Task:
    return Task(
        id="task-1",
        name="Implement main page",
        description=f"Implement the requirement in the entry page: {requirement[:500]}",
        files=[FALLBACK_ENTRY_PAGE],
        priority=1
    )


class TaskPlanner:
    """Asks the model for a task list and applies the fixed exclusions"""

    SYSTEM_PROMPT = """You are an expert Next.js developer. Break a requirement document into implementation tasks.

Return ONLY a valid JSON object:
{
  "tasks": [
    {
      "id": "task-1",
      "name": "Create main layout component",
      "description": "Create the main layout with header and navigation",
      "dependencies": [],
      "files": ["src/app/layout.tsx", "src/components/Header.tsx"],
      "priority": 1
    }
  ]
}

Guidelines:
- Start with layout/structure tasks, then core features, then UI components
- Each task should generate 1-3 related files
- The LAST task MUST update src/app/page.tsx to import and use the main components
- EXCLUDE: offline support, service workers, PWA features
- EXCLUDE: separate accessibility tasks (build basic accessibility into components)
- EXCLUDE: separate animation tasks (use Tailwind transition classes inline)
- NEVER modify src/app/globals.css"""

    def __init__(self, client: Any = None):
        if client is None:
            from forgeloop.utils.claude_client import get_claude_client
            client = get_claude_client()
        self.client = client

    def parse_tasks(self, content: str) -> List[Task]:
        parsed = extract_json(content)
        if isinstance(parsed, ParseError):
            logger.warning(f"[TaskPlanner] Could not parse task list: {parsed.reason}")
            return []

        raw_tasks = parsed.data.get("tasks")
        if not isinstance(raw_tasks, list):
            return []

        tasks = []
        for index, entry in enumerate(raw_tasks, 1):
            if not isinstance(entry, dict):
                continue
            task = Task.from_dict(entry, index)
            if task is None:
                continue
            reason = exclusion_reason(task)
            if reason:
                logger.info(f"[TaskPlanner] Skipping {reason} task: {task.name}")
                continue
            tasks.append(task)

        # sorted() is stable, so equal priorities keep the planner's order
        return sorted(tasks, key=lambda t: t.priority)

    async def create_task_list(self, requirement: str) -> List[Task]:
        """
        Plan the generation work for a requirement.

        Returns:
            Tasks in priority order; a single entry-page task when the
            planner output is unusable
        """
        prompt = f"REQUIREMENT DOCUMENT:\n{requirement}\n\nCreate the task list."
        try:
            response = await self.client.generate(prompt=prompt, system_prompt=self.SYSTEM_PROMPT)
            tasks = self.parse_tasks(response.get("content", ""))
        except Exception as e:
            logger.log_error_with_context(e, context="task planning")
            tasks = []

        if not tasks:
            logger.warning("[TaskPlanner] No usable tasks, falling back to a single entry-page task")
            return [fallback_task(requirement)]

        logger.info(f"[TaskPlanner] Planned {len(tasks)} task(s)")
        return tasks

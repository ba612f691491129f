"""
Unit Tests for the Task Planner
"""
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from fakes import MockClaudeClient
from forgeloop.modules.agents.task_planner import (
    FALLBACK_ENTRY_PAGE,
    Task,
    TaskPlanner,
    exclusion_reason,
)


def _plan(*tasks):
    return "```json\n" + json.dumps({"tasks": list(tasks)}) + "\n```"


LAYOUT_TASK = {
    "id": "task-1", "name": "Create layout", "description": "Header and nav",
    "files": ["src/app/layout.tsx", "src/components/Header.tsx"], "priority": 1,
}
LIST_TASK = {
    "id": "task-2", "name": "Todo list", "description": "List with filters",
    "dependencies": ["task-1"], "files": ["src/components/TodoList.tsx"], "priority": 2,
}
PAGE_TASK = {
    "id": "task-3", "name": "Wire up page", "files": ["src/app/page.tsx"], "priority": 2,
}


class TestTaskFromDict:
    """Tests for Task.from_dict"""

    def test_defaults(self):
        task = Task.from_dict({"name": "Page", "files": ["src/app/page.tsx"], "priority": "high"}, 4)

        assert task.id == "task-4"
        assert task.priority == 0
        assert task.dependencies == []

    def test_requires_name_and_files(self):
        assert Task.from_dict({"name": "No files", "files": []}, 1) is None
        assert Task.from_dict({"files": ["src/a.tsx"]}, 1) is None
        assert Task.from_dict({"name": "Bad files", "files": [3, ""]}, 1) is None


class TestExclusions:
    """Tests for the fixed task exclusions"""

    @pytest.mark.parametrize("task,reason", [
        (Task("t", "Add offline support"), "offline/PWA"),
        (Task("t", "Caching", "Register a service worker"), "offline/PWA"),
        (Task("t", "Accessibility audit"), "accessibility-only"),
        (Task("t", "Polish", "Add accessibility features"), "accessibility-only"),
        (Task("t", "Page transitions"), "animation-only"),
        (Task("t", "Theme", files=["src/app/globals.css"]), "touches globals.css"),
    ])
    def test_excluded(self, task, reason):
        assert exclusion_reason(task) == reason

    def test_accessible_component_is_kept(self):
        assert exclusion_reason(Task("t", "Accessibility component library", files=["src/a.tsx"])) is None


class TestParseTasks:
    """Tests for TaskPlanner.parse_tasks"""

    def test_orders_by_priority_keeping_ties(self):
        planner = TaskPlanner(client=MockClaudeClient())
        tasks = planner.parse_tasks(_plan(PAGE_TASK, LIST_TASK, LAYOUT_TASK))

        assert [t.id for t in tasks] == ["task-1", "task-3", "task-2"]
        assert tasks[2].dependencies == ["task-1"]

    def test_drops_excluded_and_invalid_entries(self):
        planner = TaskPlanner(client=MockClaudeClient())
        tasks = planner.parse_tasks(_plan(
            LAYOUT_TASK,
            {"name": "PWA manifest", "files": ["public/manifest.json"]},
            {"name": "Fade animations", "files": ["src/components/Fade.tsx"]},
            "not a task",
            {"name": "No files"},
        ))
        assert [t.id for t in tasks] == ["task-1"]

    def test_unusable_output(self):
        planner = TaskPlanner(client=MockClaudeClient())
        assert planner.parse_tasks("I can't plan this") == []
        assert planner.parse_tasks('{"tasks": "later"}') == []


class TestCreateTaskList:
    """Tests for TaskPlanner.create_task_list"""

    @pytest.mark.asyncio
    async def test_planned_tasks(self):
        client = MockClaudeClient([_plan(LAYOUT_TASK, LIST_TASK)])
        tasks = await TaskPlanner(client=client).create_task_list("A todo app")

        assert [t.name for t in tasks] == ["Create layout", "Todo list"]
        assert "REQUIREMENT DOCUMENT:\nA todo app" in client.prompts[0]
        assert client.system_prompts[0] == TaskPlanner.SYSTEM_PROMPT

    @pytest.mark.asyncio
    async def test_falls_back_to_entry_page(self):
        """Test unusable planner output yields one entry-page task"""
        tasks = await TaskPlanner(client=MockClaudeClient(["no json here"])).create_task_list("A todo app")

        assert len(tasks) == 1
        assert tasks[0].files == [FALLBACK_ENTRY_PAGE]
        assert "A todo app" in tasks[0].description

    @pytest.mark.asyncio
    async def test_client_failure_falls_back(self):
        client = MagicMock()
        client.generate = AsyncMock(side_effect=RuntimeError("API down"))

        tasks = await TaskPlanner(client=client).create_task_list("A todo app")

        assert [t.id for t in tasks] == ["task-1"]

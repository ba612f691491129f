from forgeloop.modules.agents.task_planner import Task, TaskPlanner
from forgeloop.modules.agents.generation_executor import (
    GeneratedFileSet,
    GenerationExecutor,
    GenerationProgress,
    ProgressTracker,
    TaskResult,
)

__all__ = [
    "Task",
    "TaskPlanner",
    "GeneratedFileSet",
    "GenerationExecutor",
    "GenerationProgress",
    "ProgressTracker",
    "TaskResult",
]

from forgeloop.modules.orchestrator.repair_loop import RepairLoop, RepairLoopConfig, RepairResult, RepairState
from forgeloop.modules.orchestrator.project_pipeline import ProjectPipeline

__all__ = [
    "RepairLoop",
    "RepairLoopConfig",
    "RepairResult",
    "RepairState",
    "ProjectPipeline",
]

"""Resume: plan a safe continuation point and relaunch on the same target."""

from runwarden.core.resume.executor import RESUMABLE_STATUSES, ResumeExecutor
from runwarden.core.resume.planner import ResumePlanner, node_sort_key
from runwarden.core.resume.repair import TaskDatabaseRepair

__all__ = [
    "RESUMABLE_STATUSES",
    "ResumeExecutor",
    "ResumePlanner",
    "TaskDatabaseRepair",
    "node_sort_key",
]

"""Resume planning contracts.

These types are used for resume validation and relaunch. They are NOT
persisted to the ledger (attempt history lives in records.AttemptRecord).
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ResumeCheck:
    """Result of checking if a run can be resumed.

    Used by ResumePlanner to communicate whether resume is possible and
    why/why not.
    """

    can_resume: bool
    reason: str | None = None

    def __post_init__(self) -> None:
        if self.can_resume and self.reason is not None:
            raise ValueError("can_resume=True should not have a reason")
        if not self.can_resume and self.reason is None:
            raise ValueError("can_resume=False must have a reason explaining why")


@dataclass(frozen=True)
class ResumePlan:
    """Safe continuation point for a run.

    Derived from the remote task database, never persisted.

    Attributes:
        run_id: Run being resumed
        total_nodes: Task nodes seen in the task database
        finished_nodes: Nodes in the terminal ``finished`` state
        resume_from_node_id: First node, in node order, that is not finished
            (None when every node is finished)
        reset_node_ids: ``in-progress`` nodes that will be forced back to
            ``pending`` before relaunch
        previous_finished_nodes: Ledger high-water mark the plan was checked against
    """

    run_id: str
    total_nodes: int
    finished_nodes: int
    resume_from_node_id: str | None
    reset_node_ids: tuple[str, ...]
    previous_finished_nodes: int = 0

    def __post_init__(self) -> None:
        if self.finished_nodes < self.previous_finished_nodes:
            raise ValueError(
                f"ResumePlan would lose finished work: {self.finished_nodes} < previously observed {self.previous_finished_nodes}"
            )
        if self.finished_nodes > self.total_nodes:
            raise ValueError(f"finished_nodes ({self.finished_nodes}) cannot exceed total_nodes ({self.total_nodes})")


@dataclass(frozen=True)
class RepairReport:
    """Outcome of truncating oversized task database fields."""

    run_id: str
    truncated: int
    checked: int

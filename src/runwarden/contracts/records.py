"""Ledger contracts.

These are strict contracts - all enum fields use proper enum types.
The repository layer handles string->enum conversion for database reads.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from runwarden.contracts.enums import FailureReason, RunStatus


def _validate_enum(value: object, enum_type: type, field_name: str) -> None:
    """Validate that value is an instance of the expected enum type.

    Ledger data must crash on invalid types - no coercion, no defaults.
    """
    if value is not None and not isinstance(value, enum_type):
        raise TypeError(f"{field_name} must be {enum_type.__name__}, got {type(value).__name__}: {value!r}")


@dataclass(frozen=True)
class Target:
    """Where a run executes.

    A run is permanently bound to its target. Resuming must reuse it verbatim.

    Attributes:
        vm: VM name or host the remote channel connects to
        control_dir: Directory holding the PID, heartbeat and exit markers
        task_db_path: SQLite task database owned by the workflow runtime
        workdir: Directory the workflow command runs in
    """

    vm: str
    control_dir: str
    task_db_path: str
    workdir: str

    def __post_init__(self) -> None:
        for name in ("vm", "control_dir", "task_db_path", "workdir"):
            if not getattr(self, name):
                raise ValueError(f"Target.{name} must be non-empty")


@dataclass(frozen=True)
class RunRecord:
    """One dispatched run as the host last believed it to be.

    probe_note is transient: it is set on records returned by reconciliation
    when the probe produced no evidence, is never persisted, and does not
    take part in equality.
    """

    run_id: str
    target: Target
    status: RunStatus
    attempt: int
    started_at: datetime
    updated_at: datetime
    failure_reason: FailureReason | None = None
    exit_code: int | None = None
    finished_nodes_seen: int = 0
    probe_note: str | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        _validate_enum(self.status, RunStatus, "status")
        _validate_enum(self.failure_reason, FailureReason, "failure_reason")
        if self.attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {self.attempt}")
        if self.failure_reason is not None and self.status != RunStatus.FAILED:
            raise ValueError(f"failure_reason is only valid for failed runs, got status {self.status.value!r}")

    @property
    def failure_label(self) -> str | None:
        """Human-readable failure reason, e.g. ``exit_nonzero(3)``."""
        if self.failure_reason is None:
            return None
        if self.failure_reason == FailureReason.EXIT_NONZERO:
            return f"exit_nonzero({self.exit_code})"
        return self.failure_reason.value


@dataclass(frozen=True)
class AttemptRecord:
    """One (re)launch of a run, recorded by the resume executor."""

    run_id: str
    attempt: int
    launched_at: datetime
    pid: int | None
    resume_from_node_id: str | None
    reset_node_ids: tuple[str, ...]
    finished_nodes: int
    total_nodes: int


@dataclass(frozen=True)
class RunFilter:
    """Selection for ledger listings and bulk reconciliation.

    Attributes:
        statuses: Only runs in one of these statuses (None = any)
        vm: Only runs on this VM
        limit: Maximum rows, newest first
    """

    statuses: frozenset[RunStatus] | None = None
    vm: str | None = None
    limit: int | None = 50

    @classmethod
    def active(cls, limit: int | None = 50) -> RunFilter:
        """Runs that reconciliation can still move."""
        return cls(statuses=frozenset({RunStatus.PENDING, RunStatus.RUNNING, RunStatus.BLOCKED}), limit=limit)

    @classmethod
    def of(cls, statuses: Iterable[RunStatus], *, vm: str | None = None, limit: int | None = 50) -> RunFilter:
        return cls(statuses=frozenset(statuses) or None, vm=vm, limit=limit)

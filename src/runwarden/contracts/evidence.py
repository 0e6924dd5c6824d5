"""Evidence read from a run's VM.

Remote artifacts are heterogeneous, sometimes-missing files. Each one is
modelled as an explicit three-way sum type rather than a nullable field so the
reconciler's priority match is exhaustive:

    Present(value)        the artifact was read and parsed
    Absent(reason)        the VM answered and the artifact is not there
    Unreachable(reason)   we could not ask (VM down, timeout, unreadable)

Absent and Unreachable differ: an absent PID marker is
evidence that no process runs, an unreachable VM is no evidence at all.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from runwarden.contracts.enums import TaskState
from runwarden.contracts.records import Target


@dataclass(frozen=True)
class Present[T]:
    """Artifact present and parsed."""

    value: T


@dataclass(frozen=True)
class Absent:
    """Artifact confirmed missing (or unparseable) on a reachable VM."""

    reason: str = "missing"


@dataclass(frozen=True)
class Unreachable:
    """No evidence: the remote side could not be asked."""

    reason: str


type Evidence[T] = Present[T] | Absent | Unreachable


@dataclass(frozen=True)
class PidStatus:
    """PID marker contents plus on-VM liveness check."""

    pid: int
    alive: bool


@dataclass(frozen=True)
class HeartbeatSnapshot:
    """Periodic liveness record written by the remote supervisor."""

    timestamp: datetime
    pid: int | None
    phase: str


@dataclass(frozen=True)
class ExitMarker:
    """Exit code written once when the remote process terminated."""

    code: int


@dataclass(frozen=True)
class TaskNodeState:
    """One row of the remote task database."""

    node_id: str
    state: TaskState
    last_attempt_at: str | None = None


@dataclass(frozen=True)
class ProbeSnapshot:
    """Everything a single probe learned about a target.

    Attributes:
        target: Where the evidence came from
        observed_at: Remote clock at probe time (None when unreachable).
            Heartbeat ages are measured against this, not the host clock.
        pid: PID marker and liveness
        heartbeat: Last heartbeat record
        exit_marker: Exit code marker
        tasks: Task node rows from the remote task database
    """

    target: Target
    observed_at: datetime | None
    pid: Evidence[PidStatus]
    heartbeat: Evidence[HeartbeatSnapshot]
    exit_marker: Evidence[ExitMarker]
    tasks: Evidence[tuple[TaskNodeState, ...]]

    @classmethod
    def unreachable(cls, target: Target, reason: str) -> ProbeSnapshot:
        """Snapshot carrying no evidence at all."""
        nothing = Unreachable(reason)
        return cls(
            target=target,
            observed_at=None,
            pid=nothing,
            heartbeat=nothing,
            exit_marker=nothing,
            tasks=nothing,
        )

    def heartbeat_age_ms(self) -> float | None:
        """Age of the heartbeat against the remote clock, None if unknown."""
        if self.observed_at is None or not isinstance(self.heartbeat, Present):
            return None
        delta = self.observed_at - self.heartbeat.value.timestamp
        return delta.total_seconds() * 1000.0

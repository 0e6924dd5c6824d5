# src/runwarden/core/reconcile/decision.py
"""Pure reconciliation decision.

decide() maps a probe snapshot to an outcome. First match wins:

1. Exit marker present, code 0           -> done
2. Exit marker present, code != 0        -> failed, exit_nonzero(code)
3. No exit marker and no PID evidence    -> no evidence (status unchanged)
4. PID alive, heartbeat fresh            -> running (blocked for blocked phases)
5. PID alive, heartbeat stale or absent  -> failed, heartbeat_stale
6. PID dead or marker absent             -> failed, stale_process

Before launch (pending) the absence of a process is expected, so outcomes
5 and 6 become "not started".
"""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass

from runwarden.contracts.enums import DecisionKind, FailureReason, RunStatus
from runwarden.contracts.evidence import ExitMarker, PidStatus, Present, ProbeSnapshot, Unreachable


@dataclass(frozen=True)
class Decision:
    """Outcome of decide().

    status is None for NO_EVIDENCE and NOT_STARTED: the caller keeps the
    stored status and writes nothing.
    """

    kind: DecisionKind
    status: RunStatus | None = None
    failure_reason: FailureReason | None = None
    exit_code: int | None = None
    note: str | None = None

    def __post_init__(self) -> None:
        changes_status = self.kind not in (DecisionKind.NO_EVIDENCE, DecisionKind.NOT_STARTED)
        if changes_status != (self.status is not None):
            raise ValueError(f"Decision {self.kind.value!r} with status {self.status!r}")
        if self.failure_reason is not None and self.status != RunStatus.FAILED:
            raise ValueError("failure_reason requires status FAILED")


def decide(
    snapshot: ProbeSnapshot,
    stale_after_ms: int,
    *,
    blocked_phases: Collection[str] = (),
    pending: bool = False,
) -> Decision:
    """Evaluate a snapshot. Pure: no I/O, no clock."""
    match snapshot.exit_marker:
        case Present(value=ExitMarker(code=0)):
            return Decision(DecisionKind.DONE, status=RunStatus.DONE, exit_code=0)
        case Present(value=ExitMarker(code=code)):
            return Decision(
                DecisionKind.FAILED,
                status=RunStatus.FAILED,
                failure_reason=FailureReason.EXIT_NONZERO,
                exit_code=code,
            )

    match snapshot.pid:
        case Unreachable(reason=reason):
            return Decision(DecisionKind.NO_EVIDENCE, note=f"probe_failed: {reason}")
        case Present(value=PidStatus(alive=True)):
            if isinstance(snapshot.heartbeat, Unreachable):
                return Decision(DecisionKind.NO_EVIDENCE, note=f"probe_failed: {snapshot.heartbeat.reason}")
            age = snapshot.heartbeat_age_ms()
            if age is not None and age < stale_after_ms and isinstance(snapshot.heartbeat, Present):
                status = RunStatus.BLOCKED if snapshot.heartbeat.value.phase in blocked_phases else RunStatus.RUNNING
                return Decision(DecisionKind.ALIVE, status=status)
            reason = FailureReason.HEARTBEAT_STALE

        case _:
            # An unreadable exit marker next to a dead process could be a clean exit
            if isinstance(snapshot.exit_marker, Unreachable):
                return Decision(DecisionKind.NO_EVIDENCE, note=f"probe_failed: {snapshot.exit_marker.reason}")
            reason = FailureReason.STALE_PROCESS

    if pending:
        return Decision(DecisionKind.NOT_STARTED, note=f"not started ({reason.value})")
    return Decision(DecisionKind.FAILED, status=RunStatus.FAILED, failure_reason=reason)

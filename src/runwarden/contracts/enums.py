"""Status codes and reasons used across subsystem boundaries.

Values are stored verbatim in the ledger database and read back from the
remote task database, so they are part of the on-disk contract.
"""

from enum import StrEnum


class RunStatus(StrEnum):
    """Status of a dispatched run.

    Stored in the ledger (runs.status).
    """

    PENDING = "pending"
    RUNNING = "running"
    BLOCKED = "blocked"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether reconciliation leaves this status alone."""
        return self in (RunStatus.DONE, RunStatus.FAILED)


class FailureReason(StrEnum):
    """Why a run was marked failed.

    Stored in the ledger (runs.failure_reason). Only set when status is FAILED.

    Values:
        EXIT_NONZERO: Exit marker present with a non-zero code
        HEARTBEAT_STALE: Process alive but stopped reporting
        STALE_PROCESS: Process gone without leaving an exit marker
    """

    EXIT_NONZERO = "exit_nonzero"
    HEARTBEAT_STALE = "heartbeat_stale"
    STALE_PROCESS = "stale_process"


class TaskState(StrEnum):
    """State of a task node in the remote task database.

    Values match the workflow runtime's own spelling (note the hyphen).
    """

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    FINISHED = "finished"
    FAILED = "failed"


class DecisionKind(StrEnum):
    """Outcome of evaluating a probe snapshot against a run."""

    DONE = "done"
    FAILED = "failed"
    ALIVE = "alive"
    NO_EVIDENCE = "no_evidence"
    NOT_STARTED = "not_started"


class Transport(StrEnum):
    """How the host reaches a run's VM."""

    SSH = "ssh"
    LIMA = "lima"
    LOCAL = "local"

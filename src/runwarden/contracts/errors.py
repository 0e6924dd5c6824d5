"""Exception taxonomy for reconciliation and resume.

Every operation either returns a record or raises one of these. Nothing here
is retried automatically: the caller (a poller or an operator) decides when to
try again.

HeartbeatStale, StaleProcess and ExitNonZero are not exceptions. They are
outcomes recorded on the run (see FailureReason and RunRecord.failure_label).
"""


class RunwardenError(Exception):
    """Base class for all typed errors raised by the engine."""


class ProbeUnreachable(RunwardenError):
    """The remote target could not be reached within the timeout.

    Recoverable. Never changes a run's status by itself: unreachable means
    "no evidence", not "process dead".
    """

    def __init__(self, host: str, detail: str) -> None:
        super().__init__(f"{host}: {detail}")
        self.host = host
        self.detail = detail


class RemoteCommandError(RunwardenError):
    """A remote script ran but exited with an unexpected status."""

    def __init__(self, host: str, returncode: int, stderr: str) -> None:
        super().__init__(f"{host}: remote command exited {returncode}: {stderr.strip()[:500]}")
        self.host = host
        self.returncode = returncode
        self.stderr = stderr


class RunNotFound(RunwardenError):
    """No ledger row exists for the requested run id."""

    def __init__(self, run_id: str) -> None:
        super().__init__(f"Run {run_id} not found")
        self.run_id = run_id


class TargetImmutableError(RunwardenError):
    """An upsert tried to change the target of an existing run.

    The target is write-once. A resume that points somewhere else would
    create a new, disconnected run instead of continuing the old one.
    """

    def __init__(self, run_id: str) -> None:
        super().__init__(f"Run {run_id}: target is write-once and cannot be changed")
        self.run_id = run_id


class LedgerIntegrityError(RunwardenError):
    """A ledger write would break an invariant (e.g. attempt going backwards)."""


class SchemaCompatibilityError(RunwardenError):
    """The ledger database schema is incompatible with current code."""


class ResumeConflict(RunwardenError):
    """Resume refused because it could double-start or lose finished work.

    Raised when a live process still holds the run's PID marker, or when the
    task database reports fewer finished nodes than previously observed.
    """

    def __init__(self, run_id: str, reason: str) -> None:
        super().__init__(f"Run {run_id}: {reason}")
        self.run_id = run_id
        self.reason = reason


class ResumeNotAllowed(RunwardenError):
    """The run's ledger status does not permit planning or resuming."""

    def __init__(self, run_id: str, reason: str) -> None:
        super().__init__(f"Run {run_id}: {reason}")
        self.run_id = run_id
        self.reason = reason


class DatabaseUnavailable(RunwardenError):
    """The remote task database could not be read or written.

    Covers corruption, oversized rows and missing tables. Callers should run
    the explicit repair operation before retrying resume.
    """

    def __init__(self, run_id: str, detail: str) -> None:
        super().__init__(f"Run {run_id}: task database unavailable: {detail}")
        self.run_id = run_id
        self.detail = detail


class LaunchFailed(RunwardenError):
    """The relaunch did not produce a PID marker and heartbeat in time."""

    def __init__(self, run_id: str, detail: str) -> None:
        super().__init__(f"Run {run_id}: launch failed: {detail}")
        self.run_id = run_id
        self.detail = detail

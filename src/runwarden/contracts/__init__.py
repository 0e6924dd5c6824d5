"""Shared contracts for cross-boundary data types.

All dataclasses, enums and exceptions that cross subsystem boundaries are
defined here. This package is a LEAF MODULE with no outbound dependencies to
core. Settings classes are NOT re-exported here - import them from
runwarden.core.config.

Import patterns:
    from runwarden.contracts import RunRecord, RunStatus, Target
    from runwarden.core.config import RunwardenSettings
"""

from runwarden.contracts.enums import (
    DecisionKind,
    FailureReason,
    RunStatus,
    TaskState,
    Transport,
)
from runwarden.contracts.errors import (
    DatabaseUnavailable,
    LaunchFailed,
    LedgerIntegrityError,
    ProbeUnreachable,
    RemoteCommandError,
    ResumeConflict,
    ResumeNotAllowed,
    RunNotFound,
    RunwardenError,
    SchemaCompatibilityError,
    TargetImmutableError,
)
from runwarden.contracts.evidence import (
    Absent,
    Evidence,
    ExitMarker,
    HeartbeatSnapshot,
    PidStatus,
    Present,
    ProbeSnapshot,
    TaskNodeState,
    Unreachable,
)
from runwarden.contracts.records import AttemptRecord, RunFilter, RunRecord, Target
from runwarden.contracts.resume import RepairReport, ResumeCheck, ResumePlan

__all__ = [
    "Absent",
    "AttemptRecord",
    "DatabaseUnavailable",
    "DecisionKind",
    "Evidence",
    "ExitMarker",
    "FailureReason",
    "HeartbeatSnapshot",
    "LaunchFailed",
    "LedgerIntegrityError",
    "PidStatus",
    "Present",
    "ProbeSnapshot",
    "ProbeUnreachable",
    "RemoteCommandError",
    "RepairReport",
    "ResumeCheck",
    "ResumeConflict",
    "ResumeNotAllowed",
    "ResumePlan",
    "RunFilter",
    "RunNotFound",
    "RunRecord",
    "RunStatus",
    "RunwardenError",
    "SchemaCompatibilityError",
    "Target",
    "TargetImmutableError",
    "TaskNodeState",
    "TaskState",
    "Transport",
    "Unreachable",
]

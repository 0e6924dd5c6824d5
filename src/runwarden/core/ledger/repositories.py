"""Repository layer for ledger models.

Handles the seam between SQLAlchemy rows (strings) and domain objects
(strict enum types). This is NOT a trust boundary - the ledger is our own
data, so bad data crashes.
"""

import json
from typing import Any

from sqlalchemy.engine import Row as SARow

from runwarden.contracts.enums import FailureReason, RunStatus
from runwarden.contracts.records import AttemptRecord, RunRecord, Target
from runwarden.core.ledger._helpers import as_utc


class RunRepository:
    """Repository for RunRecord rows."""

    def load(self, row: SARow[Any]) -> RunRecord:
        """Load RunRecord from database row.

        Converts string fields to enums. Crashes on invalid data.
        """
        return RunRecord(
            run_id=row.run_id,
            target=Target(
                vm=row.vm_name,
                control_dir=row.control_dir,
                task_db_path=row.task_db_path,
                workdir=row.workdir,
            ),
            status=RunStatus(row.status),
            # Explicit is-not-None: an empty string must raise, not become None
            failure_reason=FailureReason(row.failure_reason) if row.failure_reason is not None else None,
            exit_code=row.exit_code,
            attempt=row.attempt,
            started_at=as_utc(row.started_at),
            updated_at=as_utc(row.updated_at),
            finished_nodes_seen=row.finished_nodes_seen,
        )

    def values(self, record: RunRecord) -> dict[str, Any]:
        """Column values for an insert or full-row update."""
        return {
            "run_id": record.run_id,
            "vm_name": record.target.vm,
            "control_dir": record.target.control_dir,
            "task_db_path": record.target.task_db_path,
            "workdir": record.target.workdir,
            "status": record.status.value,
            "failure_reason": record.failure_reason.value if record.failure_reason is not None else None,
            "exit_code": record.exit_code,
            "attempt": record.attempt,
            "finished_nodes_seen": record.finished_nodes_seen,
            "started_at": record.started_at,
            "updated_at": record.updated_at,
        }


class AttemptRepository:
    """Repository for AttemptRecord rows."""

    def load(self, row: SARow[Any]) -> AttemptRecord:
        reset_ids = json.loads(row.reset_node_ids_json)
        if type(reset_ids) is not list:
            raise ValueError(f"reset_node_ids_json must decode to list, got {type(reset_ids).__name__}")
        return AttemptRecord(
            run_id=row.run_id,
            attempt=row.attempt,
            launched_at=as_utc(row.launched_at),
            pid=row.pid,
            resume_from_node_id=row.resume_from_node_id,
            reset_node_ids=tuple(reset_ids),
            finished_nodes=row.finished_nodes,
            total_nodes=row.total_nodes,
        )

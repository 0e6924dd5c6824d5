# src/runwarden/core/resume/repair.py
"""Explicit task database repair.

Workflow runtimes sometimes persist tool output far larger than SQLite will
hand back ("string or blob too big"), which makes the task database
unreadable for planning. Repair truncates oversized text fields, keeping the
tail. It refuses to run while the workflow process is alive and is never
called implicitly by resume.
"""

from __future__ import annotations

import structlog

from runwarden.contracts.errors import DatabaseUnavailable, RemoteCommandError, ResumeConflict
from runwarden.contracts.resume import RepairReport
from runwarden.core.config import RemoteSettings, TaskDatabaseSettings
from runwarden.core.ledger import RunLedger
from runwarden.core.remote.channel import RemoteChannel
from runwarden.core.remote.scripts import EXIT_CONFLICT, EXIT_DATABASE, parse_report, repair_script

logger = structlog.get_logger(__name__)


class TaskDatabaseRepair:
    """Truncates oversized fields in a run's remote task database."""

    def __init__(
        self,
        ledger: RunLedger,
        channel: RemoteChannel,
        *,
        remote: RemoteSettings,
        task_db: TaskDatabaseSettings,
    ) -> None:
        self._ledger = ledger
        self._channel = channel
        self._remote = remote
        self._task_db = task_db

    def repair(self, run_id: str, *, max_field_bytes: int | None = None) -> RepairReport:
        """Truncate text fields longer than max_field_bytes.

        Raises:
            RunNotFound: If the run does not exist
            ResumeConflict: If the workflow process is still alive
            DatabaseUnavailable: If the task database is missing or cannot be written
            ProbeUnreachable: If the target could not be reached
        """
        record = self._ledger.require(run_id)
        limit = max_field_bytes if max_field_bytes is not None else self._task_db.max_field_bytes
        if limit <= 0:
            raise ValueError(f"max_field_bytes must be positive, got {limit}")

        script = repair_script(record.target, remote=self._remote, task_db=self._task_db, max_field_bytes=limit)
        try:
            output = self._channel.run(record.target.vm, script, timeout_seconds=self._remote.timeout_seconds)
        except RemoteCommandError as e:
            detail = e.stderr.strip() or f"exit {e.returncode}"
            if e.returncode == EXIT_CONFLICT:
                raise ResumeConflict(run_id, f"cannot repair while the workflow runs: {detail}") from e
            if e.returncode == EXIT_DATABASE:
                raise DatabaseUnavailable(run_id, detail) from e
            raise

        try:
            report = parse_report(output)
            result = RepairReport(run_id=run_id, truncated=int(report["truncated"]), checked=int(report["checked"]))
        except (ValueError, KeyError, TypeError) as e:
            raise DatabaseUnavailable(run_id, f"unparseable repair output: {output.strip()[-200:]!r}") from e

        logger.info(
            "task_database_repaired",
            run_id=run_id,
            vm=record.target.vm,
            truncated=result.truncated,
            checked=result.checked,
            max_field_bytes=limit,
        )
        return result

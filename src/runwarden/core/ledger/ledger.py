# src/runwarden/core/ledger/ledger.py
"""RunLedger: host-side table of run records.

The ledger is a cache of remote truth. It is refreshed from probes by the
reconciler and written by the resume executor; nothing here reaches out to
a VM.

Write rules:
- Every write touches a single run row (plus its attempt row on relaunch).
- upsert is last-writer-wins on updated_at.
- target is write-once, attempt never decreases.
- finished_nodes_seen is a high-water mark.
"""

from __future__ import annotations

import dataclasses
import json

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from runwarden.contracts.enums import RunStatus
from runwarden.contracts.errors import LedgerIntegrityError, RunNotFound, TargetImmutableError
from runwarden.contracts.records import AttemptRecord, RunFilter, RunRecord, Target
from runwarden.contracts.resume import ResumePlan
from runwarden.core.ledger._database_ops import DatabaseOps
from runwarden.core.ledger._helpers import generate_id, now
from runwarden.core.ledger.database import LedgerDB
from runwarden.core.ledger.repositories import AttemptRepository, RunRepository
from runwarden.core.ledger.schema import attempts_table, runs_table

logger = structlog.get_logger(__name__)


class RunLedger:
    """Persistent run records.

    Usage:
        ledger = RunLedger(LedgerDB("sqlite:///ledger.db"))
        record = ledger.register(target)
        record = ledger.upsert(dataclasses.replace(record, status=RunStatus.RUNNING, updated_at=now()))
    """

    def __init__(self, db: LedgerDB) -> None:
        self._db = db
        self._ops = DatabaseOps(db)
        self._run_repo = RunRepository()
        self._attempt_repo = AttemptRepository()

    def register(
        self,
        target: Target,
        *,
        run_id: str | None = None,
        status: RunStatus = RunStatus.PENDING,
    ) -> RunRecord:
        """Create the ledger row for a newly dispatched run.

        Args:
            target: Where the run executes (write-once from here on)
            run_id: Optional id (generated if not provided); ids are never reused
            status: Initial status, PENDING until the dispatcher confirms launch

        Raises:
            LedgerIntegrityError: If run_id already exists
        """
        timestamp = now()
        record = RunRecord(
            run_id=run_id or generate_id(),
            target=target,
            status=status,
            attempt=1,
            started_at=timestamp,
            updated_at=timestamp,
        )
        try:
            self._ops.execute_insert(runs_table.insert().values(**self._run_repo.values(record)))
        except IntegrityError as e:
            raise LedgerIntegrityError(f"Run id {record.run_id} already exists; run ids are never reused") from e
        logger.info("run_registered", run_id=record.run_id, vm=target.vm, status=status.value)
        return record

    def get(self, run_id: str) -> RunRecord | None:
        """Get a run by ID, or None if unknown."""
        row = self._ops.execute_fetchone(select(runs_table).where(runs_table.c.run_id == run_id))
        if row is None:
            return None
        return self._run_repo.load(row)

    def require(self, run_id: str) -> RunRecord:
        """Get a run by ID.

        Raises:
            RunNotFound: If the run does not exist
        """
        record = self.get(run_id)
        if record is None:
            raise RunNotFound(run_id)
        return record

    def list(self, run_filter: RunFilter | None = None) -> list[RunRecord]:
        """List runs newest first."""
        run_filter = run_filter or RunFilter()
        query = select(runs_table)
        if run_filter.statuses:
            query = query.where(runs_table.c.status.in_(sorted(s.value for s in run_filter.statuses)))
        if run_filter.vm is not None:
            query = query.where(runs_table.c.vm_name == run_filter.vm)
        query = query.order_by(runs_table.c.started_at.desc(), runs_table.c.run_id)
        if run_filter.limit is not None:
            query = query.limit(run_filter.limit)
        return [self._run_repo.load(row) for row in self._ops.execute_fetchall(query)]

    def upsert(self, record: RunRecord) -> RunRecord:
        """Insert or update a run record.

        Last-writer-wins on updated_at: a write older than the stored row is
        dropped and the stored record returned.

        Raises:
            TargetImmutableError: If the record changes the target of an existing run
            LedgerIntegrityError: If the record would lower attempt
        """
        record = dataclasses.replace(record, probe_note=None)
        values = self._run_repo.values(record)

        with self._db.connection() as conn:
            row = conn.execute(select(runs_table).where(runs_table.c.run_id == record.run_id)).fetchone()
            if row is None:
                conn.execute(runs_table.insert().values(**values))
                return record

            existing = self._run_repo.load(row)
            if existing.target != record.target:
                logger.warning("target_change_rejected", run_id=record.run_id, stored_vm=existing.target.vm, requested_vm=record.target.vm)
                raise TargetImmutableError(record.run_id)
            if record.attempt < existing.attempt:
                raise LedgerIntegrityError(f"Run {record.run_id}: attempt cannot decrease ({existing.attempt} -> {record.attempt})")
            if record.updated_at < existing.updated_at:
                logger.info(
                    "stale_ledger_write_dropped",
                    run_id=record.run_id,
                    stored_updated_at=existing.updated_at.isoformat(),
                    write_updated_at=record.updated_at.isoformat(),
                )
                return existing

            # started_at and the target columns are never rewritten
            for column in ("run_id", "vm_name", "control_dir", "task_db_path", "workdir", "started_at"):
                del values[column]
            values["finished_nodes_seen"] = max(existing.finished_nodes_seen, record.finished_nodes_seen)
            conn.execute(
                update(runs_table)
                .where(runs_table.c.run_id == record.run_id)
                .where(runs_table.c.updated_at <= record.updated_at)
                .values(**values)
            )
            stored = conn.execute(select(runs_table).where(runs_table.c.run_id == record.run_id)).fetchone()

        if stored is None:
            raise LedgerIntegrityError(f"Run {record.run_id} vanished during upsert")
        return self._run_repo.load(stored)

    def append_attempt(self, run_id: str, *, plan: ResumePlan, pid: int | None) -> RunRecord:
        """Record a relaunch: attempt + 1, status running, failure cleared.

        The run row and its attempt row are written in one transaction.

        Raises:
            RunNotFound: If the run does not exist
        """
        timestamp = now()
        with self._db.connection() as conn:
            row = conn.execute(select(runs_table).where(runs_table.c.run_id == run_id)).fetchone()
            if row is None:
                raise RunNotFound(run_id)
            existing = self._run_repo.load(row)
            next_attempt = existing.attempt + 1
            conn.execute(
                update(runs_table)
                .where(runs_table.c.run_id == run_id)
                .values(
                    status=RunStatus.RUNNING.value,
                    failure_reason=None,
                    exit_code=None,
                    attempt=next_attempt,
                    finished_nodes_seen=max(existing.finished_nodes_seen, plan.finished_nodes),
                    updated_at=timestamp,
                )
            )
            conn.execute(
                attempts_table.insert().values(
                    run_id=run_id,
                    attempt=next_attempt,
                    launched_at=timestamp,
                    pid=pid,
                    resume_from_node_id=plan.resume_from_node_id,
                    reset_node_ids_json=json.dumps(list(plan.reset_node_ids)),
                    finished_nodes=plan.finished_nodes,
                    total_nodes=plan.total_nodes,
                )
            )
            stored = conn.execute(select(runs_table).where(runs_table.c.run_id == run_id)).fetchone()

        if stored is None:
            raise LedgerIntegrityError(f"Run {run_id} vanished during append_attempt")
        return self._run_repo.load(stored)

    def observe_finished_nodes(self, run_id: str, finished: int) -> int:
        """Raise the finished-node high-water mark and return it.

        A lower observation is logged and ignored; the planner is the one that
        turns a regression into a ResumeConflict. updated_at is not touched.
        """
        self._ops.execute_update(
            update(runs_table)
            .where(runs_table.c.run_id == run_id)
            .where(runs_table.c.finished_nodes_seen < finished)
            .values(finished_nodes_seen=finished)
        )
        row = self._ops.execute_fetchone(select(runs_table.c.finished_nodes_seen).where(runs_table.c.run_id == run_id))
        if row is None:
            raise RunNotFound(run_id)
        high_water: int = row.finished_nodes_seen
        if finished < high_water:
            logger.warning("finished_nodes_regressed", run_id=run_id, observed=finished, high_water=high_water)
        return high_water

    def attempts(self, run_id: str) -> list[AttemptRecord]:
        """Relaunch history for a run, oldest first."""
        rows = self._ops.execute_fetchall(
            select(attempts_table).where(attempts_table.c.run_id == run_id).order_by(attempts_table.c.attempt)
        )
        return [self._attempt_repo.load(row) for row in rows]

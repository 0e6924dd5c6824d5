# src/runwarden/core/reconcile/reconciler.py
"""Reconciler: probe, decide, write back to the ledger.

The reconciler is the only writer of evidence-derived status. It never
retries and never sleeps; a poller (the CLI watch command) owns cadence.
"""

from __future__ import annotations

import dataclasses
from concurrent.futures import Future, ThreadPoolExecutor, as_completed

import structlog
from sqlalchemy.exc import SQLAlchemyError

from runwarden.contracts.enums import DecisionKind, RunStatus, TaskState
from runwarden.contracts.errors import RunwardenError
from runwarden.contracts.evidence import Present, ProbeSnapshot
from runwarden.contracts.records import RunFilter, RunRecord
from runwarden.core.config import ReconcileSettings
from runwarden.core.ledger import RunLedger
from runwarden.core.ledger._helpers import now
from runwarden.core.reconcile.decision import decide
from runwarden.core.remote.probe import RemoteStateProbe

logger = structlog.get_logger(__name__)


def finished_count(snapshot: ProbeSnapshot) -> int | None:
    """Finished task nodes in the snapshot, None without task evidence."""
    if not isinstance(snapshot.tasks, Present):
        return None
    return sum(1 for node in snapshot.tasks.value if node.state == TaskState.FINISHED)


class Reconciler:
    """Moves ledger records to match remote evidence.

    Usage:
        reconciler = Reconciler(ledger, probe, settings=settings.reconcile)
        record = reconciler.reconcile(run_id)
    """

    def __init__(self, ledger: RunLedger, probe: RemoteStateProbe, *, settings: ReconcileSettings) -> None:
        self._ledger = ledger
        self._probe = probe
        self._settings = settings

    def reconcile(self, run_id: str, *, stale_after_ms: int | None = None) -> RunRecord:
        """Bring one run's ledger record in line with what its VM shows.

        Terminal runs are returned as stored without probing. When the probe
        yields no evidence the stored status is kept, nothing is written, and
        the returned record carries a probe_note.

        Raises:
            RunNotFound: If the run does not exist
        """
        record = self._ledger.require(run_id)
        if record.status.is_terminal:
            return record

        log = logger.bind(run_id=run_id, vm=record.target.vm, attempt=record.attempt)
        snapshot = self._probe.probe(record.target)
        decision = decide(
            snapshot,
            stale_after_ms if stale_after_ms is not None else self._settings.stale_after_ms,
            blocked_phases=self._settings.blocked_phases,
            pending=record.status == RunStatus.PENDING,
        )

        finished = finished_count(snapshot)
        if finished is not None:
            seen = self._ledger.observe_finished_nodes(run_id, finished)
            record = dataclasses.replace(record, finished_nodes_seen=seen)

        match decision.kind:
            case DecisionKind.NO_EVIDENCE:
                log.warning("reconcile_no_evidence", status=record.status.value, note=decision.note)
                return dataclasses.replace(record, probe_note=decision.note)
            case DecisionKind.NOT_STARTED:
                log.debug("reconcile_not_started", note=decision.note)
                return record

        assert decision.status is not None  # guaranteed by Decision.__post_init__
        updated = self._ledger.upsert(
            dataclasses.replace(
                record,
                status=decision.status,
                failure_reason=decision.failure_reason,
                exit_code=decision.exit_code,
                updated_at=now(),
            )
        )
        if updated.status != record.status:
            log.info(
                "run_reconciled",
                previous_status=record.status.value,
                status=updated.status.value,
                failure=updated.failure_label,
            )
        else:
            log.debug("run_refreshed", status=updated.status.value)
        return updated

    def reconcile_all(self, run_filter: RunFilter | None = None, *, stale_after_ms: int | None = None) -> list[RunRecord]:
        """Reconcile every run matching the filter, in parallel.

        Default filter: non-terminal runs, newest first, reconcile.default_limit.
        Results are in filter order. A run whose reconciliation raised is
        returned as stored with the error as its probe_note.
        """
        run_filter = run_filter or RunFilter.active(limit=self._settings.default_limit)
        records = self._ledger.list(run_filter)
        if not records:
            return []

        results: list[RunRecord] = list(records)
        workers = min(self._settings.max_workers, len(records))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="reconcile") as pool:
            futures: dict[Future[RunRecord], int] = {
                pool.submit(self.reconcile, record.run_id, stale_after_ms=stale_after_ms): index
                for index, record in enumerate(records)
            }
            for future in as_completed(futures):
                index = futures[future]
                try:
                    results[index] = future.result()
                except (RunwardenError, SQLAlchemyError) as e:
                    logger.error("reconcile_failed", run_id=records[index].run_id, error=str(e))
                    results[index] = dataclasses.replace(records[index], probe_note=f"reconcile_failed: {e}")
        return results

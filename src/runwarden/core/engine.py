# src/runwarden/core/engine.py
"""RunEngine: the host-facing operations, wired from settings.

Read path:  probe -> reconciler -> ledger
Write path: ledger + probe -> planner -> executor -> ledger

Reconciler and planner never call each other; they share only the ledger
and the remote artifacts.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Self

from runwarden.contracts.enums import RunStatus
from runwarden.contracts.records import AttemptRecord, RunFilter, RunRecord, Target
from runwarden.contracts.resume import RepairReport, ResumeCheck, ResumePlan
from runwarden.core.config import RunwardenSettings
from runwarden.core.ledger import LedgerDB, RunLedger
from runwarden.core.logging import get_logger
from runwarden.core.reconcile import Reconciler
from runwarden.core.remote import RemoteChannel, RemoteStateProbe, make_channel
from runwarden.core.resume import ResumeExecutor, ResumePlanner, TaskDatabaseRepair

logger = get_logger(__name__)


class RunEngine:
    """Reconciliation and resume for runs on remote VMs.

    Usage:
        settings = load_settings(Path("runwarden.yaml"))
        with RunEngine.from_settings(settings) as engine:
            record = engine.reconcile(run_id)
            if record.status == RunStatus.FAILED:
                engine.resume(run_id)
    """

    def __init__(
        self,
        settings: RunwardenSettings,
        db: LedgerDB,
        channel: RemoteChannel,
    ) -> None:
        self.settings = settings
        self._db = db
        self.channel = channel
        self.ledger = RunLedger(db)
        self.probe = RemoteStateProbe(channel, remote=settings.remote, task_db=settings.task_database)
        self.reconciler = Reconciler(self.ledger, self.probe, settings=settings.reconcile)
        self.planner = ResumePlanner(self.ledger, self.probe)
        self.executor = ResumeExecutor(
            self.ledger,
            self.probe,
            self.planner,
            channel,
            remote=settings.remote,
            task_db=settings.task_database,
            settings=settings.resume,
        )
        self.repairer = TaskDatabaseRepair(self.ledger, channel, remote=settings.remote, task_db=settings.task_database)

    @classmethod
    def from_settings(cls, settings: RunwardenSettings, *, channel: RemoteChannel | None = None) -> Self:
        """Open the ledger and build the configured channel."""
        db = LedgerDB.from_url(settings.ledger.url)
        engine = cls(settings, db, channel if channel is not None else make_channel(settings.remote))
        logger.debug("engine_ready", ledger=settings.ledger.url, transport=settings.remote.transport.value)
        return engine

    def close(self) -> None:
        self._db.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.close()

    # === Ledger ===

    def register(self, target: Target, *, run_id: str | None = None, status: RunStatus = RunStatus.PENDING) -> RunRecord:
        return self.ledger.register(target, run_id=run_id, status=status)

    def get(self, run_id: str) -> RunRecord | None:
        return self.ledger.get(run_id)

    def list(self, run_filter: RunFilter | None = None) -> list[RunRecord]:
        return self.ledger.list(run_filter)

    def attempts(self, run_id: str) -> list[AttemptRecord]:
        return self.ledger.attempts(run_id)

    # === Reconciliation ===

    def reconcile(self, run_id: str, *, stale_after_ms: int | None = None) -> RunRecord:
        return self.reconciler.reconcile(run_id, stale_after_ms=stale_after_ms)

    def reconcile_all(self, run_filter: RunFilter | None = None, *, stale_after_ms: int | None = None) -> list[RunRecord]:
        return self.reconciler.reconcile_all(run_filter, stale_after_ms=stale_after_ms)

    # === Resume ===

    def can_resume(self, run_id: str) -> ResumeCheck:
        return self.planner.can_resume(run_id)

    def plan_resume(self, run_id: str) -> ResumePlan:
        return self.planner.plan(run_id)

    def resume(self, run_id: str, *, extra_env: Mapping[str, str] | None = None) -> RunRecord:
        return self.executor.resume(run_id, extra_env=extra_env)

    def repair(self, run_id: str, *, max_field_bytes: int | None = None) -> RepairReport:
        return self.repairer.repair(run_id, max_field_bytes=max_field_bytes)

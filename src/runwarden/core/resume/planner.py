# src/runwarden/core/resume/planner.py
"""Resume planning: where can a run safely continue from?

Provides:
- can_resume(run_id): cheap yes/no with a reason
- plan(run_id): the ResumePlan (which nodes to reset, where to pick up)

Planning reads the remote task database through the probe and never writes
to it. The only host-side write is raising the finished-node high-water mark.
"""

from __future__ import annotations

import re

import structlog

from runwarden.contracts.enums import RunStatus, TaskState
from runwarden.contracts.errors import DatabaseUnavailable, ProbeUnreachable, ResumeConflict, ResumeNotAllowed, RunwardenError
from runwarden.contracts.evidence import Absent, Present, ProbeSnapshot, TaskNodeState, Unreachable
from runwarden.contracts.records import RunRecord
from runwarden.contracts.resume import ResumeCheck, ResumePlan
from runwarden.core.ledger import RunLedger
from runwarden.core.remote.probe import RemoteStateProbe

logger = structlog.get_logger(__name__)

_DIGITS = re.compile(r"(\d+)")


def node_sort_key(node_id: str) -> tuple[tuple[int, int, str], ...]:
    """Natural order for node ids: "task-9:impl" sorts before "task-10:impl"."""
    return tuple((0, int(part), "") if part.isdigit() else (1, 0, part) for part in _DIGITS.split(node_id) if part)


def order_nodes(nodes: tuple[TaskNodeState, ...]) -> list[TaskNodeState]:
    return sorted(nodes, key=lambda node: node_sort_key(node.node_id))


class ResumePlanner:
    """Builds resume plans from the remote task database.

    Usage:
        planner = ResumePlanner(ledger, probe)

        check = planner.can_resume(run_id)
        if check.can_resume:
            plan = planner.plan(run_id)
    """

    def __init__(self, ledger: RunLedger, probe: RemoteStateProbe) -> None:
        self._ledger = ledger
        self._probe = probe

    def can_resume(self, run_id: str) -> ResumeCheck:
        """Check if a run can be resumed.

        A run can be resumed if:
        - It exists in the ledger
        - Its status is failed or blocked
        - A plan can be built (target reachable, task database readable,
          no finished work lost)

        Liveness of the remote process is checked again by the executor
        immediately before relaunch.
        """
        record = self._ledger.get(run_id)
        if record is None:
            return ResumeCheck(can_resume=False, reason=f"Run {run_id} not found")

        if record.status == RunStatus.DONE:
            return ResumeCheck(can_resume=False, reason="Run already completed successfully")

        if record.status == RunStatus.RUNNING:
            return ResumeCheck(can_resume=False, reason="Run is still in progress")

        if record.status == RunStatus.PENDING:
            return ResumeCheck(can_resume=False, reason="Run has not been launched yet")

        try:
            self.plan(run_id)
        except RunwardenError as e:
            return ResumeCheck(can_resume=False, reason=str(e))
        return ResumeCheck(can_resume=True)

    def plan(self, run_id: str) -> ResumePlan:
        """Build the resume plan for a run.

        Raises:
            RunNotFound: If the run does not exist
            ResumeNotAllowed: If the run already completed
            ProbeUnreachable: If the target could not be probed
            DatabaseUnavailable: If the task database could not be read
            ResumeConflict: If fewer nodes are finished than previously observed
        """
        record = self._ledger.require(run_id)
        if record.status == RunStatus.DONE:
            raise ResumeNotAllowed(run_id, "run already completed successfully")
        return self.plan_from_snapshot(record, self._probe.probe(record.target))

    def plan_from_snapshot(self, record: RunRecord, snapshot: ProbeSnapshot) -> ResumePlan:
        """Build a plan from an existing snapshot of the run's target."""
        log = logger.bind(run_id=record.run_id, vm=record.target.vm)

        match snapshot.tasks:
            case Present(value=nodes):
                ordered = order_nodes(nodes)
            case Absent():
                ordered = []
            case Unreachable(reason=reason) if snapshot.observed_at is None:
                raise ProbeUnreachable(record.target.vm, reason)
            case Unreachable(reason=reason):
                log.warning("task_database_unavailable", reason=reason)
                raise DatabaseUnavailable(record.run_id, reason)

        finished = sum(1 for node in ordered if node.state == TaskState.FINISHED)
        previous = record.finished_nodes_seen
        if finished < previous:
            log.error("finished_nodes_regressed", finished=finished, previously_finished=previous)
            raise ResumeConflict(
                record.run_id,
                f"task database reports {finished} finished nodes but {previous} were observed before; refusing to resume",
            )

        plan = ResumePlan(
            run_id=record.run_id,
            total_nodes=len(ordered),
            finished_nodes=finished,
            resume_from_node_id=next((node.node_id for node in ordered if node.state != TaskState.FINISHED), None),
            reset_node_ids=tuple(node.node_id for node in ordered if node.state == TaskState.IN_PROGRESS),
            previous_finished_nodes=previous,
        )
        self._ledger.observe_finished_nodes(record.run_id, finished)
        log.debug(
            "resume_planned",
            finished=plan.finished_nodes,
            total=plan.total_nodes,
            resume_from=plan.resume_from_node_id,
            reset=list(plan.reset_node_ids),
        )
        return plan

# src/runwarden/core/resume/executor.py
"""Resume executor: relaunch a failed or blocked run on its original target.

Resume protocol:
1. Build the plan (ResumePlanner.plan)
2. Re-probe and refuse if a process is alive or the VM is unreachable
3. One remote program: guard, reset planned nodes, archive exit marker,
   write run.sh, start it detached, wait for PID marker and heartbeat
4. Record the new attempt in the ledger

Nothing is written to the ledger unless the launch succeeded.
"""

from __future__ import annotations

import re
from collections.abc import Mapping

import structlog

from runwarden.contracts.enums import RunStatus
from runwarden.contracts.errors import (
    DatabaseUnavailable,
    LaunchFailed,
    ProbeUnreachable,
    RemoteCommandError,
    ResumeConflict,
    ResumeNotAllowed,
)
from runwarden.contracts.evidence import PidStatus, Present, Unreachable
from runwarden.contracts.records import RunRecord
from runwarden.core.config import RemoteSettings, ResumeSettings, TaskDatabaseSettings
from runwarden.core.ledger import RunLedger
from runwarden.core.remote.channel import RemoteChannel
from runwarden.core.remote.probe import RemoteStateProbe
from runwarden.core.remote.scripts import (
    EXIT_CONFLICT,
    EXIT_DATABASE,
    EXIT_LAUNCH,
    launch_script,
    parse_report,
    supervisor_script,
)
from runwarden.core.resume.planner import ResumePlanner

logger = structlog.get_logger(__name__)

RESUMABLE_STATUSES = frozenset({RunStatus.FAILED, RunStatus.BLOCKED})

_ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ResumeExecutor:
    """Relaunches runs against the target they were registered with."""

    def __init__(
        self,
        ledger: RunLedger,
        probe: RemoteStateProbe,
        planner: ResumePlanner,
        channel: RemoteChannel,
        *,
        remote: RemoteSettings,
        task_db: TaskDatabaseSettings,
        settings: ResumeSettings,
    ) -> None:
        self._ledger = ledger
        self._probe = probe
        self._planner = planner
        self._channel = channel
        self._remote = remote
        self._task_db = task_db
        self._settings = settings

    def resume(self, run_id: str, *, extra_env: Mapping[str, str] | None = None) -> RunRecord:
        """Resume a failed or blocked run.

        Args:
            run_id: Run to resume
            extra_env: Environment for the relaunched workflow, on top of resume.env

        Returns:
            The ledger record after the new attempt was recorded

        Raises:
            RunNotFound: If the run does not exist
            ResumeNotAllowed: If the run is not failed or blocked
            ResumeConflict: If a live process holds the PID marker, or finished work would be lost
            ProbeUnreachable: If the target could not be reached
            DatabaseUnavailable: If the task database could not be read or reset
            LaunchFailed: If the relaunch did not come up in time
        """
        record = self._ledger.require(run_id)
        if record.status not in RESUMABLE_STATUSES:
            raise ResumeNotAllowed(run_id, f"status {record.status.value!r} cannot be resumed (needs failed or blocked)")

        env = {**self._settings.env, **(extra_env or {})}
        bad = sorted(name for name in env if not _ENV_NAME.match(name))
        if bad:
            raise ValueError(f"invalid environment variable names: {bad}")

        log = logger.bind(run_id=run_id, vm=record.target.vm, attempt=record.attempt)
        plan = self._planner.plan(run_id)

        snapshot = self._probe.probe(record.target)
        match snapshot.pid:
            case Present(value=PidStatus(pid=pid, alive=True)):
                log.warning("resume_conflict_live_process", pid=pid)
                raise ResumeConflict(run_id, f"process {pid} is still alive on {record.target.vm}")
            case Unreachable(reason=reason):
                log.warning("resume_probe_unreachable", reason=reason)
                raise ProbeUnreachable(record.target.vm, reason)

        supervisor = supervisor_script(
            record.target,
            run_id=run_id,
            attempt=record.attempt + 1,
            resume_from_node_id=plan.resume_from_node_id,
            workflow_command=self._settings.workflow_command,
            env=env,
            remote=self._remote,
            heartbeat_interval_seconds=self._settings.heartbeat_interval_seconds,
        )
        script = launch_script(
            record.target,
            plan=plan,
            previous_attempt=record.attempt,
            supervisor=supervisor,
            remote=self._remote,
            task_db=self._task_db,
            launch_timeout_seconds=self._settings.launch_timeout_seconds,
        )

        try:
            output = self._channel.run(
                record.target.vm,
                script,
                timeout_seconds=self._remote.timeout_seconds + self._settings.launch_timeout_seconds,
            )
        except RemoteCommandError as e:
            detail = e.stderr.strip() or f"exit {e.returncode}"
            log.error("resume_launch_rejected", returncode=e.returncode, detail=detail)
            match e.returncode:
                case code if code == EXIT_CONFLICT:
                    raise ResumeConflict(run_id, f"live process found on {record.target.vm}: {detail}") from e
                case code if code == EXIT_DATABASE:
                    raise DatabaseUnavailable(run_id, detail) from e
                case code if code == EXIT_LAUNCH:
                    raise LaunchFailed(run_id, detail) from e
            raise LaunchFailed(run_id, f"launch script exited {e.returncode}: {detail}") from e

        try:
            pid = parse_report(output)["pid"]
        except (ValueError, KeyError) as e:
            raise LaunchFailed(run_id, f"unparseable launch output: {output.strip()[-200:]!r}") from e
        if type(pid) is not int:
            raise LaunchFailed(run_id, f"launch reported non-integer pid {pid!r}")

        updated = self._ledger.append_attempt(run_id, plan=plan, pid=pid)
        log.info(
            "resume_launched",
            new_attempt=updated.attempt,
            pid=pid,
            resume_from=plan.resume_from_node_id,
            reset=list(plan.reset_node_ids),
            finished=plan.finished_nodes,
            total=plan.total_nodes,
        )
        return updated

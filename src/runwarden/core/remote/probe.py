# src/runwarden/core/remote/probe.py
"""Remote state probe: one round trip, pure read.

The probe never decides anything. It turns whatever the VM reported into
Evidence values and leaves interpretation to the reconciler and planner.

Trust boundary: everything parsed here comes from a crash-prone VM (half
written files, corrupt databases), so malformed artifacts degrade to Absent
or Unreachable instead of raising.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

import structlog

from runwarden.contracts.enums import TaskState
from runwarden.contracts.errors import ProbeUnreachable, RemoteCommandError
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
from runwarden.contracts.records import Target
from runwarden.core.config import RemoteSettings, TaskDatabaseSettings
from runwarden.core.remote.channel import RemoteChannel
from runwarden.core.remote.scripts import parse_report, probe_script

logger = structlog.get_logger(__name__)


class RemoteStateProbe:
    """Reads markers and task database for a target."""

    def __init__(
        self,
        channel: RemoteChannel,
        *,
        remote: RemoteSettings,
        task_db: TaskDatabaseSettings,
    ) -> None:
        self._channel = channel
        self._remote = remote
        self._task_db = task_db

    def probe(self, target: Target) -> ProbeSnapshot:
        """Snapshot the target. Never raises for remote-side problems."""
        script = probe_script(target, remote=self._remote, task_db=self._task_db)
        try:
            output = self._channel.run(target.vm, script, timeout_seconds=self._remote.timeout_seconds)
        except ProbeUnreachable as e:
            logger.info("probe_unreachable", vm=target.vm, detail=e.detail)
            return ProbeSnapshot.unreachable(target, f"unreachable: {e.detail}")
        except RemoteCommandError as e:
            logger.warning("probe_script_failed", vm=target.vm, returncode=e.returncode, stderr=e.stderr.strip()[:500])
            return ProbeSnapshot.unreachable(target, f"probe exited {e.returncode}")

        try:
            return parse_probe_output(target, output)
        except ValueError as e:
            logger.warning("probe_output_unparseable", vm=target.vm, error=str(e))
            return ProbeSnapshot.unreachable(target, f"unparseable probe output: {e}")


def parse_probe_output(target: Target, output: str) -> ProbeSnapshot:
    """Parse the probe script's JSON line into a snapshot.

    Raises:
        ValueError: If the output is not a probe report at all
    """
    report = parse_report(output)
    if type(report.get("now_ms")) is not int:
        raise ValueError("missing now_ms")

    return ProbeSnapshot(
        target=target,
        observed_at=datetime.fromtimestamp(report["now_ms"] / 1000, tz=UTC),
        pid=_pid_evidence(_artifact(report, "pid")),
        heartbeat=_heartbeat_evidence(_artifact(report, "heartbeat")),
        exit_marker=_exit_evidence(_artifact(report, "exit")),
        tasks=_task_evidence(_artifact(report, "tasks")),
    )


def _artifact(report: dict[str, Any], key: str) -> dict[str, Any]:
    value = report.get(key)
    if not isinstance(value, dict) or value.get("status") not in ("present", "absent", "error"):
        raise ValueError(f"malformed {key!r} entry")
    return value


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _pid_evidence(raw: dict[str, Any]) -> Evidence[PidStatus]:
    match raw["status"]:
        case "absent":
            return Absent()
        case "error":
            return Unreachable(f"pid marker unreadable: {raw.get('reason')}")
    # The VM only reports liveness for a marker that held a positive integer
    if "alive" not in raw:
        return Absent("invalid pid marker")
    return Present(PidStatus(pid=int(raw["text"].strip()), alive=bool(raw["alive"])))


def _heartbeat_evidence(raw: dict[str, Any]) -> Evidence[HeartbeatSnapshot]:
    match raw["status"]:
        case "absent":
            return Absent()
        case "error":
            return Unreachable(f"heartbeat unreadable: {raw.get('reason')}")
    try:
        beat = json.loads(raw["text"])
        if not isinstance(beat, dict) or not isinstance(beat.get("ts"), str):
            return Absent("invalid heartbeat")
        timestamp = _parse_timestamp(beat["ts"])
    except ValueError:
        return Absent("invalid heartbeat")
    pid = beat.get("pid")
    phase = beat.get("phase")
    return Present(
        HeartbeatSnapshot(
            timestamp=timestamp,
            pid=pid if type(pid) is int else None,
            phase=phase if isinstance(phase, str) and phase else "running",
        )
    )


def _exit_evidence(raw: dict[str, Any]) -> Evidence[ExitMarker]:
    match raw["status"]:
        case "absent":
            return Absent()
        case "error":
            return Unreachable(f"exit marker unreadable: {raw.get('reason')}")
    try:
        return Present(ExitMarker(code=int(raw["text"].strip())))
    except ValueError:
        # Written once, but a crash mid-write leaves an empty file
        return Absent("invalid exit marker")


def _task_evidence(raw: dict[str, Any]) -> Evidence[tuple[TaskNodeState, ...]]:
    match raw["status"]:
        case "absent":
            return Absent("task database missing")
        case "error":
            return Unreachable(f"task database error: {raw.get('reason')}")
    rows = raw.get("rows")
    if not isinstance(rows, list):
        raise ValueError("task rows must be a list")
    nodes: list[TaskNodeState] = []
    for row in rows:
        if not isinstance(row, list) or len(row) != 3:
            raise ValueError("task rows must be [node_id, state, last_attempt]")
        node_id, state, last_attempt = row
        try:
            task_state = TaskState(state)
        except ValueError:
            return Unreachable(f"task database error: unknown state {state!r} for node {node_id}")
        nodes.append(TaskNodeState(node_id=node_id, state=task_state, last_attempt_at=last_attempt))
    return Present(tuple(nodes))

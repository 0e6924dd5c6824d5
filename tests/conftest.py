# tests/conftest.py
"""Shared test fixtures and helpers.

Fakes:
- FakeChannel: scripted RemoteChannel recording every script it was sent
- probe_report(): JSON line in the shape the remote probe program prints

Real remote side:
- local_settings / LocalTarget: LocalChannel with this interpreter as the
  "remote" python, against temporary control directories and real SQLite
  task databases

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

from __future__ import annotations

import json
import os
import sqlite3
import sys
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

import pytest
from hypothesis import Phase, Verbosity, settings

from runwarden.contracts import Target, Transport
from runwarden.core.config import LedgerSettings, RemoteSettings, ResumeSettings, RunwardenSettings
from runwarden.core.engine import RunEngine
from runwarden.core.ledger import LedgerDB, RunLedger

# Remote clock used by probe_report() unless a test overrides it
NOW_MS = 1_760_000_000_000


def probe_report(
    *,
    pid: int | None = None,
    alive: bool = True,
    heartbeat_age_ms: int | None = None,
    phase: str = "running",
    exit_code: int | None = None,
    nodes: list[tuple[str, str]] | None = None,
    tasks_error: str | None = None,
    now_ms: int = NOW_MS,
) -> str:
    """Build the output line of the remote probe program."""
    report: dict[str, object] = {"v": 1, "now_ms": now_ms}
    report["pid"] = {"status": "absent"} if pid is None else {"status": "present", "text": f"{pid}\n", "alive": alive}
    if heartbeat_age_ms is None:
        report["heartbeat"] = {"status": "absent"}
    else:
        ts = datetime.fromtimestamp((now_ms - heartbeat_age_ms) / 1000, tz=UTC).isoformat()
        beat = {"v": 1, "ts": ts, "pid": pid, "run_id": "wf", "phase": phase}
        report["heartbeat"] = {"status": "present", "text": json.dumps(beat)}
    report["exit"] = {"status": "absent"} if exit_code is None else {"status": "present", "text": f"{exit_code}\n"}
    if tasks_error is not None:
        report["tasks"] = {"status": "error", "reason": tasks_error}
    elif nodes is None:
        report["tasks"] = {"status": "absent"}
    else:
        report["tasks"] = {"status": "present", "rows": [[node_id, state, None] for node_id, state in nodes]}
    return json.dumps(report) + "\n"


def task_nodes(finished: int, in_progress: int = 0, pending: int = 0) -> list[tuple[str, str]]:
    """Numbered :impl nodes: finished first, then in-progress, then pending."""
    states = ["finished"] * finished + ["in-progress"] * in_progress + ["pending"] * pending
    return [(f"{index}:impl", state) for index, state in enumerate(states, start=1)]


class FakeChannel:
    """Scripted RemoteChannel.

    Responses are consumed in order; the last one repeats. A response that is
    an exception is raised instead of returned.
    """

    def __init__(self, *responses: str | Exception) -> None:
        self.responses: list[str | Exception] = list(responses)
        self.calls: list[tuple[str, str, float]] = []

    def queue(self, *responses: str | Exception) -> None:
        self.responses = list(responses)

    @property
    def scripts(self) -> list[str]:
        return [script for _, script, _ in self.calls]

    def run(self, host: str, script: str, *, timeout_seconds: float) -> str:
        self.calls.append((host, script, timeout_seconds))
        if not self.responses:
            raise AssertionError(f"FakeChannel has no response for call to {host}")
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def ledger_db(tmp_path: Path) -> Iterator[LedgerDB]:
    db = LedgerDB(f"sqlite:///{tmp_path / 'ledger.db'}")
    yield db
    db.close()


@pytest.fixture
def ledger(ledger_db: LedgerDB) -> RunLedger:
    return RunLedger(ledger_db)


@pytest.fixture
def target() -> Target:
    return Target(
        vm="ralph-1",
        control_dir="/home/ralph/work/ralph-1/.runs/demo",
        task_db_path="/home/ralph/work/ralph-1/.smithers/demo.db",
        workdir="/home/ralph/work/ralph-1/demo",
    )


@pytest.fixture
def fake_channel() -> FakeChannel:
    return FakeChannel(probe_report())


@pytest.fixture
def test_settings(tmp_path: Path) -> RunwardenSettings:
    return RunwardenSettings(ledger=LedgerSettings(url=f"sqlite:///{tmp_path / 'ledger.db'}"))


@pytest.fixture
def engine(test_settings: RunwardenSettings, ledger_db: LedgerDB, fake_channel: FakeChannel) -> RunEngine:
    return RunEngine(test_settings, ledger_db, fake_channel)


# =============================================================================
# Local remote side (real bash, real SQLite)
# =============================================================================


def make_task_db(path: Path, nodes: list[tuple[str, str]], *, workflow_run_id: str = "wf-1") -> None:
    """Create a task database in the workflow runtime's layout."""
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    try:
        with conn:
            conn.execute("CREATE TABLE _smithers_runs (run_id TEXT PRIMARY KEY, status TEXT, started_at_ms INTEGER)")
            conn.execute(
                "CREATE TABLE _smithers_nodes (run_id TEXT, node_id TEXT, state TEXT, last_attempt INTEGER, updated_at_ms INTEGER)"
            )
            conn.execute("INSERT INTO _smithers_runs VALUES (?, 'failed', 1000)", (workflow_run_id,))
            conn.executemany(
                "INSERT INTO _smithers_nodes VALUES (?, ?, ?, ?, 0)",
                [(workflow_run_id, node_id, state, 1 if state == "in-progress" else None) for node_id, state in nodes],
            )
    finally:
        conn.close()


def read_node_states(path: Path) -> dict[str, str]:
    conn = sqlite3.connect(path)
    try:
        return dict(conn.execute("SELECT node_id, state FROM _smithers_nodes").fetchall())
    finally:
        conn.close()


@dataclass
class LocalTarget:
    """Paths of a run executing on this machine."""

    control_dir: Path
    task_db: Path
    workdir: Path

    @property
    def target(self) -> Target:
        return Target(
            vm="localhost",
            control_dir=str(self.control_dir),
            task_db_path=str(self.task_db),
            workdir=str(self.workdir),
        )

    def write(self, name: str, text: str) -> None:
        (self.control_dir / name).write_text(text)

    def write_heartbeat(self, *, pid: int, age_seconds: float = 0.0, phase: str = "running") -> None:
        ts = datetime.fromtimestamp(datetime.now(UTC).timestamp() - age_seconds, tz=UTC).isoformat()
        self.write("heartbeat.json", json.dumps({"v": 1, "ts": ts, "pid": pid, "run_id": "wf-1", "phase": phase}))


@pytest.fixture
def local_target(tmp_path: Path) -> LocalTarget:
    control_dir = tmp_path / "vm" / ".runs" / "demo"
    workdir = tmp_path / "vm" / "demo"
    control_dir.mkdir(parents=True)
    workdir.mkdir(parents=True)
    return LocalTarget(control_dir=control_dir, task_db=tmp_path / "vm" / ".smithers" / "demo.db", workdir=workdir)


@pytest.fixture
def local_settings(tmp_path: Path) -> RunwardenSettings:
    return RunwardenSettings(
        ledger=LedgerSettings(url=f"sqlite:///{tmp_path / 'ledger.db'}"),
        remote=RemoteSettings(transport=Transport.LOCAL, python=sys.executable, timeout_seconds=30),
        resume=ResumeSettings(workflow_command="true", launch_timeout_seconds=10, heartbeat_interval_seconds=1),
    )


@pytest.fixture
def dead_pid() -> int:
    """A PID that no live process holds."""
    pid = 2**22 - 17
    while True:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return pid
        except PermissionError:
            pass
        pid -= 1


# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))

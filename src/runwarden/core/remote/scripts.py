# src/runwarden/core/remote/scripts.py
"""Builders for the programs we run on a target VM.

Each builder returns a bash script suitable for RemoteChannel.run(). The
bash part only hands a Python program to the VM's interpreter; parameters
travel as one shell-quoted JSON argument and are never interpolated into
code. Table and column names are the exception: they are validated as plain
identifiers by TaskDatabaseSettings before they get here.

Exit codes shared by the mutating programs:
    EXIT_CONFLICT (75): a live process holds the PID marker
    EXIT_DATABASE (74): the task database could not be opened or written
    EXIT_LAUNCH (73): no fresh PID marker and heartbeat after launch
"""

from __future__ import annotations

import json
import shlex
from collections.abc import Mapping
from typing import Any

from runwarden.contracts.records import Target
from runwarden.contracts.resume import ResumePlan
from runwarden.core.config import RemoteSettings, TaskDatabaseSettings

EXIT_CONFLICT = 75
EXIT_DATABASE = 74
EXIT_LAUNCH = 73

SUPERVISOR_FILE = "run.sh"
SUPERVISOR_LOG = "run.log"
PHASE_FILE = "phase"

_HEREDOC = "RUNWARDEN_PY"

_PRELUDE = r'''
import json
import os
import sqlite3
import subprocess
import sys
import time
import urllib.parse

P = json.loads(sys.argv[1])
CONTROL_DIR = P["control_dir"]
PID_PATH = os.path.join(CONTROL_DIR, P["pid_file"])
HEARTBEAT_PATH = os.path.join(CONTROL_DIR, P["heartbeat_file"])
EXIT_PATH = os.path.join(CONTROL_DIR, P["exit_file"])


def read_text(path):
    try:
        with open(path, encoding="utf-8") as f:
            return {"status": "present", "text": f.read()}
    except FileNotFoundError:
        return {"status": "absent"}
    except (OSError, UnicodeDecodeError) as e:
        return {"status": "error", "reason": str(e)}


def pid_alive(pid):
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def boot_time():
    try:
        with open("/proc/stat", encoding="ascii") as f:
            for line in f:
                if line.startswith("btime "):
                    return int(line.split()[1])
    except (OSError, ValueError):
        return None
    return None


def marker_alive(pid, path):
    # A marker older than the last boot names a PID from before the reboot
    booted = boot_time()
    try:
        written = os.stat(path).st_mtime
    except OSError:
        written = None
    if booted is not None and written is not None and written < booted:
        return False
    return pid_alive(pid)


def marker_pid(path):
    try:
        with open(path, encoding="utf-8") as f:
            pid = int(f.read().strip())
    except (OSError, ValueError):
        return None
    return pid if pid > 0 else None


def guard_no_live_process():
    pid = marker_pid(PID_PATH)
    if pid is not None and marker_alive(pid, PID_PATH):
        print(f"process {pid} still holds {PID_PATH}", file=sys.stderr)
        sys.exit(75)


def latest_run_id(conn):
    table = P["runs_table"]
    if not table:
        return None
    found = conn.execute("SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)).fetchone()
    if found is None:
        return None
    row = conn.execute(
        f"SELECT run_id FROM {table} WHERE status IN ('running', 'failed', 'finished') "
        "ORDER BY started_at_ms DESC LIMIT 1"
    ).fetchone()
    return row[0] if row else None
'''

_PROBE = r'''
out = {"v": 1, "now_ms": int(time.time() * 1000)}

pid = read_text(PID_PATH)
if pid["status"] == "present":
    try:
        value = int(pid["text"].strip())
    except ValueError:
        value = 0
    if value > 0:
        pid["alive"] = marker_alive(value, PID_PATH)
out["pid"] = pid
out["heartbeat"] = read_text(HEARTBEAT_PATH)
out["exit"] = read_text(EXIT_PATH)

db = P["task_db_path"]
if not os.path.exists(db):
    out["tasks"] = {"status": "absent"}
else:
    try:
        conn = sqlite3.connect("file:" + urllib.parse.quote(db) + "?mode=ro", uri=True, timeout=5)
        try:
            run_id = latest_run_id(conn)
            query = f"SELECT node_id, state, last_attempt FROM {P['nodes_table']}"
            args = ()
            if run_id is not None:
                query += " WHERE run_id = ?"
                args = (run_id,)
            rows = conn.execute(query, args).fetchall()
        finally:
            conn.close()
        suffixes = tuple(P["node_suffixes"])
        out["tasks"] = {
            "status": "present",
            "rows": [
                [str(r[0]), r[1], None if r[2] is None else str(r[2])]
                for r in rows
                if not suffixes or str(r[0]).endswith(suffixes)
            ],
        }
    except sqlite3.Error as e:
        out["tasks"] = {"status": "error", "reason": str(e)}

print(json.dumps(out))
'''

_LAUNCH = r'''
guard_no_live_process()

reset = P["reset_node_ids"]
if reset:
    db = P["task_db_path"]
    if not os.path.exists(db):
        print(f"task database {db} does not exist", file=sys.stderr)
        sys.exit(74)
    try:
        conn = sqlite3.connect(db, timeout=10)
        try:
            with conn:
                run_id = latest_run_id(conn)
                query = (
                    f"UPDATE {P['nodes_table']} SET state = 'pending', last_attempt = NULL "
                    "WHERE node_id = ? AND state = 'in-progress'"
                )
                if run_id is not None:
                    query += " AND run_id = ?"
                for node_id in reset:
                    conn.execute(query, (node_id,) if run_id is None else (node_id, run_id))
        finally:
            conn.close()
    except sqlite3.Error as e:
        print(f"task database: {e}", file=sys.stderr)
        sys.exit(74)

if os.path.exists(EXIT_PATH):
    os.replace(EXIT_PATH, EXIT_PATH + ".attempt-" + str(P["previous_attempt"]))
for stale in (PID_PATH, HEARTBEAT_PATH):
    if os.path.exists(stale):
        os.remove(stale)

supervisor = os.path.join(CONTROL_DIR, P["supervisor_file"])
with open(supervisor, "w", encoding="utf-8") as f:
    f.write(P["supervisor"])
os.chmod(supervisor, 0o755)

with open(os.path.join(CONTROL_DIR, P["supervisor_log"]), "ab") as log:
    subprocess.Popen(
        ["nohup", "setsid", "bash", supervisor],
        stdin=subprocess.DEVNULL,
        stdout=log,
        stderr=subprocess.STDOUT,
        cwd=CONTROL_DIR,
        close_fds=True,
    )

deadline = time.time() + P["launch_timeout_seconds"]
while time.time() < deadline:
    try:
        with open(HEARTBEAT_PATH, encoding="utf-8") as f:
            beat = json.load(f)
    except (OSError, ValueError):
        beat = None
    if isinstance(beat, dict) and isinstance(beat.get("supervisor"), int):
        if marker_pid(PID_PATH) == beat["supervisor"] or os.path.exists(EXIT_PATH):
            print(json.dumps({"pid": beat["supervisor"]}))
            sys.exit(0)
    time.sleep(0.2)

print("no fresh pid marker and heartbeat after launch", file=sys.stderr)
sys.exit(73)
'''

_REPAIR = r'''
guard_no_live_process()

db = P["task_db_path"]
if not os.path.exists(db):
    print(f"task database {db} does not exist", file=sys.stderr)
    sys.exit(74)

limit = P["max_field_bytes"]
truncated = 0
checked = 0
try:
    conn = sqlite3.connect(db, timeout=10)
    try:
        with conn:
            for table in P["tables"]:
                columns = {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}
                for column in P["columns"]:
                    if column not in columns:
                        continue
                    checked += 1
                    rows = conn.execute(
                        f"SELECT rowid, {column} FROM {table} WHERE typeof({column}) = 'text' AND length({column}) > ?",
                        (limit,),
                    ).fetchall()
                    for rowid, value in rows:
                        kept = value[-limit:] + f"...[TRUNCATED: was {len(value)} chars]"
                        conn.execute(f"UPDATE {table} SET {column} = ? WHERE rowid = ?", (kept, rowid))
                        truncated += 1
    finally:
        conn.close()
except sqlite3.Error as e:
    print(f"task database: {e}", file=sys.stderr)
    sys.exit(74)

print(json.dumps({"truncated": truncated, "checked": checked}))
'''


def _base_params(target: Target, remote: RemoteSettings, task_db: TaskDatabaseSettings) -> dict[str, Any]:
    return {
        "control_dir": target.control_dir,
        "task_db_path": target.task_db_path,
        "pid_file": remote.pid_file,
        "heartbeat_file": remote.heartbeat_file,
        "exit_file": remote.exit_file,
        "nodes_table": task_db.nodes_table,
        "runs_table": task_db.runs_table,
    }


def _python_script(python: str, program: str, params: Mapping[str, Any]) -> str:
    """Wrap a Python program so `bash -s` runs it with params as argv[1]."""
    return (
        "set -u\n"
        f"exec {shlex.quote(python)} - {shlex.quote(json.dumps(params))} <<'{_HEREDOC}'\n"
        f"{_PRELUDE}\n{program}\n"
        f"{_HEREDOC}\n"
    )


def probe_script(target: Target, *, remote: RemoteSettings, task_db: TaskDatabaseSettings) -> str:
    """Read-only probe of markers and task database, printed as one JSON line."""
    params = _base_params(target, remote, task_db)
    params["node_suffixes"] = list(task_db.node_suffixes)
    return _python_script(remote.python, _PROBE, params)


def supervisor_script(
    target: Target,
    *,
    run_id: str,
    attempt: int,
    resume_from_node_id: str | None,
    workflow_command: str,
    env: Mapping[str, str],
    remote: RemoteSettings,
    heartbeat_interval_seconds: int,
) -> str:
    """Bash supervisor written to the control directory as run.sh.

    Starts the workflow in the target workdir, holds the PID marker under its
    own PID until the exit marker is written, rewrites the heartbeat while
    the workflow lives, and leaves the exit marker behind.
    The workflow can report a phase (e.g. "blocked") by writing it to
    $RUNWARDEN_PHASE_FILE.
    """
    q = shlex.quote
    control_dir = target.control_dir.rstrip("/") or "/"
    exports = {
        "RUNWARDEN_RUN_ID": run_id,
        "RUNWARDEN_ATTEMPT": str(attempt),
        "RUNWARDEN_CONTROL_DIR": control_dir,
        "RUNWARDEN_TASK_DB": target.task_db_path,
        "RUNWARDEN_RESUME_FROM": resume_from_node_id or "",
        "RUNWARDEN_PHASE_FILE": f"{control_dir}/{PHASE_FILE}",
        **env,
    }
    lines = [
        "#!/usr/bin/env bash",
        f"# runwarden supervisor: run {run_id}, attempt {attempt}",
        "set -u",
        *(f"export {name}={q(value)}" for name, value in exports.items()),
        f"PID_FILE={q(f'{control_dir}/{remote.pid_file}')}",
        f"HEARTBEAT_FILE={q(f'{control_dir}/{remote.heartbeat_file}')}",
        f"EXIT_FILE={q(f'{control_dir}/{remote.exit_file}')}",
        # JSON-escaped once here so printf can embed it verbatim
        f"HB_RUN_ID={q(json.dumps(run_id)[1:-1])}",
        f"INTERVAL={int(heartbeat_interval_seconds)}",
        "",
        "heartbeat() {",
        "    local phase=running",
        '    if [ -s "$RUNWARDEN_PHASE_FILE" ]; then',
        "        phase=\"$(head -c 64 \"$RUNWARDEN_PHASE_FILE\" | tr -cd 'A-Za-z0-9_.-')\"",
        "    fi",
        '    printf \'{"v":1,"ts":"%s","pid":%d,"supervisor":%d,"run_id":"%s","phase":"%s"}\\n\' \\',
        '        "$(date -u +%Y-%m-%dT%H:%M:%S.%3NZ)" "$CHILD" "$$" "$HB_RUN_ID" "${phase:-running}" > "$HEARTBEAT_FILE.tmp"',
        '    mv -f "$HEARTBEAT_FILE.tmp" "$HEARTBEAT_FILE"',
        "}",
        "",
        "finish() {",
        '    echo "$1" > "$EXIT_FILE.tmp"',
        '    mv -f "$EXIT_FILE.tmp" "$EXIT_FILE"',
        '    rm -f "$PID_FILE"',
        "}",
        "",
        # The marker names this supervisor, which outlives the workflow until the exit marker is written
        'echo "$$" > "$PID_FILE.tmp"',
        'mv -f "$PID_FILE.tmp" "$PID_FILE"',
        f"cd {q(target.workdir)} || {{ finish 127; exit 127; }}",
        f"bash -c {q(workflow_command)} &",
        "CHILD=$!",
        "heartbeat",
        'while kill -0 "$CHILD" 2>/dev/null; do',
        "    for ((i = 0; i < INTERVAL; i++)); do",
        '        kill -0 "$CHILD" 2>/dev/null || break',
        "        sleep 1",
        "    done",
        '    if kill -0 "$CHILD" 2>/dev/null; then heartbeat; fi',
        "done",
        'wait "$CHILD"',
        'finish "$?"',
        "",
    ]
    return "\n".join(lines)


def launch_script(
    target: Target,
    *,
    plan: ResumePlan,
    previous_attempt: int,
    supervisor: str,
    remote: RemoteSettings,
    task_db: TaskDatabaseSettings,
    launch_timeout_seconds: float,
) -> str:
    """Guard, reset, archive, launch and wait, in that order, on the VM.

    Prints {"pid": <pid>} on success. Exits EXIT_CONFLICT, EXIT_DATABASE or
    EXIT_LAUNCH otherwise.
    """
    params = _base_params(target, remote, task_db)
    params.update(
        {
            "reset_node_ids": list(plan.reset_node_ids),
            "previous_attempt": previous_attempt,
            "supervisor": supervisor,
            "supervisor_file": SUPERVISOR_FILE,
            "supervisor_log": SUPERVISOR_LOG,
            "launch_timeout_seconds": launch_timeout_seconds,
        }
    )
    return _python_script(remote.python, _LAUNCH, params)


def repair_script(
    target: Target,
    *,
    remote: RemoteSettings,
    task_db: TaskDatabaseSettings,
    max_field_bytes: int,
) -> str:
    """Truncate oversized text fields; prints {"truncated": n, "checked": m}."""
    params = _base_params(target, remote, task_db)
    params.update(
        {
            "tables": list(task_db.repair_tables),
            "columns": list(task_db.repair_columns),
            "max_field_bytes": max_field_bytes,
        }
    )
    return _python_script(remote.python, _REPAIR, params)


def parse_report(output: str) -> dict[str, Any]:
    """Decode the JSON object a remote program printed last.

    Login shells sometimes print banners first, so only the last non-empty
    line counts.

    Raises:
        ValueError: If there is no JSON object to decode
    """
    lines = [line for line in output.splitlines() if line.strip()]
    if not lines:
        raise ValueError("empty output")
    try:
        report = json.loads(lines[-1])
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid JSON: {e}") from e
    if not isinstance(report, dict):
        raise ValueError(f"expected a JSON object, got {type(report).__name__}")
    return report

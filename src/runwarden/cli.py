# src/runwarden/cli.py
"""runwarden Command Line Interface.

Entry point for the runwarden CLI tool. This is the only module that talks
to a terminal; the engine underneath only returns records or raises.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path

import typer
from pydantic import ValidationError

from runwarden import __version__
from runwarden.contracts import RunFilter, RunRecord, RunStatus, RunwardenError, Target
from runwarden.core.config import RunwardenSettings, load_settings
from runwarden.core.engine import RunEngine

__all__ = ["app"]

app = typer.Typer(
    name="runwarden",
    help="runwarden: reconcile and resume long-running work on remote VMs.",
    no_args_is_help=True,
)

runs_app = typer.Typer(help="Run ledger commands.", no_args_is_help=True)
app.add_typer(runs_app, name="runs")


@dataclass
class _CliState:
    settings_file: Path | None = None


_state = _CliState()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"runwarden version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from .env file.

    Args:
        env_file: Explicit path to .env file. If None, searches for .env
                 in current directory and parent directories.

    Returns:
        True if .env was found and loaded, False otherwise.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(
                f"Error: .env file not found: {env_file}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)  # Don't override existing env vars


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    settings_file: Path | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Path to settings YAML file (default: environment and built-in defaults).",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """runwarden: reconcile and resume long-running work on remote VMs."""
    from runwarden.core.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "INFO")

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho(
            "Warning: --env-file ignored because --no-dotenv is set.",
            fg=typer.colors.YELLOW,
            err=True,
        )

    _state.settings_file = settings_file.expanduser() if settings_file is not None else None


def _load_settings() -> RunwardenSettings:
    try:
        return load_settings(_state.settings_file)
    except FileNotFoundError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        typer.echo(f"Error: invalid settings in {_state.settings_file or 'environment'}:", err=True)
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"])
            typer.echo(f"  - {location}: {error['msg']}", err=True)
        raise typer.Exit(1) from None


def _open_engine() -> RunEngine:
    settings = _load_settings()
    try:
        return RunEngine.from_settings(settings)
    except RunwardenError as e:
        typer.echo(f"Error opening ledger: {e}", err=True)
        raise typer.Exit(1) from None


def _fail(error: Exception) -> typer.Exit:
    typer.echo(f"Error: {error}", err=True)
    return typer.Exit(1)


def _status_text(record: RunRecord) -> str:
    text = record.status.value
    if record.failure_label is not None:
        text += f" ({record.failure_label})"
    return text


def _record_line(record: RunRecord) -> str:
    line = f"{record.run_id:34} {record.target.vm:20} {_status_text(record):32} attempt {record.attempt}"
    if record.probe_note:
        line += f"  [{record.probe_note}]"
    return line


def _parse_statuses(values: list[str] | None) -> list[RunStatus]:
    statuses: list[RunStatus] = []
    for value in values or []:
        try:
            statuses.append(RunStatus(value))
        except ValueError:
            valid = ", ".join(s.value for s in RunStatus)
            typer.echo(f"Error: Invalid status '{value}'. Valid statuses: {valid}", err=True)
            raise typer.Exit(1) from None
    return statuses


# === runs ===


@runs_app.command("register")
def runs_register(
    vm: str = typer.Option(..., "--vm", help="VM name or host the run executes on."),
    control_dir: str = typer.Option(..., "--control-dir", help="Directory holding PID, heartbeat and exit markers."),
    task_db: str = typer.Option(..., "--task-db", help="Path of the workflow's SQLite task database on the VM."),
    workdir: str = typer.Option(..., "--workdir", help="Directory the workflow command runs in."),
    run_id: str | None = typer.Option(None, "--id", help="Run ID (generated if omitted)."),
    running: bool = typer.Option(False, "--running", help="Register as already launched (status running)."),
) -> None:
    """Record a newly dispatched run in the ledger."""
    with _open_engine() as engine:
        try:
            target = Target(vm=vm, control_dir=control_dir, task_db_path=task_db, workdir=workdir)
            record = engine.register(target, run_id=run_id, status=RunStatus.RUNNING if running else RunStatus.PENDING)
        except (RunwardenError, ValueError) as e:
            raise _fail(e) from None
    typer.echo(record.run_id)


@runs_app.command("list")
def runs_list(
    status: list[str] | None = typer.Option(None, "--status", help="Only runs in this status (repeatable)."),
    vm: str | None = typer.Option(None, "--vm", help="Only runs on this VM."),
    limit: int = typer.Option(50, "--limit", "-n", min=1, help="Maximum runs, newest first."),
    no_reconcile: bool = typer.Option(False, "--no-reconcile", help="Show ledger contents without probing VMs."),
) -> None:
    """List runs, newest first, reconciling live ones first.

    The status filter applies to the ledger before reconciliation.
    """
    run_filter = RunFilter.of(_parse_statuses(status), vm=vm, limit=limit)
    with _open_engine() as engine:
        # Terminal runs come back from reconcile_all unprobed
        records = engine.list(run_filter) if no_reconcile else engine.reconcile_all(run_filter)

    if not records:
        typer.echo("No runs found.")
        return
    for record in records:
        typer.echo(_record_line(record))


@runs_app.command("show")
def runs_show(
    run_id: str = typer.Option(..., "--id", help="Run ID to show."),
    no_reconcile: bool = typer.Option(False, "--no-reconcile", help="Show the ledger record without probing."),
) -> None:
    """Show one run and its attempt history."""
    with _open_engine() as engine:
        try:
            record = engine.ledger.require(run_id) if no_reconcile else engine.reconcile(run_id)
        except RunwardenError as e:
            raise _fail(e) from None
        attempts = engine.attempts(run_id)

    typer.echo(f"Run:        {record.run_id}")
    typer.echo(f"Status:     {_status_text(record)}")
    typer.echo(f"VM:         {record.target.vm}")
    typer.echo(f"Control:    {record.target.control_dir}")
    typer.echo(f"Task DB:    {record.target.task_db_path}")
    typer.echo(f"Workdir:    {record.target.workdir}")
    typer.echo(f"Attempt:    {record.attempt}")
    typer.echo(f"Finished:   {record.finished_nodes_seen} task nodes (high-water mark)")
    typer.echo(f"Started:    {record.started_at.isoformat()}")
    typer.echo(f"Updated:    {record.updated_at.isoformat()}")
    if record.probe_note:
        typer.echo(f"Note:       {record.probe_note}")
    for attempt in attempts:
        typer.echo(
            f"  attempt {attempt.attempt}: pid {attempt.pid}, resumed from {attempt.resume_from_node_id or '-'}, "
            f"{attempt.finished_nodes}/{attempt.total_nodes} finished, reset {list(attempt.reset_node_ids)}"
        )


@runs_app.command("reconcile")
def runs_reconcile(
    run_id: str | None = typer.Option(None, "--id", help="Run ID (default: every live run)."),
    stale_after_ms: int | None = typer.Option(None, "--stale-after-ms", min=1, help="Override heartbeat staleness."),
) -> None:
    """Probe VMs and update the ledger."""
    with _open_engine() as engine:
        try:
            if run_id is not None:
                records = [engine.reconcile(run_id, stale_after_ms=stale_after_ms)]
            else:
                records = engine.reconcile_all(stale_after_ms=stale_after_ms)
        except RunwardenError as e:
            raise _fail(e) from None

    if not records:
        typer.echo("No live runs.")
    for record in records:
        typer.echo(_record_line(record))


@runs_app.command("watch")
def runs_watch(
    interval: float | None = typer.Option(None, "--interval", min=0.1, help="Seconds between passes (default: poll.interval_seconds)."),
    once: bool = typer.Option(False, "--once", help="Run a single pass and exit."),
) -> None:
    """Reconcile live runs repeatedly, printing status changes.

    The delay grows while any VM is unreachable and resets once every probe
    succeeds again.
    """
    settings = _load_settings()
    base = interval if interval is not None else settings.poll.interval_seconds
    delay = base
    last_seen: dict[str, str] = {}

    with RunEngine.from_settings(settings) as engine:
        while True:
            records = engine.reconcile_all()
            for record in records:
                text = _status_text(record)
                if last_seen.get(record.run_id) != text or record.probe_note:
                    typer.echo(_record_line(record))
                last_seen[record.run_id] = text
            if once:
                return
            if any(record.probe_note for record in records):
                delay = min(delay * settings.poll.backoff_base, max(settings.poll.max_interval_seconds, base))
            else:
                delay = base
            time.sleep(delay)


# === resume ===


@app.command()
def plan(
    run_id: str = typer.Option(..., "--id", help="Run ID to plan a resume for."),
) -> None:
    """Show where a resume would continue from (dry run)."""
    with _open_engine() as engine:
        try:
            resume_plan = engine.plan_resume(run_id)
        except RunwardenError as e:
            raise _fail(e) from None

    typer.echo(f"Run:          {resume_plan.run_id}")
    typer.echo(f"Finished:     {resume_plan.finished_nodes}/{resume_plan.total_nodes}")
    typer.echo(f"Resume from:  {resume_plan.resume_from_node_id or '(all finished)'}")
    typer.echo(f"Reset:        {', '.join(resume_plan.reset_node_ids) or '(none)'}")


@app.command()
def resume(
    run_id: str = typer.Option(..., "--id", help="Run ID to resume."),
    fix: bool = typer.Option(False, "--fix", help="Repair oversized task database fields first."),
) -> None:
    """Relaunch a failed or blocked run on its original VM."""
    with _open_engine() as engine:
        try:
            if fix:
                report = engine.repair(run_id)
                typer.echo(f"Repaired task database: {report.truncated} field(s) truncated")
            record = engine.resume(run_id)
        except RunwardenError as e:
            raise _fail(e) from None
        attempts = engine.attempts(run_id)

    typer.echo(f"Resumed {record.run_id} on {record.target.vm}: attempt {record.attempt}")
    if attempts:
        latest = attempts[-1]
        typer.echo(f"  pid {latest.pid}, resuming from {latest.resume_from_node_id or '(all finished)'}")


@app.command()
def repair(
    run_id: str = typer.Option(..., "--id", help="Run ID whose task database to repair."),
    max_field_bytes: int | None = typer.Option(None, "--max-field-bytes", min=1, help="Truncation threshold."),
) -> None:
    """Truncate oversized fields in a run's task database."""
    with _open_engine() as engine:
        try:
            report = engine.repair(run_id, max_field_bytes=max_field_bytes)
        except RunwardenError as e:
            raise _fail(e) from None
    typer.echo(f"Checked {report.checked} column(s), truncated {report.truncated} field(s)")


if __name__ == "__main__":
    app()

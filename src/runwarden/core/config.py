# src/runwarden/core/config.py
"""
Configuration schema and loading for runwarden.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from runwarden.contracts.enums import Transport

_DEFAULT_LEDGER_URL = f"sqlite:///{Path.home() / '.cache' / 'runwarden' / 'ledger.db'}"

# Table and column names end up in SQL on the VM; keep them to plain identifiers.
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class LedgerSettings(BaseModel):
    """Host-side run ledger configuration."""

    model_config = {"frozen": True}

    # NOTE: str instead of Path - Path mangles DSNs like "postgresql://user@host/db"
    url: str = Field(
        default=_DEFAULT_LEDGER_URL,
        description="Full SQLAlchemy database URL",
    )


class RemoteSettings(BaseModel):
    """How to reach VMs and where the control-directory markers live."""

    model_config = {"frozen": True}

    transport: Transport = Field(default=Transport.SSH, description="ssh, lima or local")
    user: str | None = Field(default="ralph", description="Remote login user (ssh only)")
    ssh_options: tuple[str, ...] = Field(
        default=(
            "StrictHostKeyChecking=no",
            "UserKnownHostsFile=/dev/null",
            "LogLevel=ERROR",
            "BatchMode=yes",
        ),
        description="Extra -o options passed to ssh",
    )
    resolve_with_virsh: bool = Field(
        default=False,
        description="Resolve VM names to IPv4 addresses with `virsh domifaddr`",
    )
    timeout_seconds: float = Field(default=15.0, gt=0, description="Hard timeout for one remote round trip")
    python: str = Field(default="python3", description="Python interpreter on the VM")
    pid_file: str = Field(default="smithers.pid", description="PID marker file name in the control directory")
    heartbeat_file: str = Field(default="heartbeat.json", description="Heartbeat file name in the control directory")
    exit_file: str = Field(default="exit_code", description="Exit marker file name in the control directory")

    @field_validator("pid_file", "heartbeat_file", "exit_file")
    @classmethod
    def validate_plain_file_name(cls, v: str) -> str:
        if not v or "/" in v:
            raise ValueError(f"marker file names must be plain file names, got {v!r}")
        return v


class TaskDatabaseSettings(BaseModel):
    """Layout of the remote task database owned by the workflow runtime."""

    model_config = {"frozen": True}

    nodes_table: str = Field(default="_smithers_nodes", description="Table holding one row per task node")
    runs_table: str | None = Field(
        default="_smithers_runs",
        description="Workflow runs table used to pick the latest workflow run (None = no filtering)",
    )
    node_suffixes: tuple[str, ...] = Field(
        default=(":impl", ":val"),
        description="Only node ids ending in one of these count as task nodes (empty = all)",
    )
    repair_tables: tuple[str, ...] = Field(
        default=("_smithers_cache", "_smithers_events", "_smithers_tool_calls", "_smithers_outputs"),
        description="Tables scanned by the repair operation",
    )
    repair_columns: tuple[str, ...] = Field(
        default=("result", "output", "data", "content", "issues", "next", "raw"),
        description="Text columns truncated by the repair operation",
    )
    max_field_bytes: int = Field(default=500_000, gt=0, description="Repair truncation threshold")

    @field_validator("nodes_table", "runs_table")
    @classmethod
    def validate_table_name(cls, v: str | None) -> str | None:
        if v is not None and not _IDENTIFIER.match(v):
            raise ValueError(f"invalid table name {v!r}")
        return v

    @field_validator("repair_tables", "repair_columns")
    @classmethod
    def validate_identifiers(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        bad = [name for name in v if not _IDENTIFIER.match(name)]
        if bad:
            raise ValueError(f"invalid identifiers: {bad}")
        return v


class ReconcileSettings(BaseModel):
    """Staleness policy and fan-out for reconciliation."""

    model_config = {"frozen": True}

    stale_after_ms: int = Field(default=120_000, gt=0, description="Heartbeat age at which a live process is untrusted")
    blocked_phases: tuple[str, ...] = Field(
        default=("blocked", "waiting-approval"),
        description="Heartbeat phases that mean the run is alive but waiting on a human",
    )
    default_limit: int = Field(default=50, gt=0, description="Runs considered by bulk reconciliation")
    max_workers: int = Field(default=4, gt=0, description="Parallel probes during bulk reconciliation")


class ResumeSettings(BaseModel):
    """Relaunch configuration."""

    model_config = {"frozen": True}

    workflow_command: str = Field(
        default="smithers run workflow.tsx",
        description="Shell command that (re)starts the workflow inside the target workdir",
    )
    launch_timeout_seconds: float = Field(default=20.0, gt=0, description="Wait for fresh PID marker and heartbeat")
    heartbeat_interval_seconds: int = Field(default=30, gt=0, description="Supervisor heartbeat cadence")
    env: dict[str, str] = Field(default_factory=dict, description="Extra environment for the relaunched workflow")

    @field_validator("env")
    @classmethod
    def validate_env_names(cls, v: dict[str, str]) -> dict[str, str]:
        bad = [name for name in v if not _IDENTIFIER.match(name)]
        if bad:
            raise ValueError(f"invalid environment variable names: {bad}")
        return v


class PollSettings(BaseModel):
    """Cadence for the CLI watch loop (the engine itself never sleeps)."""

    model_config = {"frozen": True}

    interval_seconds: float = Field(default=30.0, gt=0, description="Delay between reconciliation passes")
    max_interval_seconds: float = Field(default=300.0, gt=0, description="Backoff ceiling")
    backoff_base: float = Field(default=2.0, gt=1.0, description="Interval multiplier while probes fail")

    @model_validator(mode="after")
    def validate_ceiling(self) -> "PollSettings":
        if self.max_interval_seconds < self.interval_seconds:
            raise ValueError("max_interval_seconds must be >= interval_seconds")
        return self


class RunwardenSettings(BaseModel):
    """Top-level runwarden configuration.

    Every section has defaults, so an empty settings file is valid.
    """

    model_config = {"frozen": True}

    ledger: LedgerSettings = Field(default_factory=LedgerSettings, description="Run ledger")
    remote: RemoteSettings = Field(default_factory=RemoteSettings, description="Remote channel")
    task_database: TaskDatabaseSettings = Field(default_factory=TaskDatabaseSettings, description="Remote task database layout")
    reconcile: ReconcileSettings = Field(default_factory=ReconcileSettings, description="Reconciliation policy")
    resume: ResumeSettings = Field(default_factory=ResumeSettings, description="Resume policy")
    poll: PollSettings = Field(default_factory=PollSettings, description="Watch loop cadence")


# Regex pattern for ${VAR} or ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values.

    Args:
        config: Configuration dict (may contain nested structures)

    Returns:
        New dict with environment variables expanded
    """

    def _expand_string(value: str) -> str:
        def replacer(match: re.Match[str]) -> str:
            env_value = os.environ.get(match.group(1))
            if env_value is not None:
                return env_value
            default = match.group(2)
            if default is not None:
                return default
            # No env var and no default - keep original (will likely fail validation)
            return match.group(0)

        return _ENV_VAR_PATTERN.sub(replacer, value)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _expand_string(value)
        elif isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_expand_value(item) for item in value]
        else:
            return value

    return {k: _expand_value(v) for k, v in config.items()}


def _lower_keys(value: Any) -> Any:
    """Dynaconf upper-cases keys; pydantic fields are lowercase.

    The resume.env mapping is user data, so its keys keep their case.
    """
    if isinstance(value, dict):
        return {k.lower(): (v if k.lower() == "env" else _lower_keys(v)) for k, v in value.items()}
    return value


def load_settings(config_path: Path | None = None) -> RunwardenSettings:
    """Load settings from YAML with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (RUNWARDEN_*) - highest priority
    2. Config file (YAML)
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: RUNWARDEN_LEDGER__URL for nested keys.

    Args:
        config_path: Path to YAML configuration file, or None for env + defaults

    Returns:
        Validated RunwardenSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If an explicit config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Explicit check for file existence (Dynaconf silently accepts missing files)
    if config_path is not None and not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="RUNWARDEN",
        settings_files=[str(config_path)] if config_path is not None else [],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k: v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config = _lower_keys(raw_config)
    raw_config = _expand_env_vars(raw_config)

    return RunwardenSettings(**raw_config)

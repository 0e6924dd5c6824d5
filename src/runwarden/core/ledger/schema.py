# src/runwarden/core/ledger/schema.py
"""SQLAlchemy table definitions for the run ledger.

Uses SQLAlchemy Core (not ORM) for explicit control over queries
and compatibility with multiple database backends.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
)

# Shared metadata for all tables
metadata = MetaData()

# === Runs ===

runs_table = Table(
    "runs",
    metadata,
    Column("run_id", String(64), primary_key=True),
    # Target columns are write-once (enforced by RunLedger.upsert)
    Column("vm_name", String(255), nullable=False),
    Column("control_dir", Text, nullable=False),
    Column("task_db_path", Text, nullable=False),
    Column("workdir", Text, nullable=False),
    Column("status", String(32), nullable=False),
    Column("failure_reason", String(32)),  # only when status = failed
    Column("exit_code", Integer),
    Column("attempt", Integer, nullable=False),
    # High-water mark of finished task nodes ever observed for this run
    Column("finished_nodes_seen", Integer, nullable=False, default=0),
    Column("started_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    CheckConstraint("attempt >= 1", name="ck_runs_attempt_positive"),
    CheckConstraint("finished_nodes_seen >= 0", name="ck_runs_finished_nonnegative"),
)

Index("ix_runs_vm_started", runs_table.c.vm_name, runs_table.c.started_at)
Index("ix_runs_status", runs_table.c.status)

# === Attempts (one row per launch) ===

attempts_table = Table(
    "attempts",
    metadata,
    Column("run_id", String(64), ForeignKey("runs.run_id"), nullable=False),
    Column("attempt", Integer, nullable=False),
    Column("launched_at", DateTime(timezone=True), nullable=False),
    Column("pid", Integer),
    Column("resume_from_node_id", String(255)),
    Column("reset_node_ids_json", Text, nullable=False),
    Column("finished_nodes", Integer, nullable=False),
    Column("total_nodes", Integer, nullable=False),
    PrimaryKeyConstraint("run_id", "attempt"),
)

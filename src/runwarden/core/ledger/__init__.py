"""Run ledger: host-side persistence of what we last believed about each run.

Exports:
- LedgerDB: database connection management
- RunLedger: run record reads and writes
- metadata, runs_table, attempts_table: SQLAlchemy Core schema
"""

from runwarden.core.ledger.database import LedgerDB
from runwarden.core.ledger.ledger import RunLedger
from runwarden.core.ledger.schema import attempts_table, metadata, runs_table

__all__ = [
    "LedgerDB",
    "RunLedger",
    "attempts_table",
    "metadata",
    "runs_table",
]

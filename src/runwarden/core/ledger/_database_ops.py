"""Database operation helpers to reduce boilerplate in the ledger.

Consolidates the repeated `with self._db.connection() as conn:` pattern.
"""

from typing import TYPE_CHECKING, Any

from sqlalchemy import Executable
from sqlalchemy.engine import Row

if TYPE_CHECKING:
    from runwarden.core.ledger.database import LedgerDB


class DatabaseOps:
    """Helper for common single-statement database operations."""

    def __init__(self, db: "LedgerDB") -> None:
        self._db = db

    def execute_fetchone(self, query: Executable) -> Row[Any] | None:
        """Execute query and return single row or None."""
        with self._db.connection() as conn:
            result = conn.execute(query)
            return result.fetchone()

    def execute_fetchall(self, query: Executable) -> list[Row[Any]]:
        """Execute query and return all rows."""
        with self._db.connection() as conn:
            result = conn.execute(query)
            return list(result.fetchall())

    def execute_insert(self, stmt: Executable) -> None:
        """Execute insert statement.

        Raises:
            ValueError: If zero rows are affected
        """
        with self._db.connection() as conn:
            result = conn.execute(stmt)
            if result.rowcount == 0:
                raise ValueError("execute_insert: zero rows affected - ledger write failed")

    def execute_update(self, stmt: Executable) -> int:
        """Execute update statement and return the affected row count.

        Zero is a legitimate outcome for guarded updates (last-writer-wins),
        so callers decide what it means.
        """
        with self._db.connection() as conn:
            result = conn.execute(stmt)
            return result.rowcount

"""Common helper functions for ledger modules."""

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import TypeVar

E = TypeVar("E", bound=Enum)


def now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def generate_id() -> str:
    """Generate a unique run ID (UUID4 hex)."""
    return uuid.uuid4().hex


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from SQLite.

    SQLite stores DateTime(timezone=True) without an offset; everything we
    write is UTC, so a naive value read back is UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def coerce_enum(value: str | E, enum_type: type[E]) -> E:
    """Coerce a string or enum value to the target enum type.

    Invalid values CRASH - no silent coercion.

    Raises:
        ValueError: If string is not a valid enum value
    """
    if isinstance(value, enum_type):
        return value
    return enum_type(value)

"""Core engine: ledger, remote access, reconciliation, resume."""

from runwarden.core.config import RunwardenSettings, load_settings
from runwarden.core.engine import RunEngine

__all__ = ["RunEngine", "RunwardenSettings", "load_settings"]

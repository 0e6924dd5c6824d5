# tests/cli/conftest.py
"""Shared fixtures and helpers for CLI tests."""

import logging
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _detach_log_handlers() -> Iterator[None]:
    """CliRunner closes the stream the CLI pointed its log handler at."""
    yield
    logging.getLogger().handlers = []


@pytest.fixture
def settings_file(tmp_path: Path) -> Path:
    """Settings for a ledger in tmp_path and VMs reached through the local shell."""
    path = tmp_path / "runwarden.yaml"
    path.write_text(
        f"""
ledger:
  url: "sqlite:///{tmp_path / 'ledger.db'}"
remote:
  transport: local
  python: "{sys.executable}"
  timeout_seconds: 30
resume:
  workflow_command: "true"
  launch_timeout_seconds: 10
  heartbeat_interval_seconds: 1
"""
    )
    return path

# tests/core/test_logging.py
"""Tests for structured logging configuration.

Logs go to stderr so command output on stdout stays parseable.
"""

import json
import logging

import pytest


class TestLoggingConfig:
    """Tests for logging configuration."""

    def test_get_logger_returns_logger(self) -> None:
        """get_logger returns a bound logger."""
        from runwarden.core.logging import get_logger

        logger = get_logger("test")
        assert hasattr(logger, "info")
        assert hasattr(logger, "warning")
        assert hasattr(logger, "bind")

    def test_logger_outputs_structured(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Logger outputs structured JSON on stderr."""
        from runwarden.core.logging import configure_logging, get_logger

        configure_logging(json_output=True)
        logger = get_logger("test")

        logger.info("run_reconciled", run_id="abc", status="failed")

        captured = capsys.readouterr()
        assert captured.out == ""
        data = json.loads(captured.err.strip().split("\n")[-1])
        assert data["event"] == "run_reconciled"
        assert data["run_id"] == "abc"
        assert data["status"] == "failed"
        assert data["level"] == "info"
        assert "timestamp" in data

    def test_logger_console_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Logger outputs human-readable text in console mode."""
        from runwarden.core.logging import configure_logging, get_logger

        configure_logging(json_output=False)
        get_logger("test").info("probe_unreachable", vm="ralph-1")

        captured = capsys.readouterr()
        assert "probe_unreachable" in captured.err
        assert not captured.err.strip().startswith("{")

    def test_bound_context_is_emitted(self, capsys: pytest.CaptureFixture[str]) -> None:
        from runwarden.core.logging import configure_logging, get_logger

        configure_logging(json_output=True)
        log = get_logger("test").bind(run_id="r-1", vm="ralph-1", attempt=2)
        log.warning("reconcile_no_evidence")

        data = json.loads(capsys.readouterr().err.strip().split("\n")[-1])
        assert data["run_id"] == "r-1"
        assert data["vm"] == "ralph-1"
        assert data["attempt"] == 2

    def test_level_filters_debug(self, capsys: pytest.CaptureFixture[str]) -> None:
        from runwarden.core.logging import configure_logging, get_logger

        configure_logging(json_output=True, level="INFO")
        get_logger("test").debug("run_refreshed")

        assert "run_refreshed" not in capsys.readouterr().err

    def test_noisy_third_party_loggers_silenced(self) -> None:
        """SQLAlchemy and friends stay at WARNING even in DEBUG mode."""
        from runwarden.core.logging import configure_logging

        configure_logging(level="DEBUG")

        assert logging.getLogger().level == logging.DEBUG
        for name in ("sqlalchemy", "sqlalchemy.engine", "dynaconf", "urllib3"):
            level = logging.getLogger(name).getEffectiveLevel()
            assert level >= logging.WARNING, f"Logger '{name}' should be WARNING or higher, got {level}"

    def test_stdlib_loggers_emit_json_when_json_output_enabled(self, capsys: pytest.CaptureFixture[str]) -> None:
        """stdlib loggers go through the same processor chain."""
        from runwarden.core.logging import configure_logging

        configure_logging(json_output=True)
        logging.getLogger("test.stdlib.module").info("message from stdlib logger")

        data = json.loads(capsys.readouterr().err.strip().split("\n")[-1])
        assert data["event"] == "message from stdlib logger"
        assert "_record" not in data
        assert "_from_structlog" not in data

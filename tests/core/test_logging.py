"""Tests for configure_logging and log_context."""

import json
import logging

import pytest
import structlog

from backplane.core.logging import configure_logging, get_logger, log_context


@pytest.fixture(autouse=True)
def _restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


def _events(capsys) -> list[dict]:
    return [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.strip()]


class TestConfigureLogging:
    def test_stdlib_records_carry_context(self, capsys):
        configure_logging("INFO", json_format=True, service="backplane-worker")

        with log_context(job_id="job-1"):
            logging.getLogger("backplane.execution.worker").info("claimed %s", "job-1")
        logging.getLogger("backplane.execution.worker").info("idle")

        first, second = _events(capsys)
        assert first["event"] == "claimed job-1"
        assert first["job_id"] == "job-1"
        assert first["service"] == "backplane-worker"
        assert first["level"] == "info"
        assert first["logger"] == "backplane.execution.worker"
        assert "job_id" not in second

    def test_structlog_events(self, capsys):
        configure_logging("INFO", json_format=True)

        get_logger("backplane.api").info("request_failed", path="/api/v1/jobs")

        [event] = _events(capsys)
        assert event["event"] == "request_failed"
        assert event["path"] == "/api/v1/jobs"
        assert event["service"] == "backplane"

    def test_level_filters(self, capsys):
        configure_logging("WARNING", json_format=True)
        logging.getLogger("backplane").info("quiet")
        logging.getLogger("backplane").warning("loud")
        assert [e["event"] for e in _events(capsys)] == ["loud"]

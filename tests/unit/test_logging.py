"""
Unit tests for logging setup.
"""

import json
import logging

import pytest
import structlog

from cmdqueue.observability.logging import bind_context, clear_context, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)
    clear_context()
    structlog.reset_defaults()


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_json_output_includes_context_and_extra(self, restore_root_logger, capsys):
        setup_logging(level="DEBUG", log_format="json")
        bind_context(worker_id="worker-1")

        logging.getLogger("cmdqueue.test").info("Claimed job", extra={"job_id": "job_1"})

        line = capsys.readouterr().out.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "Claimed job"
        assert record["worker_id"] == "worker-1"
        assert record["job_id"] == "job_1"
        assert record["level"] == "info"

    def test_unknown_level_falls_back_to_info(self, restore_root_logger):
        setup_logging(level="chatty", log_format="console")

        assert restore_root_logger.level == logging.INFO
        assert len(restore_root_logger.handlers) == 1

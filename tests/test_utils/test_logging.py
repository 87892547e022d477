"""Tests for creative_sync.utils.logging."""

from __future__ import annotations

import json
import logging
import logging.handlers

import pytest

from creative_sync.config import LoggingConfig
from creative_sync.utils.logging import JsonLineFormatter, configure_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def _record(**extra):
    record = logging.LogRecord(
        "creative_sync.jobs.base", logging.INFO, __file__, 1, "cycle %s", ("done",), None
    )
    record.threadName = "author_sync"
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonLineFormatter:
    def test_fields(self):
        line = json.loads(JsonLineFormatter().format(_record()))
        assert line["level"] == "INFO"
        assert line["job"] == "author_sync"
        assert line["logger"] == "creative_sync.jobs.base"
        assert line["msg"] == "cycle done"
        assert line["ts"].endswith("Z")

    def test_extra_fields_are_copied(self):
        line = json.loads(JsonLineFormatter().format(_record(run_slug="abc")))
        assert line["run_slug"] == "abc"


class TestConfigureLogging:
    def test_rotating_file_handler(self, tmp_path, restore_root_logger):
        log_file = tmp_path / "logs" / "sync.log"
        configure_logging(LoggingConfig(level="debug", log_file=str(log_file), max_bytes=1024))

        rotating = [
            h for h in restore_root_logger.handlers
            if isinstance(h, logging.handlers.RotatingFileHandler)
        ]
        assert len(rotating) == 1
        assert rotating[0].maxBytes == 1024
        assert log_file.parent.is_dir()
        assert restore_root_logger.level == logging.DEBUG

    def test_plain_file_handler_without_rotation(self, tmp_path, restore_root_logger):
        configure_logging(LoggingConfig(log_file=str(tmp_path / "sync.log"), max_bytes=0))
        file_handlers = [
            h for h in restore_root_logger.handlers if isinstance(h, logging.FileHandler)
        ]
        assert len(file_handlers) == 1
        assert not isinstance(file_handlers[0], logging.handlers.RotatingFileHandler)

    def test_no_file(self, restore_root_logger):
        configure_logging(LoggingConfig(log_file=""))
        assert len(restore_root_logger.handlers) == 1
        assert logging.getLogger("httpx").level == logging.WARNING

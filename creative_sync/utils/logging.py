"""
Logging setup for the creative_sync runner and CLI.

``configure_logging(config)`` is called once by the CLI before any job
starts. Library modules only ever do ``logging.getLogger(__name__)``.

Every job runs in a thread named after it (``artifact_sync``,
``discovery_tracker``...) and the refresh-ahead loop in ``credential-refresh``,
so both formats carry the thread name; interleaved cycle lines stay
attributable::

    2026-10-19T08:20:00Z [INFO] author_sync creative_sync.jobs.base: Job [author_sync] cycle complete | ...

With ``json_format = true`` each record becomes one JSON object::

    {"ts": "2026-10-19T08:20:00Z", "level": "INFO", "job": "author_sync",
     "logger": "creative_sync.jobs.base", "msg": "..."}
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from creative_sync.config import LoggingConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# These log every request at INFO.
QUIET_LOGGERS = ("httpx", "httpcore")

_RESERVED = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime"}


class _UtcFormatter(logging.Formatter):
    converter = time.gmtime


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record; ``extra=`` fields are copied to the top level."""

    def format(self, record: logging.LogRecord) -> str:
        line: dict = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(LOG_DATE_FORMAT),
            "level": record.levelname,
            "job": record.threadName,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        line.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RESERVED and not key.startswith("_")
        )
        if record.exc_info:
            line["exc"] = self.formatException(record.exc_info)
        return json.dumps(line, default=str)


def _file_handler(config: "LoggingConfig") -> logging.Handler:
    path = Path(config.log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    if config.max_bytes > 0:
        return logging.handlers.RotatingFileHandler(
            path,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
    return logging.FileHandler(path, encoding="utf-8")


def configure_logging(config: "LoggingConfig") -> None:
    """Install stdout (and optionally file) handlers on the root logger.

    Replaces any handlers from an earlier call, so the CLI may call it again
    in the same process (tests do).
    """
    level = getattr(logging, config.level.upper(), logging.INFO)
    formatter: logging.Formatter = (
        JsonLineFormatter() if config.json_format else _UtcFormatter(LOG_FORMAT, LOG_DATE_FORMAT)
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_file:
        handlers.append(_file_handler(config))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

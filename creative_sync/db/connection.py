"""
SQLite connection management.

``open_connection()`` returns a configured long-lived connection for the
document store, which is shared by every job thread:
  - ``check_same_thread=False`` so job threads can share it (the store
    serializes access with its own lock).
  - ``isolation_level=None`` (autocommit); the store issues explicit
    ``BEGIN`` / ``COMMIT`` in ``atomic()`` blocks.
  - WAL journal mode and a busy timeout for lock contention with CLI readers.
  - ``sqlite3.Row`` factory so rows behave like dicts.

``get_connection()`` is a context manager over the same settings for
short-lived CLI use: commits on clean exit, rolls back on exception.

Usage::

    from creative_sync.db.connection import get_connection

    with get_connection("data/db/creative_sync.db") as conn:
        conn.execute("SELECT ...")
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

logger = logging.getLogger(__name__)


def open_connection(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
) -> sqlite3.Connection:
    """Open a configured SQLite connection in autocommit mode.

    The database file (and any parent directories) are created if they do
    not already exist.

    Args:
        db_path: Path to the SQLite database file. Use ``":memory:"`` for
            in-memory databases (useful in tests).
        wal_mode: If ``True``, enable WAL journal mode for better concurrency.
        busy_timeout_ms: Milliseconds to wait when the database is locked
            before raising ``OperationalError``.

    Returns:
        An open ``sqlite3.Connection``. The caller owns closing it.

    Raises:
        sqlite3.OperationalError: If the database cannot be opened.
    """
    if db_path != ":memory:":
        db_file = Path(db_path)
        db_file.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(
        db_path,
        timeout=busy_timeout_ms / 1000,
        check_same_thread=False,
        isolation_level=None,
    )
    conn.row_factory = sqlite3.Row

    # These pragmas must be set before any DML/DDL
    conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms};")
    if wal_mode and db_path != ":memory:":
        conn.execute("PRAGMA journal_mode = WAL;")

    logger.debug("Opened SQLite connection: %s (wal=%s)", db_path, wal_mode)
    return conn


@contextmanager
def get_connection(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
) -> Generator[sqlite3.Connection, None, None]:
    """Context manager yielding a configured SQLite connection.

    Statements run inside one explicit transaction, committed on clean exit
    and rolled back on exception.

    Args:
        db_path: Path to the SQLite database file.
        wal_mode: If ``True``, enable WAL journal mode.
        busy_timeout_ms: Lock wait before ``OperationalError``.

    Yields:
        An open, configured ``sqlite3.Connection``.
    """
    conn = open_connection(db_path, wal_mode=wal_mode, busy_timeout_ms=busy_timeout_ms)
    try:
        conn.execute("BEGIN;")
        yield conn
        conn.execute("COMMIT;")

    except Exception:
        conn.execute("ROLLBACK;")
        raise

    finally:
        conn.close()

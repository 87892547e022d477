"""
SQLite schema DDL for the document store.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is **idempotent**:
safe to call on an already-initialized database (e.g. after restart or in tests).

Tables:
  1. documents            keyed JSON documents; ``(collection, doc_id)`` is unique
                          and ``doc_id`` order is the cursor's traversal order
  2. appended_documents   append-only JSON documents (changelogs, events,
                          samples, job runs); never updated or deleted
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# ── DDL statements ─────────────────────────────────────────────────────────────

_DDL_DOCUMENTS = """
CREATE TABLE IF NOT EXISTS documents (
    collection  TEXT    NOT NULL,
    doc_id      TEXT    NOT NULL,
    body        TEXT    NOT NULL,
    updated_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    PRIMARY KEY (collection, doc_id)
);
"""

_DDL_APPENDED_DOCUMENTS = """
CREATE TABLE IF NOT EXISTS appended_documents (
    entry_id    INTEGER PRIMARY KEY AUTOINCREMENT,
    collection  TEXT    NOT NULL,
    body        TEXT    NOT NULL,
    created_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
"""

_DDL_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_appended_collection
    ON appended_documents (collection, entry_id);
CREATE INDEX IF NOT EXISTS idx_documents_updated
    ON documents (collection, updated_at);
"""

_ALL_DDL = [_DDL_DOCUMENTS, _DDL_APPENDED_DOCUMENTS, _DDL_INDEXES]

ALL_TABLE_NAMES = ["documents", "appended_documents"]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply all DDL statements to ``conn``.

    Idempotent — safe to call on an already-initialized database. Does not
    commit: the store's connections run in autocommit mode, and inside
    ``get_connection()`` the DDL joins the surrounding transaction.

    Args:
        conn: An open ``sqlite3.Connection``.
    """
    logger.debug("Applying schema to database...")

    for ddl in _ALL_DDL:
        # Each block may contain multiple semicolon-separated statements
        for statement in _split_ddl(ddl):
            conn.execute(statement)

    logger.info("Schema applied: %d tables, indexes created/verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    """Split a multi-statement DDL block on semicolons."""
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return list of table names present in the database (sorted)."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]


def get_existing_indexes(conn: sqlite3.Connection) -> list[str]:
    """Return list of index names present in the database (sorted)."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='index' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]

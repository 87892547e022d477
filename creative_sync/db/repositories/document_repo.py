"""
SQL for the ``documents`` and ``appended_documents`` tables.

``DocumentRepository`` stores JSON text; it neither parses bodies nor takes
locks. Dotted field paths (``computed.follower_count``) are translated to
SQLite JSON paths (``$.computed.follower_count``) for ``json_extract``.
"""

from __future__ import annotations

import re
import sqlite3
from typing import Any, Iterable, Optional

from creative_sync.db.repositories.base import BaseRepository

_FIELD_PATH = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")

# Keyed and append-only rows viewed as one relation, for counts and aggregates.
_ALL_ROWS = """
    (SELECT collection, body FROM documents
     UNION ALL
     SELECT collection, body FROM appended_documents)
"""


def json_path(field: str) -> str:
    """Convert a dotted field path to a SQLite JSON path.

    Raises:
        ValueError: If ``field`` is not a dotted identifier path.
    """
    if not _FIELD_PATH.match(field):
        raise ValueError(f"Invalid field path '{field}'.")
    return "$." + field


class DocumentRepository(BaseRepository):
    """CRUD over keyed documents plus inserts/reads of appended documents."""

    # ── Keyed documents ──────────────────────────────────────────────────────

    def get_body(self, collection: str, doc_id: str) -> Optional[str]:
        return self.fetchvalue(
            "SELECT body FROM documents WHERE collection = ? AND doc_id = ?;",
            (collection, doc_id),
        )

    def get_bodies(self, collection: str, doc_ids: list[str]) -> list[sqlite3.Row]:
        """Return ``(doc_id, body)`` rows for the ids that exist."""
        if not doc_ids:
            return []
        placeholders = ", ".join("?" for _ in doc_ids)
        return self.fetchall(
            f"SELECT doc_id, body FROM documents "
            f"WHERE collection = ? AND doc_id IN ({placeholders});",
            (collection, *doc_ids),
        )

    def upsert_body(self, collection: str, doc_id: str, body: str, updated_at: str) -> None:
        self.execute(
            """
            INSERT INTO documents (collection, doc_id, body, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (collection, doc_id)
            DO UPDATE SET body = excluded.body, updated_at = excluded.updated_at;
            """,
            (collection, doc_id, body, updated_at),
        )

    def delete_document(self, collection: str, doc_id: str) -> bool:
        cursor = self.execute(
            "DELETE FROM documents WHERE collection = ? AND doc_id = ?;",
            (collection, doc_id),
        )
        return cursor.rowcount > 0

    def page_after(
        self, collection: str, last_key: Optional[str], limit: int
    ) -> list[sqlite3.Row]:
        """Keyset pagination: the next ``limit`` rows with ``doc_id > last_key``."""
        if last_key is None:
            return self.fetchall(
                "SELECT doc_id, body FROM documents WHERE collection = ? "
                "ORDER BY doc_id LIMIT ?;",
                (collection, limit),
            )
        return self.fetchall(
            "SELECT doc_id, body FROM documents WHERE collection = ? AND doc_id > ? "
            "ORDER BY doc_id LIMIT ?;",
            (collection, last_key, limit),
        )

    # ── Appended documents ───────────────────────────────────────────────────

    def insert_appended(self, collection: str, bodies: Iterable[str], created_at: str) -> int:
        params = [(collection, body, created_at) for body in bodies]
        if not params:
            return 0
        self.executemany(
            "INSERT INTO appended_documents (collection, body, created_at) VALUES (?, ?, ?);",
            params,
        )
        return len(params)

    def appended_bodies(self, collection: str, limit: Optional[int] = None) -> list[str]:
        """Appended bodies in insertion order (oldest first)."""
        sql = "SELECT body FROM appended_documents WHERE collection = ? ORDER BY entry_id"
        params: tuple[Any, ...] = (collection,)
        if limit is not None:
            sql += " LIMIT ?"
            params += (limit,)
        return [row["body"] for row in self.fetchall(sql + ";", params)]

    # ── Counts and aggregates ────────────────────────────────────────────────

    def count(self, collection: str) -> int:
        return int(
            self.fetchvalue(
                f"SELECT COUNT(*) FROM {_ALL_ROWS} WHERE collection = ?;",
                (collection,),
                default=0,
            )
        )

    def aggregate(
        self,
        collection: str,
        field: str,
        where: Optional[dict[str, Any]] = None,
    ) -> sqlite3.Row:
        """COUNT/MIN/MAX/AVG of ``field`` over documents matching ``where``.

        ``where`` maps dotted field paths to required values (equality).
        Documents where ``field`` is missing or null are not counted.
        """
        clauses = ["collection = ?"]
        params: list[Any] = [collection]
        for key, value in (where or {}).items():
            if value is None:
                clauses.append("json_extract(body, ?) IS NULL")
                params.append(json_path(key))
            else:
                clauses.append("json_extract(body, ?) = ?")
                params.extend([json_path(key), value])

        sql = f"""
            SELECT COUNT(v) AS n, MIN(v) AS min_v, MAX(v) AS max_v, AVG(v) AS mean_v
            FROM (
                SELECT json_extract(body, ?) AS v
                FROM {_ALL_ROWS}
                WHERE {" AND ".join(clauses)}
            )
            WHERE v IS NOT NULL;
        """
        row = self.fetchone(sql, (json_path(field), *params))
        assert row is not None
        return row

"""
SQLite implementation of ``DocumentStore``.

One connection (autocommit mode) is shared by every job thread and guarded
by a re-entrant lock, so a job holding ``atomic()`` excludes other writers
for the duration of its block. Nested ``atomic()`` blocks become SAVEPOINTs:
an inner failure rolls back only the inner writes.

Every ``sqlite3.Error`` is re-raised as ``StoreError`` so callers see the
store's failures through the same transient-error path as network failures.

Usage::

    store = SqliteDocumentStore.from_config(config.database)
    with store.atomic():
        store.append("artifact_changelog", [entry.to_document()])
        store.upsert("artifacts", "1234-5678-9012", record)
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Generator, Iterable, Mapping, Optional

from creative_sync.db.connection import open_connection
from creative_sync.db.repositories.document_repo import DocumentRepository
from creative_sync.db.schema import apply_schema
from creative_sync.exceptions import StoreError
from creative_sync.store.base import (
    AggregateStats,
    BulkUpsertResult,
    DocumentStore,
    StoreCursor,
)
from creative_sync.utils.time_utils import to_iso, utcnow

logger = logging.getLogger(__name__)


def _dumps(document: dict[str, Any]) -> str:
    return json.dumps(document, ensure_ascii=False, allow_nan=False, separators=(",", ":"))


@contextmanager
def _translate_errors(action: str) -> Generator[None, None, None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise StoreError(f"{action} failed: {exc}") from exc


class SqliteStoreCursor(StoreCursor):
    """Keyset-paginated cursor: each page resumes after the last ``doc_id`` seen.

    Documents inserted or deleted behind the cursor's position during the walk
    are simply not seen; documents ahead of it are.
    """

    def __init__(self, store: "SqliteDocumentStore", collection: str, page_size: int) -> None:
        if page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {page_size}.")
        self.collection = collection
        self.page_size = page_size
        self._store = store
        self._last_key: Optional[str] = None
        self._exhausted = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def fetch_page(self) -> list[dict[str, Any]]:
        if self._closed:
            raise StoreError(f"Cursor over '{self.collection}' is closed.")
        if self._exhausted:
            return []

        rows = self._store._page_after(self.collection, self._last_key, self.page_size)
        if len(rows) < self.page_size:
            self._exhausted = True
        if rows:
            self._last_key = rows[-1]["doc_id"]
        return [json.loads(row["body"]) for row in rows]

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._store._release_cursor(self)


class SqliteDocumentStore(DocumentStore):
    """JSON documents in SQLite: ``documents`` (keyed) + ``appended_documents``.

    Args:
        db_path: SQLite file path, or ``":memory:"`` for tests.
        wal_mode: Enable WAL journal mode (ignored for ``:memory:``).
        busy_timeout_ms: Lock wait before ``OperationalError``.
        clock: Source of ``updated_at`` / ``created_at`` timestamps.
    """

    def __init__(
        self,
        db_path: str = ":memory:",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db_path = db_path
        self._clock = clock
        self._lock = threading.RLock()
        self._depth = 0
        self._open_cursors: set[int] = set()

        with _translate_errors(f"Opening store at {db_path}"):
            self._conn = open_connection(db_path, wal_mode=wal_mode, busy_timeout_ms=busy_timeout_ms)
            apply_schema(self._conn)
        self._repo = DocumentRepository(self._conn)

    @classmethod
    def from_config(cls, config: Any) -> "SqliteDocumentStore":
        """Build from a ``DatabaseConfig`` section."""
        return cls(
            db_path=config.db_path,
            wal_mode=config.wal_mode,
            busy_timeout_ms=config.busy_timeout_ms,
        )

    # ── Transactions ─────────────────────────────────────────────────────────

    @contextmanager
    def atomic(self) -> Generator[None, None, None]:
        with self._lock:
            savepoint = f"sp_{self._depth}" if self._depth else None
            with _translate_errors("Beginning transaction"):
                if savepoint:
                    self._conn.execute(f"SAVEPOINT {savepoint};")
                else:
                    self._conn.execute("BEGIN IMMEDIATE;")
            self._depth += 1
            try:
                yield
            except BaseException:
                self._depth -= 1
                self._rollback(savepoint)
                raise
            self._depth -= 1
            with _translate_errors("Committing transaction"):
                try:
                    if savepoint:
                        self._conn.execute(f"RELEASE {savepoint};")
                    else:
                        self._conn.execute("COMMIT;")
                except sqlite3.Error:
                    self._rollback(savepoint)
                    raise

    def _rollback(self, savepoint: Optional[str]) -> None:
        try:
            if savepoint:
                self._conn.execute(f"ROLLBACK TO {savepoint};")
                self._conn.execute(f"RELEASE {savepoint};")
            elif self._conn.in_transaction:
                self._conn.execute("ROLLBACK;")
        except sqlite3.Error as exc:
            # The caller's exception is already propagating.
            logger.error("Rollback failed on %s: %s", self.db_path, exc)

    # ── Keyed documents ──────────────────────────────────────────────────────

    def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        with self._lock, _translate_errors(f"Reading {collection}/{doc_id}"):
            body = self._repo.get_body(collection, doc_id)
        return None if body is None else json.loads(body)

    def get_many(self, collection: str, doc_ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        ids = list(dict.fromkeys(doc_ids))
        with self._lock, _translate_errors(f"Reading {len(ids)} documents from {collection}"):
            rows = self._repo.get_bodies(collection, ids)
        return {row["doc_id"]: json.loads(row["body"]) for row in rows}

    def bulk_upsert(
        self, collection: str, documents: Mapping[str, dict[str, Any]]
    ) -> BulkUpsertResult:
        result = BulkUpsertResult()
        rows: list[tuple[str, str]] = []
        for doc_id, document in documents.items():
            try:
                rows.append((doc_id, _dumps(document)))
            except (TypeError, ValueError) as exc:
                result.failed[doc_id] = f"not JSON-serializable: {exc}"

        if not rows:
            return result

        updated_at = to_iso(self._clock())
        with self.atomic(), _translate_errors(f"Upserting {len(rows)} documents into {collection}"):
            for doc_id, body in rows:
                self._repo.upsert_body(collection, doc_id, body, updated_at)
        result.succeeded.extend(doc_id for doc_id, _ in rows)

        if result.failed:
            logger.warning(
                "bulk_upsert into %s: %d succeeded, %d failed (first: %s)",
                collection, len(result.succeeded), len(result.failed),
                next(iter(result.failed.items())),
            )
        return result

    def delete(self, collection: str, doc_id: str) -> bool:
        with self.atomic(), _translate_errors(f"Deleting {collection}/{doc_id}"):
            return self._repo.delete_document(collection, doc_id)

    # ── Appended documents ───────────────────────────────────────────────────

    def append(self, collection: str, documents: Iterable[dict[str, Any]]) -> int:
        bodies = [_dumps(document) for document in documents]
        if not bodies:
            return 0
        created_at = to_iso(self._clock())
        with self.atomic(), _translate_errors(f"Appending {len(bodies)} documents to {collection}"):
            return self._repo.insert_appended(collection, bodies, created_at)

    def fetch_appended(
        self, collection: str, limit: Optional[int] = None
    ) -> list[dict[str, Any]]:
        with self._lock, _translate_errors(f"Reading appended {collection}"):
            bodies = self._repo.appended_bodies(collection, limit)
        return [json.loads(body) for body in bodies]

    # ── Counts and aggregates ────────────────────────────────────────────────

    def count(self, collection: str) -> int:
        with self._lock, _translate_errors(f"Counting {collection}"):
            return self._repo.count(collection)

    def aggregate(
        self,
        collection: str,
        field: str,
        where: Optional[dict[str, Any]] = None,
    ) -> AggregateStats:
        with self._lock, _translate_errors(f"Aggregating {collection}.{field}"):
            row = self._repo.aggregate(collection, field, where)
        return AggregateStats(
            count=int(row["n"]),
            min=row["min_v"],
            max=row["max_v"],
            mean=row["mean_v"],
        )

    # ── Cursors ──────────────────────────────────────────────────────────────

    def open_cursor(self, collection: str, page_size: int) -> SqliteStoreCursor:
        cursor = SqliteStoreCursor(self, collection, page_size)
        with self._lock:
            self._open_cursors.add(id(cursor))
        logger.debug("Opened cursor over %s (page_size=%d)", collection, page_size)
        return cursor

    @property
    def open_cursor_count(self) -> int:
        """Cursors opened and not yet closed."""
        with self._lock:
            return len(self._open_cursors)

    def _page_after(
        self, collection: str, last_key: Optional[str], limit: int
    ) -> list[sqlite3.Row]:
        with self._lock, _translate_errors(f"Paging {collection}"):
            return self._repo.page_after(collection, last_key, limit)

    def _release_cursor(self, cursor: SqliteStoreCursor) -> None:
        with self._lock:
            self._open_cursors.discard(id(cursor))

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def close(self) -> None:
        with self._lock:
            if self._open_cursors:
                logger.warning(
                    "Closing store %s with %d open cursor(s).",
                    self.db_path, len(self._open_cursors),
                )
            self._conn.close()

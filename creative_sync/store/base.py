"""
Document store contract used by the sync core.

The core (cursor walker, change detector, jobs) depends only on
``DocumentStore`` and ``StoreCursor``; ``SqliteDocumentStore`` is the
concrete implementation.

Guarantees every implementation must provide:
  - per-call atomicity: one ``bulk_upsert`` or ``append`` call is applied
    completely or not at all;
  - ``atomic()``: a block whose writes commit together or roll back
    together (used to pair a changelog entry with its record update);
  - ``open_cursor()`` iterates a keyed collection in natural key order.

Failures that may succeed later are raised as ``StoreError`` (a
``TransientError``), so the rate scheduler's retry policy covers them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Mapping, Optional

from creative_sync.exceptions import StoreError

# ── Collections ───────────────────────────────────────────────────────────────

ARTIFACTS = "artifacts"
AUTHORS = "authors"
DISCOVERY_CURRENT = "discovery_current"

ARTIFACT_CHANGELOG = "artifact_changelog"
AUTHOR_CHANGELOG = "author_changelog"
AUTHOR_FOLLOWER_HISTORY = "author_follower_history"
DISCOVERY_EVENTS = "discovery_events"
CCU_SAMPLES = "ccu_samples"
JOB_RUNS = "job_runs"

KEYED_COLLECTIONS = frozenset({ARTIFACTS, AUTHORS, DISCOVERY_CURRENT})
APPEND_ONLY_COLLECTIONS = frozenset({
    ARTIFACT_CHANGELOG,
    AUTHOR_CHANGELOG,
    AUTHOR_FOLLOWER_HISTORY,
    DISCOVERY_EVENTS,
    CCU_SAMPLES,
    JOB_RUNS,
})


# ── Result types ──────────────────────────────────────────────────────────────


@dataclass
class BulkUpsertResult:
    """Per-item outcome of ``bulk_upsert``."""

    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass(frozen=True)
class AggregateStats:
    """Summary statistics of one numeric field over a collection."""

    count: int
    min: Optional[float] = None
    max: Optional[float] = None
    mean: Optional[float] = None


# ── Contracts ─────────────────────────────────────────────────────────────────


class StoreCursor(ABC):
    """Forward-only page iterator over one keyed collection.

    A cursor holds store resources until ``close()``; callers release it in a
    ``finally`` block or use it as a context manager.
    """

    collection: str
    page_size: int

    @abstractmethod
    def fetch_page(self) -> list[dict[str, Any]]:
        """Return the next page of documents; ``[]`` once exhausted."""

    @abstractmethod
    def close(self) -> None:
        """Release the cursor. Idempotent."""

    @property
    @abstractmethod
    def closed(self) -> bool: ...

    def __enter__(self) -> "StoreCursor":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class DocumentStore(ABC):
    """Abstract JSON document store."""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        """Return one keyed document, or ``None`` if absent."""

    @abstractmethod
    def get_many(self, collection: str, doc_ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        """Return ``{doc_id: document}`` for the ids that exist."""

    @abstractmethod
    def bulk_upsert(
        self, collection: str, documents: Mapping[str, dict[str, Any]]
    ) -> BulkUpsertResult:
        """Insert or replace many keyed documents; reports per-item failures."""

    @abstractmethod
    def append(self, collection: str, documents: Iterable[dict[str, Any]]) -> int:
        """Append documents to an append-only collection; returns the count."""

    @abstractmethod
    def fetch_appended(
        self, collection: str, limit: Optional[int] = None
    ) -> list[dict[str, Any]]:
        """Appended documents, oldest first. Not used by the sync core."""

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> bool:
        """Delete a keyed document; ``True`` if it existed."""

    @abstractmethod
    def count(self, collection: str) -> int: ...

    @abstractmethod
    def aggregate(
        self,
        collection: str,
        field: str,
        where: Optional[dict[str, Any]] = None,
    ) -> AggregateStats:
        """Count/min/max/mean of a dotted numeric ``field``."""

    @abstractmethod
    def open_cursor(self, collection: str, page_size: int) -> StoreCursor: ...

    @abstractmethod
    def atomic(self) -> AbstractContextManager[None]:
        """Context manager grouping writes into one all-or-nothing unit."""

    @abstractmethod
    def close(self) -> None: ...

    # ── Conveniences built on the contract ───────────────────────────────────

    def upsert(self, collection: str, doc_id: str, document: dict[str, Any]) -> None:
        """Upsert a single document, raising if the store rejected it."""
        result = self.bulk_upsert(collection, {doc_id: document})
        if not result.ok:
            raise StoreError(f"Upsert of {collection}/{doc_id} failed: {result.failed[doc_id]}")

    def iter_documents(self, collection: str, page_size: int = 1000) -> Iterator[dict[str, Any]]:
        """Yield every document of a keyed collection; the cursor is always closed."""
        cursor = self.open_cursor(collection, page_size)
        try:
            while page := cursor.fetch_page():
                yield from page
        finally:
            cursor.close()

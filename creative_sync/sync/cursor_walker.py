"""
Resumable-by-restart traversal of a whole keyed collection.

``CursorWalker.for_each_page()`` opens a store cursor, hands each page to a
handler and always closes the cursor, whether the walk completes, is stopped,
or ends with a credential failure. Cursor state lives only for the duration
of one walk: a restarted process simply walks from the first key again,
which is safe because every handler write is an idempotent upsert.

A handler failure on one page is logged and counted; the walk moves on to
the next page. Records mutated during the walk may be seen zero or two times.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

from creative_sync.exceptions import CredentialError
from creative_sync.store.base import DocumentStore

logger = logging.getLogger(__name__)

PageHandler = Callable[[list[dict[str, Any]]], Any]


@dataclass
class WalkSummary:
    """What one traversal did."""

    collection: str
    page_size: int
    pages: int = 0
    records: int = 0
    page_failures: int = 0
    stopped: bool = False

    @property
    def completed(self) -> bool:
        return not self.stopped


class CursorWalker:
    """Drives page handlers over a store collection in natural key order."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    def for_each_page(
        self,
        collection: str,
        page_size: int,
        handler: PageHandler,
        stop: Optional[threading.Event] = None,
    ) -> WalkSummary:
        """Invoke ``handler(page)`` once per page of ``collection``.

        Args:
            collection: Keyed collection to traverse.
            page_size: Documents per page.
            handler: Called with each non-empty page.
            stop: When set, the walk ends after the current page.

        Returns:
            ``WalkSummary`` with page/record counts and page failures.

        Raises:
            CredentialError: From the handler; ends the walk (cursor released).
            StoreError: If the cursor itself cannot be read.
        """
        summary = WalkSummary(collection=collection, page_size=page_size)
        cursor = self.store.open_cursor(collection, page_size)
        try:
            while True:
                if stop is not None and stop.is_set():
                    summary.stopped = True
                    logger.info(
                        "Walk over %s stopped after %d pages.", collection, summary.pages
                    )
                    break

                page = cursor.fetch_page()
                if not page:
                    break

                summary.pages += 1
                summary.records += len(page)
                try:
                    handler(page)
                except CredentialError:
                    raise
                except Exception as exc:
                    summary.page_failures += 1
                    logger.error(
                        "Page %d of %s failed (%d records): %s",
                        summary.pages, collection, len(page), exc, exc_info=True,
                    )
        finally:
            cursor.close()

        logger.debug(
            "Walk over %s done | pages=%d records=%d page_failures=%d",
            collection, summary.pages, summary.records, summary.page_failures,
        )
        return summary

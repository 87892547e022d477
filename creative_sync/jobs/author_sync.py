"""
Author full-population sync.

Walks every stored author in pages of ``sync.author_page_size`` and fetches
each profile under the ``profiles`` staggered-parallel policy. A profile the
platform answers with 404 is deleted from the mirror. Follower-count changes
go to ``author_follower_history``; every other tracked change goes to
``author_changelog``.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

from creative_sync.exceptions import NotFoundError, PermanentItemError
from creative_sync.ingestion.normalize import normalize_author
from creative_sync.jobs.base import JobContext, SyncJob
from creative_sync.models.job_run import JobRun
from creative_sync.store.base import AUTHORS
from creative_sync.sync.change_detector import ChangeDetector
from creative_sync.sync.cursor_walker import CursorWalker
from creative_sync.sync.profiles import AUTHOR_PROFILE

logger = logging.getLogger(__name__)

ENDPOINT_CLASS = "profiles"


class AuthorSyncJob(SyncJob):
    job_name = "author_sync"

    def __init__(self, context: JobContext) -> None:
        super().__init__(context)
        self.authors = ChangeDetector(self.store, AUTHOR_PROFILE, self.job_name, self.clock)

    def _execute(self, run: JobRun, stop: Optional[threading.Event]) -> None:
        walker = CursorWalker(self.store)
        summary = walker.for_each_page(
            AUTHORS,
            self.config.sync.author_page_size,
            lambda page: self.sync_page(run, page, stop),
            stop,
        )
        run.errored += summary.page_failures
        run.details["pages"] = summary.pages

    def _fetch(self, author_id: str) -> dict[str, Any]:
        return self.client.fetch_author_profile(author_id, self.token())

    def sync_page(
        self,
        run: JobRun,
        page: list[dict[str, Any]],
        stop: Optional[threading.Event] = None,
    ) -> None:
        ids = [doc["id"] for doc in page if doc.get("id")]
        results = self.scheduler.map(ENDPOINT_CLASS, self._fetch, ids, stop)

        observations: dict[str, dict[str, Any]] = {}
        for author_id, result in zip(ids, results):
            if result.cancelled:
                continue
            if not result.ok:
                if isinstance(result.error, NotFoundError):
                    if self.authors.delete(author_id):
                        run.bump("deleted")
                    run.processed += 1
                else:
                    run.errored += 1
                    logger.warning("Profile fetch for %s failed: %s", author_id, result.error)
                continue
            try:
                record_id, fresh = normalize_author(author_id, result.value)
            except PermanentItemError as exc:
                run.errored += 1
                logger.warning("Skipping profile of %s: %s", author_id, exc)
                continue
            observations[record_id] = fresh

        batch = self.authors.reconcile_many(observations)
        run.processed += len(batch.results)
        run.changed += len(batch.changed)
        run.errored += len(batch.failed)
        followers = sum(1 for result in batch.results if result.history)
        if followers:
            run.bump("follower_changes", followers)

"""
Catalog discovery: find artifacts the mirror does not know yet.

Walks every stored author and pages through their creator page (the
``creator_page`` class is unbounded, capped locally by ``max_in_flight``).
For each author:
  - ``computed.artifact_count`` is set to the number of published links;
  - links whose artifact is not stored yet become placeholder records
    (origin ``catalog_discovery``) that the artifact sync enriches on its
    next pass.
"""

from __future__ import annotations

import logging
import threading
from functools import partial
from typing import Any, Optional

from creative_sync.ingestion.normalize import link_code
from creative_sync.jobs.base import JobContext, SyncJob
from creative_sync.jobs.creator_pages import fetch_author_catalog
from creative_sync.models.job_run import JobRun
from creative_sync.store.base import AUTHORS
from creative_sync.sync.change_detector import ChangeDetector
from creative_sync.sync.cursor_walker import CursorWalker
from creative_sync.sync.profiles import ARTIFACT_PROFILE, AUTHOR_PROFILE

logger = logging.getLogger(__name__)

ENDPOINT_CLASS = "creator_page"


class CatalogDiscoveryJob(SyncJob):
    job_name = "catalog_discovery"

    def __init__(self, context: JobContext) -> None:
        super().__init__(context)
        self.artifacts = ChangeDetector(self.store, ARTIFACT_PROFILE, self.job_name, self.clock)
        self.authors = ChangeDetector(self.store, AUTHOR_PROFILE, self.job_name, self.clock)

    def _execute(self, run: JobRun, stop: Optional[threading.Event]) -> None:
        walker = CursorWalker(self.store)
        summary = walker.for_each_page(
            AUTHORS,
            self.config.sync.author_page_size,
            lambda page: self.discover_page(run, page, stop),
            stop,
        )
        run.errored += summary.page_failures
        run.details["pages"] = summary.pages

    def discover_page(
        self,
        run: JobRun,
        page: list[dict[str, Any]],
        stop: Optional[threading.Event] = None,
    ) -> None:
        author_ids = [doc["id"] for doc in page if doc.get("id")]
        fetch = partial(
            fetch_author_catalog,
            self.client,
            self.token,
            limit=self.config.sync.creator_page_limit,
        )
        results = self.scheduler.map(ENDPOINT_CLASS, fetch, author_ids, stop)

        counts: dict[str, dict[str, Any]] = {}
        owners: dict[str, dict[str, Any]] = {}
        for author_id, result in zip(author_ids, results):
            if result.cancelled:
                continue
            if not result.ok:
                run.errored += 1
                logger.warning("Creator page of %s failed: %s", author_id, result.error)
                continue
            codes = list(dict.fromkeys(code for code in map(link_code, result.value) if code))
            counts[author_id] = {"computed": {"artifact_count": len(codes)}}
            for code in codes:
                owners.setdefault(code, {"author_id": author_id})

        created = self.artifacts.ensure_exists(owners, metadata=owners)
        if created:
            run.bump("new_artifacts", len(created))
            run.changed += len(created)

        batch = self.authors.reconcile_many(counts)
        run.processed += len(batch.results)
        run.errored += len(batch.failed)

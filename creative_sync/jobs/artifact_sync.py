"""
Artifact full-population sync.

Walks every stored artifact in pages of ``sync.artifact_page_size`` (at most
100, the bulk lookup limit). Each page is one bulk ``links`` request under
the fixed-delay policy, so a 100-artifact page costs one 6-second slot.

Per page:
  - every returned payload is normalized and reconciled in one batch
    (changelog entries written for tracked-field changes);
  - ids the platform did not return are counted as ``not_found``; the
    record is kept, since the bulk endpoint also omits temporarily
    unavailable artifacts;
  - authors referenced by the page that the mirror does not know yet get a
    placeholder record (origin ``artifact_sync_auto_discover``) for the
    author sync to enrich.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

from creative_sync.exceptions import PermanentItemError
from creative_sync.ingestion.normalize import normalize_artifact
from creative_sync.jobs.base import JobContext, SyncJob
from creative_sync.models.job_run import JobRun
from creative_sync.store.base import ARTIFACTS
from creative_sync.sync.change_detector import ChangeDetector
from creative_sync.sync.cursor_walker import CursorWalker
from creative_sync.sync.profiles import ARTIFACT_PROFILE, AUTHOR_PROFILE

logger = logging.getLogger(__name__)

ENDPOINT_CLASS = "links"


class ArtifactSyncJob(SyncJob):
    job_name = "artifact_sync"

    def __init__(self, context: JobContext) -> None:
        super().__init__(context)
        self.artifacts = ChangeDetector(self.store, ARTIFACT_PROFILE, self.job_name, self.clock)
        self.authors = ChangeDetector(
            self.store, AUTHOR_PROFILE, "artifact_sync_auto_discover", self.clock
        )

    def _execute(self, run: JobRun, stop: Optional[threading.Event]) -> None:
        walker = CursorWalker(self.store)
        summary = walker.for_each_page(
            ARTIFACTS,
            self.config.sync.artifact_page_size,
            lambda page: self.sync_page(run, page, stop),
            stop,
        )
        run.errored += summary.page_failures
        run.details["pages"] = summary.pages

    def sync_page(
        self,
        run: JobRun,
        page: list[dict[str, Any]],
        stop: Optional[threading.Event] = None,
    ) -> None:
        ids = [doc["id"] for doc in page if doc.get("id")]
        if not ids:
            return

        result = self.scheduler.schedule(
            ENDPOINT_CLASS, lambda: self.client.fetch_artifacts(ids, self.token()), stop
        )
        if result.cancelled:
            return
        if not result.ok:
            run.errored += len(ids)
            logger.warning("Bulk lookup of %d artifacts failed: %s", len(ids), result.error)
            return

        observations: dict[str, dict[str, Any]] = {}
        for payload in result.value:
            try:
                artifact_id, fresh = normalize_artifact(payload)
            except PermanentItemError as exc:
                run.errored += 1
                logger.warning("Skipping artifact payload: %s", exc)
                continue
            observations[artifact_id] = fresh

        missing = set(ids) - set(observations)
        if missing:
            run.bump("not_found", len(missing))

        batch = self.artifacts.reconcile_many(observations)
        run.processed += len(batch.results)
        run.changed += len(batch.changed)
        run.errored += len(batch.failed)

        self._discover_authors(run, observations)

    def _discover_authors(self, run: JobRun, observations: dict[str, dict[str, Any]]) -> None:
        hints: dict[str, dict[str, Any]] = {}
        for fresh in observations.values():
            authored = fresh.get("authored") or {}
            author_id = authored.get("author_id")
            if author_id and author_id not in hints:
                hints[author_id] = {"name_hint": authored.get("author_name")}
        if not hints:
            return
        created = self.authors.ensure_exists(hints, metadata=hints)
        if created:
            run.bump("new_authors", len(created))

"""
Player-count sampler.

Fires on every ``sampler.interval_minutes`` wall-clock boundary (UTC). Each
pass walks every stored author, reads their creator page (which carries the
current player count of each published artifact) and writes one sample per
artifact to ``ccu_samples``, stamped with the boundary rather than the time
of the fetch. Artifacts with no reading (negative count) are skipped. The
latest count is also written to the artifact's ``computed.player_count``.
Artifacts not mirrored yet get a placeholder record first, owned by the
author whose page listed them.

A pass that overruns the next boundary makes the sampler skip to the one
after it; missed boundaries are never backfilled.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from functools import partial
from typing import Any, Optional

from creative_sync.ingestion.normalize import link_code
from creative_sync.jobs.base import JobContext, SyncJob
from creative_sync.jobs.creator_pages import fetch_author_catalog
from creative_sync.models.job_run import JobRun
from creative_sync.sampling.time_aligned import Observation, sample, wait_for_next_boundary
from creative_sync.store.base import AUTHORS, CCU_SAMPLES
from creative_sync.sync.change_detector import ChangeDetector
from creative_sync.sync.cursor_walker import CursorWalker
from creative_sync.sync.profiles import ARTIFACT_PROFILE
from creative_sync.utils.time_utils import floor_to_boundary, to_iso

logger = logging.getLogger(__name__)

ENDPOINT_CLASS = "creator_page"
SAMPLE_SOURCE = "creator_page_api"


class PlayerCountSamplerJob(SyncJob):
    job_name = "player_count_sampler"

    def __init__(self, context: JobContext) -> None:
        super().__init__(context)
        self.artifacts = ChangeDetector(self.store, ARTIFACT_PROFILE, self.job_name, self.clock)
        self.boundary: Optional[datetime] = None

    def _wait_until_due(self, stop: threading.Event, first: bool) -> bool:
        boundary = wait_for_next_boundary(
            self.config.sampler.interval_minutes, stop, clock=self.clock, sleep=self._sleep
        )
        if boundary is None:
            return False
        self.boundary = boundary
        return True

    def _execute(self, run: JobRun, stop: Optional[threading.Event]) -> None:
        boundary = self.boundary or floor_to_boundary(
            self.clock(), self.config.sampler.interval_minutes
        )
        self.boundary = None
        run.details["boundary"] = to_iso(boundary)

        walker = CursorWalker(self.store)
        summary = walker.for_each_page(
            AUTHORS,
            self.config.sync.author_page_size,
            lambda page: self.sample_page(run, page, boundary, stop),
            stop,
        )
        run.errored += summary.page_failures
        run.details["pages"] = summary.pages

    def sample_page(
        self,
        run: JobRun,
        page: list[dict[str, Any]],
        boundary: datetime,
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

        observations: list[Observation] = []
        for author_id, result in zip(author_ids, results):
            if result.cancelled:
                continue
            if not result.ok:
                run.errored += 1
                logger.warning("Creator page of %s failed: %s", author_id, result.error)
                continue
            for link in result.value:
                code = link_code(link)
                if code:
                    observations.append((code, author_id, link.get("globalCCU")))

        samples = sample(observations, boundary, SAMPLE_SOURCE)
        if not samples:
            return
        self.store.append(CCU_SAMPLES, [s.to_document() for s in samples])
        run.processed += len(samples)
        run.changed += len(samples)

        owners = {s.entity_id: {"author_id": s.owner_id} for s in samples if s.owner_id}
        created = self.artifacts.ensure_exists([s.entity_id for s in samples], metadata=owners)
        if created:
            run.bump("new_artifacts", len(created))

        updates = {
            s.entity_id: {
                "computed": {"player_count": s.value, "player_count_at": to_iso(boundary)}
            }
            for s in samples
        }
        batch = self.artifacts.reconcile_many(updates)
        run.errored += len(batch.failed)

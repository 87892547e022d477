"""
Discovery tracker: ranked discovery panels → ADDED / REMOVED / MOVED events.

One cycle (every ``discovery.interval_minutes``, measured start to start):
  1. load the stored snapshot of every scope from ``discovery_current``;
  2. for each configured surface, fetch its panel list, then every panel in
     every region, at most ``discovery.max_pages`` pages each;
  3. diff each successfully fetched scope against its stored snapshot and,
     per scope in one transaction, append the events and replace the stored
     snapshot (a scope that came back empty keeps an empty snapshot);
  4. create placeholders for artifacts seen for the first time, look them up
     in bulk, reconcile them, and create placeholders for their authors;
  5. write each affected artifact's ``computed.discovery`` summary.

A scope whose fetch failed keeps its stored snapshot and produces no events.
A scope never stored before is a cold start: its snapshot is stored but
its ADDED events are not persisted unless
``discovery.suppress_cold_start_events`` is false.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Optional

from creative_sync.discovery.positional_differ import Snapshot, diff_all
from creative_sync.discovery.snapshots import (
    build_snapshots,
    departed_summary,
    discovery_summary,
    snapshot_from_document,
    snapshot_to_document,
)
from creative_sync.exceptions import PermanentItemError, StoreError
from creative_sync.ingestion.epic_client import MAX_BULK_ARTIFACTS
from creative_sync.ingestion.normalize import normalize_artifact
from creative_sync.jobs.base import JobContext, SyncJob
from creative_sync.models.discovery import DiffResult, Scope
from creative_sync.models.job_run import JobRun
from creative_sync.store.base import DISCOVERY_CURRENT, DISCOVERY_EVENTS
from creative_sync.sync.change_detector import ChangeDetector
from creative_sync.sync.profiles import ARTIFACT_PROFILE, AUTHOR_PROFILE

logger = logging.getLogger(__name__)

ENDPOINT_CLASS = "discovery"
AUTO_DISCOVER_ORIGIN = "discovery_auto_discover"


class DiscoveryTrackerJob(SyncJob):
    job_name = "discovery_tracker"

    def __init__(self, context: JobContext) -> None:
        super().__init__(context)
        self.artifacts = ChangeDetector(self.store, ARTIFACT_PROFILE, self.job_name, self.clock)
        self.new_artifacts = ChangeDetector(
            self.store, ARTIFACT_PROFILE, AUTO_DISCOVER_ORIGIN, self.clock
        )
        self.new_authors = ChangeDetector(
            self.store, AUTHOR_PROFILE, AUTO_DISCOVER_ORIGIN, self.clock
        )
        self._last_started: Optional[float] = None
        self._monotonic = time.monotonic

    # ── Cadence ───────────────────────────────────────────────────────────────

    def _wait_until_due(self, stop: threading.Event, first: bool) -> bool:
        if first or self._last_started is None:
            self._last_started = self._monotonic()
            return True
        interval = self.config.discovery.interval_minutes * 60
        wait = interval - (self._monotonic() - self._last_started)
        logger.info("Next discovery pass in %.1f minutes.", max(wait, 0.0) / 60)
        if wait > 0 and not self._sleep(wait, stop):
            return False
        self._last_started = self._monotonic()
        return True

    # ── Cycle ─────────────────────────────────────────────────────────────────

    def _execute(self, run: JobRun, stop: Optional[threading.Event]) -> None:
        now = self.clock()
        previous = self.load_previous()
        pages, fetched = self.fetch_surfaces(run, previous, stop)
        current = build_snapshots(pages)

        results = diff_all(previous, current, fetched, at=now)
        for result in results:
            self._write_scope(run, result, current.get(result.scope, []))

        effective: dict[Scope, Snapshot] = {
            scope: snapshot for scope, snapshot in previous.items() if scope not in fetched
        }
        effective.update(
            (scope, snapshot) for scope, snapshot in current.items() if snapshot
        )
        self._auto_discover(run, effective, stop)
        self._write_summaries(run, previous, effective, now)

    def load_previous(self) -> dict[Scope, list[tuple[str, int]]]:
        previous = {}
        for document in self.store.iter_documents(DISCOVERY_CURRENT):
            scope, snapshot = snapshot_from_document(document)
            previous[scope] = snapshot
        return previous

    def fetch_surfaces(
        self,
        run: JobRun,
        previous: dict[Scope, Any],
        stop: Optional[threading.Event] = None,
    ) -> tuple[list[tuple[Scope, list[str]]], set[Scope]]:
        """Fetch every panel page of every surface and region.

        Returns:
            ``(pages, fetched)``: page results in fetch order, and the scopes
            whose fetch completed. A stored scope whose panel is no longer
            listed on a successfully fetched surface counts as fetched (empty).
        """
        pages: list[tuple[Scope, list[str]]] = []
        fetched: set[Scope] = set()
        regions = self.config.discovery.regions

        for surface in self.config.discovery.surfaces:
            listing = self.scheduler.schedule(
                ENDPOINT_CLASS,
                lambda surface=surface: self.client.fetch_surface_panels(surface, self.token()),
                stop,
            )
            if listing.cancelled:
                return pages, fetched
            if not listing.ok:
                run.errored += 1
                logger.warning("Panel list of %s failed: %s", surface, listing.error)
                continue

            panels = listing.value
            panel_names = {panel.name for panel in panels.panels}
            for scope in previous:
                if scope.surface == surface and scope.panel not in panel_names:
                    fetched.add(scope)

            for panel in panels.panels:
                for region in regions:
                    scope = Scope(surface=surface, panel=panel.name, region=region)
                    item_ids = self._fetch_scope(run, scope, panels.test_variant, stop)
                    if item_ids is None:
                        if stop is not None and stop.is_set():
                            return pages, fetched
                        continue
                    pages.append((scope, item_ids))
                    fetched.add(scope)

        return pages, fetched

    def _fetch_scope(
        self,
        run: JobRun,
        scope: Scope,
        test_variant: str,
        stop: Optional[threading.Event],
    ) -> Optional[list[str]]:
        """All item ids of one scope in rank order; ``None`` if any page failed."""
        item_ids: list[str] = []
        for page_number in range(self.config.discovery.max_pages):
            result = self.scheduler.schedule(
                ENDPOINT_CLASS,
                lambda page_number=page_number: self.client.fetch_panel_page(
                    scope.surface,
                    scope.panel,
                    test_variant,
                    scope.region,
                    page_number,
                    self.token(),
                    results_per_page=self.config.discovery.results_per_page,
                ),
                stop,
            )
            if result.cancelled:
                return None
            if not result.ok:
                run.errored += 1
                logger.warning("Fetch of %s page %d failed: %s", scope, page_number, result.error)
                return None
            page = result.value
            item_ids.extend(page.item_ids)
            if page.invalid_surface or not page.has_more or not page.results:
                break
        return item_ids

    # ── Writes ────────────────────────────────────────────────────────────────

    def _write_scope(self, run: JobRun, result: DiffResult, snapshot: Snapshot) -> None:
        counts = result.counts()
        persist = bool(result.events) and not (
            result.cold_start and self.config.discovery.suppress_cold_start_events
        )
        try:
            with self.store.atomic():
                if persist:
                    self.store.append(
                        DISCOVERY_EVENTS, [event.to_document() for event in result.events]
                    )
                self.store.upsert(
                    DISCOVERY_CURRENT,
                    result.scope.key,
                    snapshot_to_document(result.scope, snapshot, result.timestamp),
                )
        except StoreError as exc:
            run.errored += 1
            logger.error("Writing scope %s failed: %s", result.scope, exc)
            return

        run.processed += 1
        if result.cold_start:
            run.bump("cold_start_scopes")
        if persist:
            run.changed += len(result.events)
            for kind, count in counts.items():
                if count:
                    run.bump(kind.lower(), count)

    def _auto_discover(
        self,
        run: JobRun,
        effective: dict[Scope, Snapshot],
        stop: Optional[threading.Event],
    ) -> None:
        seen = sorted({item_id for snapshot in effective.values() for item_id, _ in snapshot})
        created = self.new_artifacts.ensure_exists(seen)
        if not created:
            return
        run.bump("new_artifacts", len(created))

        authors: dict[str, dict[str, Any]] = {}
        for start in range(0, len(created), MAX_BULK_ARTIFACTS):
            chunk = created[start:start + MAX_BULK_ARTIFACTS]
            result = self.scheduler.schedule(
                "links", lambda chunk=chunk: self.client.fetch_artifacts(chunk, self.token()), stop
            )
            if result.cancelled:
                return
            if not result.ok:
                run.errored += 1
                logger.warning("Lookup of %d new artifacts failed: %s", len(chunk), result.error)
                continue

            observations = {}
            for payload in result.value:
                try:
                    artifact_id, fresh = normalize_artifact(payload)
                except PermanentItemError as exc:
                    logger.warning("Skipping new artifact payload: %s", exc)
                    continue
                observations[artifact_id] = fresh
                author_id = fresh["authored"].get("author_id")
                if author_id:
                    authors.setdefault(author_id, {"name_hint": fresh["authored"].get("author_name")})
            self.new_artifacts.reconcile_many(observations)

        new_authors = self.new_authors.ensure_exists(authors, metadata=authors)
        if new_authors:
            run.bump("new_authors", len(new_authors))

    def _write_summaries(
        self,
        run: JobRun,
        previous: dict[Scope, Snapshot],
        effective: dict[Scope, Snapshot],
        now: Any,
    ) -> None:
        summaries = discovery_summary(effective, now)
        before = {item_id for snapshot in previous.values() for item_id, _ in snapshot}
        updates = {
            item_id: {"computed": {"discovery": summary}}
            for item_id, summary in summaries.items()
        }
        for item_id in sorted(before - set(summaries)):
            updates[item_id] = {"computed": {"discovery": departed_summary()}}

        batch = self.artifacts.reconcile_many(updates)
        run.errored += len(batch.failed)
        run.details["in_discovery"] = len(summaries)

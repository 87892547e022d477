"""Tests for creative_sync.jobs.discovery_tracker."""

from __future__ import annotations

import pytest

from creative_sync.config import AppConfig, DiscoveryConfig
from creative_sync.jobs.discovery_tracker import DiscoveryTrackerJob
from creative_sync.store.base import ARTIFACTS, AUTHORS, DISCOVERY_CURRENT, DISCOVERY_EVENTS

HOME = ("S", "Home", "EU")


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(discovery=DiscoveryConfig(surfaces=["S"], regions=["EU"], results_per_page=2))


def _events(store):
    return [
        (e["event_type"], e["item_id"], e["old_rank"], e["new_rank"])
        for e in store.fetch_appended(DISCOVERY_EVENTS)
    ]


@pytest.fixture
def tracker(job_context, fake_client):
    fake_client.surfaces = {"S": ["Home"]}
    fake_client.panels = {HOME: ["a", "b"]}
    return DiscoveryTrackerJob(job_context)


class TestColdStart:
    def test_snapshot_stored_without_events(self, tracker, memory_store):
        run = tracker.run()

        assert _events(memory_store) == []
        current = memory_store.get(DISCOVERY_CURRENT, "S|Home|EU")
        assert current["items"] == [{"item_id": "a", "rank": 0}, {"item_id": "b", "rank": 1}]
        assert run.details["cold_start_scopes"] == 1
        assert run.changed == 0

    def test_events_kept_when_not_suppressed(self, job_context, fake_client, memory_store):
        config = job_context.config.model_copy(update={
            "discovery": job_context.config.discovery.model_copy(
                update={"suppress_cold_start_events": False}
            ),
        })
        job_context.config = config
        fake_client.surfaces = {"S": ["Home"]}
        fake_client.panels = {HOME: ["a", "b"]}

        run = DiscoveryTrackerJob(job_context).run()

        assert _events(memory_store) == [("ADDED", "a", None, 0), ("ADDED", "b", None, 1)]
        assert run.details["added"] == 2

    def test_new_items_and_authors_are_discovered(
        self, tracker, fake_client, memory_store, payload_factory
    ):
        fake_client.artifacts = {"a": payload_factory("a", accountId="author-9")}

        run = tracker.run()

        artifact = memory_store.get(ARTIFACTS, "a")
        assert artifact["metadata"]["origin"] == "discovery_auto_discover"
        assert artifact["authored"]["title"] == "Island a"
        assert memory_store.get(ARTIFACTS, "b") is not None
        author = memory_store.get(AUTHORS, "author-9")
        assert author["metadata"]["name_hint"] == "Maker"
        assert run.details["new_artifacts"] == 2
        assert run.details["new_authors"] == 1


class TestRankChanges:
    def test_swap_is_two_moves(self, tracker, fake_client, memory_store):
        tracker.run()
        fake_client.panels[HOME] = ["b", "a"]

        run = tracker.run()

        assert _events(memory_store) == [("MOVED", "a", 0, 1), ("MOVED", "b", 1, 0)]
        assert run.details["moved"] == 2
        assert run.changed == 2

    def test_unchanged_panel_has_no_events(self, tracker, memory_store):
        tracker.run()
        run = tracker.run()
        assert _events(memory_store) == []
        assert run.changed == 0

    def test_pages_are_concatenated(self, tracker, fake_client, memory_store):
        tracker.run()
        fake_client.panels[HOME] = ["a", "b", "c"]

        tracker.run()

        assert _events(memory_store) == [("ADDED", "c", None, 2)]
        pages = [arg[1] for method, arg in fake_client.calls if method == "fetch_panel_page"]
        assert pages[-2:] == [0, 1]

    def test_dropped_panel_removes_everything(self, tracker, fake_client, memory_store):
        tracker.run()
        fake_client.surfaces = {"S": []}

        tracker.run()

        assert _events(memory_store) == [("REMOVED", "a", 0, None), ("REMOVED", "b", 1, None)]
        assert memory_store.get(DISCOVERY_CURRENT, "S|Home|EU")["items"] == []

    def test_emptied_panel_reports_returning_items(self, tracker, fake_client, memory_store):
        tracker.run()
        fake_client.panels[HOME] = []
        tracker.run()
        fake_client.panels[HOME] = ["a", "c"]

        run = tracker.run()

        assert _events(memory_store) == [
            ("REMOVED", "a", 0, None),
            ("REMOVED", "b", 1, None),
            ("ADDED", "a", None, 0),
            ("ADDED", "c", None, 1),
        ]
        assert "cold_start_scopes" not in run.details
        assert run.details["added"] == 2

    def test_relisted_panel_is_not_a_cold_start(self, tracker, fake_client, memory_store):
        tracker.run()
        fake_client.surfaces = {"S": []}
        tracker.run()
        fake_client.surfaces = {"S": ["Home"]}

        tracker.run()

        assert _events(memory_store)[-2:] == [("ADDED", "a", None, 0), ("ADDED", "b", None, 1)]

    def test_failed_fetch_keeps_snapshot(self, tracker, fake_client, memory_store):
        tracker.run()
        fake_client.failing_panels.add(HOME)
        fake_client.panels[HOME] = ["c"]

        run = tracker.run()

        assert _events(memory_store) == []
        assert run.errored == 1
        assert len(memory_store.get(DISCOVERY_CURRENT, "S|Home|EU")["items"]) == 2


class TestDiscoverySummary:
    def test_summary_written_to_artifacts(self, tracker, memory_store):
        tracker.run()

        summary = memory_store.get(ARTIFACTS, "b")["computed"]["discovery"]
        assert summary["in_discovery"] is True
        assert summary["surface_count"] == 1
        assert summary["first_surface"] == "S"
        assert summary["best_rank"] == 1
        assert summary["last_seen"] is not None

    def test_departed_item_keeps_last_observation(self, tracker, fake_client, memory_store):
        tracker.run()
        fake_client.panels[HOME] = ["a"]

        tracker.run()

        summary = memory_store.get(ARTIFACTS, "b")["computed"]["discovery"]
        assert summary["in_discovery"] is False
        assert summary["surface_count"] == 0
        assert summary["best_rank"] == 1
        assert summary["first_surface"] == "S"

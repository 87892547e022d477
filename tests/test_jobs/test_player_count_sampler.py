"""Tests for creative_sync.jobs.player_count_sampler."""

from __future__ import annotations

import threading

from creative_sync.jobs.player_count_sampler import PlayerCountSamplerJob
from creative_sync.store.base import ARTIFACTS, CCU_SAMPLES
from creative_sync.sync.change_detector import ChangeDetector
from creative_sync.sync.profiles import ARTIFACT_PROFILE, AUTHOR_PROFILE


def _link(code, ccu, when="2026-10-01T00:00:00Z"):
    return {"linkCode": code, "lastActivatedDate": when, "globalCCU": ccu}


def _seed_authors(store, ids):
    ChangeDetector(store, AUTHOR_PROFILE, "manual_seed").ensure_exists(ids)


class TestPlayerCountSampler:
    def test_samples_are_stamped_with_the_boundary(self, job_context, fake_client, memory_store):
        _seed_authors(memory_store, ["u-1", "u-2"])
        fake_client.catalogs = {
            "u-1": [_link("a", 120, "2026-10-02T00:00:00Z"), _link("b", -1, "2026-10-01T00:00:00Z")],
            "u-2": [_link("c", 0)],
        }

        run = PlayerCountSamplerJob(job_context).run()

        samples = memory_store.fetch_appended(CCU_SAMPLES)
        assert {(s["entity_id"], s["owner_id"], s["value"]) for s in samples} == {
            ("a", "u-1", 120),
            ("c", "u-2", 0),
        }
        assert {s["boundary"] for s in samples} == {"2026-10-19T08:10:00Z"}
        assert {s["source"] for s in samples} == {"creator_page_api"}
        assert run.processed == 2
        assert run.details["boundary"] == "2026-10-19T08:10:00Z"

    def test_latest_count_is_written_to_the_artifact(self, job_context, fake_client, memory_store):
        _seed_authors(memory_store, ["u-1"])
        fake_client.catalogs = {"u-1": [_link("a", 42)]}

        PlayerCountSamplerJob(job_context).run()

        computed = memory_store.get(ARTIFACTS, "a")["computed"]
        assert computed["player_count"] == 42
        assert computed["player_count_at"] == "2026-10-19T08:10:00Z"

    def test_waits_for_the_next_boundary(self, job_context, fake_client, memory_store, clock):
        _seed_authors(memory_store, ["u-1"])
        fake_client.catalogs = {"u-1": [_link("a", 7)]}
        job = PlayerCountSamplerJob(job_context)
        job._sleep = clock.sleep

        assert job._wait_until_due(threading.Event(), first=True)
        run = job.run()

        assert clock.sleeps == [138.0]
        assert run.details["boundary"] == "2026-10-19T08:20:00Z"
        assert memory_store.fetch_appended(CCU_SAMPLES)[0]["boundary"] == "2026-10-19T08:20:00Z"

    def test_stop_while_waiting(self, job_context):
        stop = threading.Event()
        stop.set()
        job = PlayerCountSamplerJob(job_context)
        assert not job._wait_until_due(stop, first=True)

    def test_no_authors_writes_nothing(self, job_context, memory_store):
        run = PlayerCountSamplerJob(job_context).run()
        assert run.processed == 0
        assert memory_store.count(CCU_SAMPLES) == 0

    def test_unmirrored_artifact_gets_a_placeholder(self, job_context, fake_client, memory_store):
        _seed_authors(memory_store, ["u-1"])
        ChangeDetector(memory_store, ARTIFACT_PROFILE, "manual_seed").ensure_exists(["a"])
        fake_client.catalogs = {"u-1": [_link("a", 5, "2026-10-02T00:00:00Z"), _link("b", 9)]}

        run = PlayerCountSamplerJob(job_context).run()

        placeholder = memory_store.get(ARTIFACTS, "b")
        assert placeholder["metadata"]["origin"] == "player_count_sampler"
        assert placeholder["metadata"]["author_id"] == "u-1"
        assert placeholder["computed"]["player_count"] == 9
        assert memory_store.get(ARTIFACTS, "a")["metadata"]["origin"] == "manual_seed"
        assert run.details["new_artifacts"] == 1

"""Tests for creative_sync.jobs.artifact_sync."""

from __future__ import annotations

from creative_sync.exceptions import TransientError
from creative_sync.jobs.artifact_sync import ArtifactSyncJob
from creative_sync.store.base import ARTIFACT_CHANGELOG, ARTIFACTS, AUTHORS, JOB_RUNS
from creative_sync.sync.change_detector import ChangeDetector
from creative_sync.sync.profiles import ARTIFACT_PROFILE


def _seed(store, ids):
    return ChangeDetector(store, ARTIFACT_PROFILE, "manual_seed").ensure_exists(ids)


class TestArtifactSync:
    def test_first_pass_fills_records(self, job_context, fake_client, memory_store, payload_factory):
        _seed(memory_store, ["a-1", "a-2"])
        fake_client.artifacts = {i: payload_factory(i) for i in ("a-1", "a-2")}

        run = ArtifactSyncJob(job_context).run()

        assert run.status == "success"
        assert (run.processed, run.changed, run.errored) == (2, 2, 0)
        record = memory_store.get(ARTIFACTS, "a-1")
        assert record["authored"]["title"] == "Island a-1"
        assert record["computed"]["version"] == 3
        assert record["metadata"]["origin"] == "manual_seed"
        assert record["computed"]["discovery"]["in_discovery"] is False

        entries = memory_store.fetch_appended(ARTIFACT_CHANGELOG)
        assert {e["subject_id"] for e in entries} == {"a-1", "a-2"}
        assert entries[0]["changes"]["authored.title"] == {"old": None, "new": "Island a-1"}
        assert memory_store.count(JOB_RUNS) == 1

    def test_unchanged_second_pass_writes_nothing(
        self, job_context, fake_client, memory_store, payload_factory
    ):
        _seed(memory_store, ["a-1"])
        fake_client.artifacts = {"a-1": payload_factory("a-1")}
        job = ArtifactSyncJob(job_context)
        job.run()

        run = job.run()

        assert run.processed == 1
        assert run.changed == 0
        assert memory_store.count(ARTIFACT_CHANGELOG) == 1

    def test_changed_field_is_logged(self, job_context, fake_client, memory_store, payload_factory):
        _seed(memory_store, ["a-1"])
        fake_client.artifacts = {"a-1": payload_factory("a-1")}
        job = ArtifactSyncJob(job_context)
        job.run()

        fake_client.artifacts["a-1"] = payload_factory("a-1", version=4)
        run = job.run()

        assert run.changed == 1
        latest = memory_store.fetch_appended(ARTIFACT_CHANGELOG)[-1]
        assert latest["changes"] == {"computed.version": {"old": 3, "new": 4}}
        assert latest["origin"] == "artifact_sync"

    def test_missing_artifacts_are_kept(self, job_context, fake_client, memory_store, payload_factory):
        _seed(memory_store, ["a-1", "gone"])
        fake_client.artifacts = {"a-1": payload_factory("a-1")}

        run = ArtifactSyncJob(job_context).run()

        assert run.details["not_found"] == 1
        assert memory_store.get(ARTIFACTS, "gone") is not None

    def test_unknown_authors_get_placeholders(
        self, job_context, fake_client, memory_store, payload_factory
    ):
        _seed(memory_store, ["a-1"])
        fake_client.artifacts = {"a-1": payload_factory("a-1")}

        run = ArtifactSyncJob(job_context).run()

        author = memory_store.get(AUTHORS, "author-1")
        assert author["metadata"]["origin"] == "artifact_sync_auto_discover"
        assert author["metadata"]["name_hint"] == "Maker"
        assert run.details["new_authors"] == 1

    def test_pages_respect_bulk_limit_and_delay(
        self, job_context, fake_client, memory_store, payload_factory, clock
    ):
        ids = [f"a-{i:03d}" for i in range(150)]
        _seed(memory_store, ids)
        fake_client.artifacts = {i: payload_factory(i) for i in ids}

        run = ArtifactSyncJob(job_context).run()

        batches = [arg for method, arg in fake_client.calls if method == "fetch_artifacts"]
        assert [len(b) for b in batches] == [100, 50]
        assert sum(clock.sleeps) >= 6.0
        assert run.processed == 150
        assert run.details["pages"] == 2

    def test_failed_lookup_counts_every_id(self, job_context, fake_client, memory_store, monkeypatch):
        _seed(memory_store, ["a-1", "a-2"])

        def _unavailable(ids, token):
            raise TransientError("HTTP 503")

        monkeypatch.setattr(fake_client, "fetch_artifacts", _unavailable)
        run = ArtifactSyncJob(job_context).run()

        assert run.status == "success"
        assert run.errored == 2
        assert memory_store.count(ARTIFACT_CHANGELOG) == 0

    def test_payload_without_id_is_an_item_error(
        self, job_context, fake_client, memory_store, payload_factory, monkeypatch
    ):
        _seed(memory_store, ["a-1"])
        monkeypatch.setattr(
            fake_client, "fetch_artifacts",
            lambda ids, token: [payload_factory("a-1"), {"metadata": {"title": "?"}}],
        )

        run = ArtifactSyncJob(job_context).run()

        assert run.processed == 1
        assert run.errored == 1

"""Runner daemon: every enabled job in its own thread, sharing one credential.

Typical usage via the CLI::

    creative-sync run
    creative-sync run --job artifact_sync --job discovery_tracker

Or import directly::

    from creative_sync.runner import JobRunner
    runner = JobRunner.from_config(load_config())
    runner.start()  # blocks until Ctrl-C

Threads started:
  - one per enabled job, named after the job, running ``SyncJob.run_forever``;
  - ``credential-refresh``, refreshing the shared token ahead of expiry.

SIGINT / SIGTERM set one shared ``threading.Event``. Every wait in the jobs
(cycle pause, boundary wait, rate-policy delay, retry backoff) returns
early on it; items already in flight finish, cursors are released, and the
runner joins each thread for at most ``runner.shutdown_timeout_seconds``.
A job that stops on its own (e.g. the refresh token lapsed) does not stop
the others.
"""

from __future__ import annotations

import logging
import platform
import signal
import threading
from datetime import timedelta
from typing import Optional, Sequence

from creative_sync.auth.credential_manager import CredentialManager
from creative_sync.auth.oauth_client import OAuthClient
from creative_sync.auth.token_store import TokenStore
from creative_sync.config import AppConfig
from creative_sync.ingestion.epic_client import EpicClient
from creative_sync.jobs.artifact_sync import ArtifactSyncJob
from creative_sync.jobs.author_sync import AuthorSyncJob
from creative_sync.jobs.base import JobContext, SyncJob
from creative_sync.jobs.catalog_discovery import CatalogDiscoveryJob
from creative_sync.jobs.discovery_tracker import DiscoveryTrackerJob
from creative_sync.jobs.player_count_sampler import PlayerCountSamplerJob
from creative_sync.scheduling.rate_scheduler import RateScheduler
from creative_sync.store.sqlite_store import SqliteDocumentStore

log = logging.getLogger(__name__)

JOB_CLASSES: dict[str, type[SyncJob]] = {
    job.job_name: job
    for job in (
        ArtifactSyncJob,
        AuthorSyncJob,
        CatalogDiscoveryJob,
        DiscoveryTrackerJob,
        PlayerCountSamplerJob,
    )
}


def build_context(config: AppConfig) -> JobContext:
    """Wire the shared store, credential manager, scheduler and API client.

    Raises:
        RuntimeError: If ``EPIC_CLIENT_ID`` / ``EPIC_CLIENT_SECRET`` are missing.
    """
    oauth = OAuthClient.from_env(config.auth)
    credentials = CredentialManager(
        refresher=oauth.refresh,
        token_store=TokenStore(config.auth.token_file),
        refresh_margin=timedelta(seconds=config.auth.refresh_margin_seconds),
    )
    return JobContext(
        config=config,
        store=SqliteDocumentStore.from_config(config.database),
        credentials=credentials,
        scheduler=RateScheduler.from_config(config),
        client=EpicClient(config.api),
    )


def build_job(name: str, context: JobContext) -> SyncJob:
    try:
        return JOB_CLASSES[name](context)
    except KeyError:
        raise ValueError(f"Unknown job '{name}'. Choose from {sorted(JOB_CLASSES)}.") from None


class JobRunner:
    """Runs the configured jobs until a signal arrives.

    Parameters
    ----------
    context:
        Shared dependencies for every job.
    job_names:
        Jobs to start; defaults to ``config.runner.jobs``.
    shutdown_timeout:
        Seconds to wait for each thread on shutdown; defaults to
        ``config.runner.shutdown_timeout_seconds``.
    """

    def __init__(
        self,
        context: JobContext,
        job_names: Optional[Sequence[str]] = None,
        shutdown_timeout: Optional[float] = None,
    ) -> None:
        self.context = context
        names = list(job_names or context.config.runner.jobs)
        self.jobs = [build_job(name, context) for name in names]
        self.shutdown_timeout = (
            shutdown_timeout
            if shutdown_timeout is not None
            else context.config.runner.shutdown_timeout_seconds
        )
        self.stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    @classmethod
    def from_config(
        cls, config: AppConfig, job_names: Optional[Sequence[str]] = None
    ) -> "JobRunner":
        return cls(build_context(config), job_names=job_names)

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def launch(self) -> None:
        """Start the refresh-ahead thread and one thread per job; returns immediately."""
        refresher = threading.Thread(
            target=self.context.credentials.refresh_ahead,
            args=(self.stop_event,),
            name="credential-refresh",
            daemon=True,
        )
        self._threads.append(refresher)
        for job in self.jobs:
            self._threads.append(
                threading.Thread(
                    target=job.run_forever,
                    args=(self.stop_event,),
                    name=job.job_name,
                    daemon=True,
                )
            )
        for thread in self._threads:
            thread.start()
        log.info("Runner started %d jobs: %s", len(self.jobs), [j.job_name for j in self.jobs])

    def start(self) -> None:
        """Start every job and block until SIGINT/SIGTERM or until all jobs have stopped."""

        def _shutdown(signum, frame):  # noqa: ANN001
            log.info("Signal %d received, stopping jobs.", signum)
            self.stop_event.set()

        signal.signal(signal.SIGINT, _shutdown)
        if platform.system() != "Windows":
            signal.signal(signal.SIGTERM, _shutdown)

        self.launch()
        try:
            while not self.stop_event.wait(1.0):
                if not any(t.is_alive() for t in self._threads if t.name != "credential-refresh"):
                    log.warning("Every job has stopped; shutting down.")
                    break
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        """Signal every thread to stop and join each with a bounded timeout."""
        self.stop_event.set()
        for thread in self._threads:
            thread.join(timeout=self.shutdown_timeout)
            if thread.is_alive():
                log.warning(
                    "Thread %s did not stop within %.0fs.", thread.name, self.shutdown_timeout
                )
        self.context.client.close()
        self.context.store.close()
        log.info("Runner stopped.")

"""
Abstract base class for the recurring jobs.

Every job follows the same contract:
  1. Receive a ``JobContext`` (config, store, credentials, scheduler, client)
     at construction.
  2. ``run(stop)`` executes exactly one cycle and is the sole public API for
     one-shot use (``creative-sync run-once``).
  3. ``run()`` creates a ``JobRun`` record, calls ``_execute()``, logs the
     cycle summary and appends the run record to ``job_runs``.
  4. ``run_forever(stop)`` repeats cycles until ``stop`` is set, pacing them
     with ``_wait_until_due()``, which subclasses override for their cadence.

Failure policy:
  - item and page failures are counted on the ``JobRun`` by ``_execute()``;
  - ``CredentialRefreshError`` (or any unexpected error) fails the cycle;
    the loop waits ``sync.error_retry_seconds`` and starts a new one;
  - ``CredentialExpiredError`` ends the loop: nothing will work until an
    operator re-authorizes.

Usage::

    class MyJob(SyncJob):
        job_name = "artifact_sync"

        def _execute(self, run: JobRun, stop: Optional[threading.Event]) -> None:
            run.processed += 1

    MyJob(context).run_forever(stop_event)
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, ClassVar, Optional
from uuid import uuid4

from creative_sync.auth.credential_manager import CredentialManager
from creative_sync.config import AppConfig
from creative_sync.exceptions import CredentialError, CredentialExpiredError
from creative_sync.ingestion.epic_client import EpicClient
from creative_sync.models.job_run import JobRun
from creative_sync.scheduling.rate_scheduler import RateScheduler, interruptible_sleep
from creative_sync.store.base import JOB_RUNS, DocumentStore
from creative_sync.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class JobContext:
    """Everything a job needs; one instance is shared by every job in a runner."""

    config: AppConfig
    store: DocumentStore
    credentials: CredentialManager
    scheduler: RateScheduler
    client: EpicClient
    clock: Callable[[], datetime] = field(default=utcnow)


class SyncJob(ABC):
    """Abstract base for the recurring jobs.

    Subclasses must:
      1. Set the ``job_name`` class variable (a valid ``JobRun.job_name``).
      2. Implement ``_execute(run, stop)``.
    """

    job_name: ClassVar[str]

    def __init__(self, context: JobContext) -> None:
        self.context = context
        self.config = context.config
        self.store = context.store
        self.scheduler = context.scheduler
        self.client = context.client
        self.clock = context.clock
        self._sleep = interruptible_sleep

    def token(self) -> Any:
        """Current credential; raises ``CredentialError`` if none can be produced."""
        return self.context.credentials.get_token()

    # ── One cycle ─────────────────────────────────────────────────────────────

    def run(self, stop: Optional[threading.Event] = None) -> JobRun:
        """Execute one cycle.

        Returns:
            The finalized ``JobRun`` (``success`` or ``stopped``).

        Raises:
            Exception: Re-raises any exception from ``_execute()`` after
                recording ``status='failed'`` in the run record.
        """
        run = JobRun(run_slug=str(uuid4()), job_name=self.job_name, started_at=self.clock())
        logger.info("Job [%s] cycle starting | run_slug=%s", self.job_name, run.run_slug)

        try:
            self._execute(run, stop)
        except Exception as exc:
            run.status = "failed"
            run.error_message = str(exc)
            run.finished_at = self.clock()
            logger.error(
                "Job [%s] cycle FAILED: %s | processed=%d errored=%d | run_slug=%s",
                self.job_name, exc, run.processed, run.errored, run.run_slug,
            )
            self._persist_run(run)
            raise

        run.status = "stopped" if stop is not None and stop.is_set() else "success"
        run.finished_at = self.clock()
        logger.info(
            "Job [%s] cycle complete | processed=%d changed=%d errored=%d | run_slug=%s",
            self.job_name, run.processed, run.changed, run.errored, run.run_slug,
        )
        self._persist_run(run)
        return run

    @abstractmethod
    def _execute(self, run: JobRun, stop: Optional[threading.Event]) -> None:
        """Job-specific cycle body; updates ``run`` counters in place.

        Must return promptly once ``stop`` is set, letting in-flight items
        finish.
        """
        ...

    def _persist_run(self, run: JobRun) -> None:
        """Append the run record; logs rather than raises so the cycle error is never masked."""
        try:
            self.store.append(JOB_RUNS, [run.to_document()])
        except Exception as exc:
            logger.error(
                "Failed to persist JobRun for run_slug=%s: %s", run.run_slug, exc,
            )

    # ── Loop ──────────────────────────────────────────────────────────────────

    def run_forever(self, stop: threading.Event) -> None:
        """Repeat cycles until ``stop`` is set or the credential is gone for good."""
        logger.info("Job [%s] started.", self.job_name)
        first = True
        while not stop.is_set():
            if not self._wait_until_due(stop, first):
                break
            first = False
            try:
                self.run(stop)
            except CredentialExpiredError as exc:
                logger.critical(
                    "Job [%s] stopping: credential cannot be renewed (%s). "
                    "Re-authorize with: creative-sync auth-exchange <authorization-code>",
                    self.job_name, exc,
                )
                return
            except CredentialError as exc:
                logger.warning(
                    "Job [%s] cycle ended without a usable credential: %s. Retrying in %.0fs.",
                    self.job_name, exc, self.config.sync.error_retry_seconds,
                )
                self._sleep(self.config.sync.error_retry_seconds, stop)
                first = True
            except Exception as exc:
                logger.error(
                    "Job [%s] cycle error: %s. Retrying in %.0fs.",
                    self.job_name, exc, self.config.sync.error_retry_seconds, exc_info=True,
                )
                self._sleep(self.config.sync.error_retry_seconds, stop)
                first = True
        logger.info("Job [%s] stopped.", self.job_name)

    def _wait_until_due(self, stop: threading.Event, first: bool) -> bool:
        """Block until the next cycle should start; ``False`` if stopped.

        Default cadence: start immediately, then pause
        ``sync.cycle_pause_seconds`` between cycles.
        """
        if first:
            return True
        return self._sleep(self.config.sync.cycle_pause_seconds, stop)

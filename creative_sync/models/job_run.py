"""
Job cycle audit record.

Every cycle of every job writes one ``JobRun`` to the ``job_runs``
collection: which job ran, how it ended, and how many items it processed,
changed and failed on. This is the operator's answer to "is the mirror
keeping up?" without grepping logs.

``JobRun`` is the only model in the system that is NOT frozen — its
``status``, counters, ``error_message`` and ``finished_at`` fields are updated
as the cycle executes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

VALID_JOB_NAMES = frozenset({
    "artifact_sync",
    "author_sync",
    "catalog_discovery",
    "discovery_tracker",
    "player_count_sampler",
})
VALID_RUN_STATUSES = frozenset({"started", "success", "failed", "stopped"})


class JobRun(BaseModel):
    """One cycle of one job.

    Attributes:
        run_slug: UUID4 string uniquely identifying this cycle.
        job_name: Which job produced the record.
        status: ``started`` → ``success`` | ``failed`` | ``stopped``.
        processed: Items handled this cycle (fetched and reconciled or skipped).
        changed: Items whose stored state changed (or events written).
        errored: Items or pages that failed permanently or exhausted retries.
        error_message: Error description if ``status == "failed"``.
        details: Job-specific counters (new authors, deletions, page failures...).
        started_at: UTC datetime when the cycle began.
        finished_at: UTC datetime when the cycle ended.
    """

    # Not frozen: counters and status are updated during the cycle
    model_config = ConfigDict(frozen=False)

    run_slug: str
    job_name: str
    status: str = "started"
    processed: int = 0
    changed: int = 0
    errored: int = 0
    error_message: Optional[str] = None
    details: dict[str, Any] = {}
    started_at: datetime
    finished_at: Optional[datetime] = None

    @field_validator("job_name")
    @classmethod
    def validate_job_name(cls, v: str) -> str:
        if v not in VALID_JOB_NAMES:
            raise ValueError(
                f"Unknown job_name '{v}'. Must be one of {sorted(VALID_JOB_NAMES)}."
            )
        return v

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in VALID_RUN_STATUSES:
            raise ValueError(
                f"Unknown status '{v}'. Must be one of {sorted(VALID_RUN_STATUSES)}."
            )
        return v

    def bump(self, key: str, amount: int = 1) -> None:
        """Increment a job-specific counter in ``details``."""
        self.details[key] = self.details.get(key, 0) + amount

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

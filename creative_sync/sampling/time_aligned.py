"""
Wall-clock-aligned sampling.

The sampler fires at UTC instants whose minute-of-day is a multiple of the
interval (``08:00``, ``08:10``, ``08:20`` for a 10-minute interval). Every
record produced in one firing carries that boundary as its timestamp, not
the moment the fetch actually ran, so samples from different runs and
different entities line up on the same grid.

A boundary missed because the previous pass overran, or because the process
was down, is a gap: it is never backfilled.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, Iterable, Optional

from pydantic import ValidationError

from creative_sync.models.sample import Sample
from creative_sync.scheduling.rate_scheduler import Sleeper, interruptible_sleep
from creative_sync.utils.time_utils import next_boundary, utcnow

logger = logging.getLogger(__name__)

# (entity_id, owner_id, value) as observed; value may be None, negative or
# non-numeric when the platform has no reading.
Observation = tuple[str, Optional[str], Optional[float]]


def wait_for_next_boundary(
    interval_minutes: int,
    stop: Optional[threading.Event] = None,
    clock: Callable[[], datetime] = utcnow,
    sleep: Sleeper = interruptible_sleep,
) -> Optional[datetime]:
    """Block until the next boundary strictly after now.

    Returns:
        The boundary, or ``None`` if ``stop`` was set while waiting.
    """
    boundary = next_boundary(clock(), interval_minutes)
    logger.debug("Waiting for boundary %s", boundary)
    while True:
        remaining = (boundary - clock()).total_seconds()
        if remaining <= 0:
            return boundary
        if not sleep(remaining, stop):
            return None


def sample(
    observations: Iterable[Observation],
    boundary: datetime,
    source: str,
) -> list[Sample]:
    """One ``Sample`` per entity, stamped with ``boundary``.

    Observations without a usable value (``None``, negative or non-numeric)
    are skipped; an entity observed twice keeps its first value.
    """
    samples: list[Sample] = []
    seen: set[str] = set()
    skipped = 0
    for entity_id, owner_id, value in observations:
        if entity_id in seen:
            continue
        if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
            skipped += 1
            continue
        try:
            samples.append(Sample(
                entity_id=entity_id,
                owner_id=owner_id,
                value=int(value),
                boundary=boundary,
                source=source,
            ))
        except (ValidationError, TypeError, ValueError) as exc:
            skipped += 1
            logger.warning("Dropping sample for %s: %s", entity_id, exc)
            continue
        seen.add(entity_id)

    if skipped:
        logger.debug("Skipped %d observations without a value at %s", skipped, boundary)
    return samples

"""
Positional differ over ranked lists.

Given the previous and current snapshot of one scope, every item is
classified as ADDED (only in current), REMOVED (only in previous), MOVED (in
both, different rank) or unchanged (no event). All events from one ``diff()``
call share one scope and one timestamp, and come out in a stable order:
REMOVED, then MOVED, then ADDED, each sorted by rank with ties broken by item
id. Event order never depends on dict or set iteration order.

Example::

    diff(scope, [("x", 1), ("y", 2)], [("y", 1), ("x", 2)])
    # → MOVED x 1→2, MOVED y 2→1
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Mapping, Optional, Sequence

from creative_sync.models.discovery import DiffResult, DifferEvent, EventKind, Scope
from creative_sync.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

Snapshot = Sequence[tuple[str, int]]


def _ranks(snapshot: Snapshot, label: str) -> dict[str, int]:
    ranks: dict[str, int] = {}
    for item_id, rank in snapshot:
        if item_id in ranks:
            raise ValueError(f"Duplicate item '{item_id}' in {label} snapshot.")
        ranks[item_id] = rank
    return ranks


def diff(
    scope: Scope,
    previous: Optional[Snapshot],
    current: Snapshot,
    at: Optional[datetime] = None,
) -> DiffResult:
    """Classify every item between two snapshots of ``scope``.

    Args:
        scope: The (surface, panel, region) both snapshots belong to.
        previous: Last stored snapshot, or ``None`` if the scope was never seen.
        current: Freshly fetched snapshot.
        at: Timestamp shared by all events; defaults to now.

    Returns:
        ``DiffResult``; ``cold_start`` is set when ``previous`` is ``None``.

    Raises:
        ValueError: If either snapshot lists an item id twice.
    """
    timestamp = at or utcnow()
    old = _ranks(previous or (), "previous")
    new = _ranks(current, "current")

    removed = sorted(
        ((rank, item_id) for item_id, rank in old.items() if item_id not in new)
    )
    moved = sorted(
        (old[item_id], new[item_id], item_id)
        for item_id in old.keys() & new.keys()
        if old[item_id] != new[item_id]
    )
    added = sorted(
        ((rank, item_id) for item_id, rank in new.items() if item_id not in old)
    )

    events: list[DifferEvent] = []
    events.extend(
        DifferEvent(scope=scope, item_id=item_id, kind=EventKind.REMOVED,
                    old_rank=rank, timestamp=timestamp)
        for rank, item_id in removed
    )
    events.extend(
        DifferEvent(scope=scope, item_id=item_id, kind=EventKind.MOVED,
                    old_rank=old_rank, new_rank=new_rank, timestamp=timestamp)
        for old_rank, new_rank, item_id in moved
    )
    events.extend(
        DifferEvent(scope=scope, item_id=item_id, kind=EventKind.ADDED,
                    new_rank=rank, timestamp=timestamp)
        for rank, item_id in added
    )
    return DiffResult(
        scope=scope,
        events=tuple(events),
        cold_start=previous is None,
        timestamp=timestamp,
    )


def diff_all(
    previous_by_scope: Mapping[Scope, Snapshot],
    current_by_scope: Mapping[Scope, Snapshot],
    fetched_scopes: Iterable[Scope],
    at: Optional[datetime] = None,
) -> list[DiffResult]:
    """Diff every scope on either side whose fetch succeeded.

    A scope is only diffed if it belongs to ``fetched_scopes``, so a failed
    fetch never shows up as a mass REMOVED. A previously stored scope that is
    absent from a successful fetch is diffed against an empty snapshot
    (complete turnover).

    Args:
        previous_by_scope: Stored snapshots.
        current_by_scope: Freshly built snapshots.
        fetched_scopes: Scopes whose fetch completed; for a region-level
            fetch this holds every scope of that (surface, region) pair,
            including panels that returned nothing.
        at: Timestamp shared by every event of this pass.

    Returns:
        One ``DiffResult`` per diffed scope, sorted by scope key.
    """
    timestamp = at or utcnow()
    fetched = set(fetched_scopes)
    scopes = (set(previous_by_scope) | set(current_by_scope)) & fetched

    results = []
    for scope in sorted(scopes, key=lambda s: s.key):
        results.append(
            diff(
                scope,
                previous_by_scope.get(scope),
                current_by_scope.get(scope, ()),
                at=timestamp,
            )
        )
    skipped = (set(previous_by_scope) | set(current_by_scope)) - fetched
    if skipped:
        logger.debug("Skipped %d scopes whose fetch did not complete.", len(skipped))
    return results

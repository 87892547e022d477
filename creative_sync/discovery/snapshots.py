"""
Ranked-list snapshot helpers for the discovery tracker.

Raw panel pages become per-scope snapshots (``build_snapshots``), snapshots
round-trip through the ``discovery_current`` collection
(``snapshot_to_document`` / ``snapshot_from_document``), and the set of
current snapshots is folded into one discovery summary per artifact
(``discovery_summary``), written to the artifact's ``computed.discovery``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Mapping, Sequence

from creative_sync.discovery.positional_differ import Snapshot
from creative_sync.models.discovery import Scope
from creative_sync.utils.time_utils import to_iso


def build_snapshots(
    pages: Iterable[tuple[Scope, Sequence[str]]],
) -> dict[Scope, list[tuple[str, int]]]:
    """Concatenate page results per scope into ranked snapshots.

    Pages of the same scope must arrive in page order. An item repeated
    within a scope keeps its first position; ranks are 0-based and dense.
    Scopes whose pages were all empty map to an empty snapshot.
    """
    snapshots: dict[Scope, list[tuple[str, int]]] = {}
    seen: dict[Scope, set[str]] = {}
    for scope, item_ids in pages:
        snapshot = snapshots.setdefault(scope, [])
        scope_seen = seen.setdefault(scope, set())
        for item_id in item_ids:
            if not item_id or item_id in scope_seen:
                continue
            scope_seen.add(item_id)
            snapshot.append((item_id, len(snapshot)))
    return snapshots


def snapshot_to_document(scope: Scope, snapshot: Snapshot, at: datetime) -> dict[str, Any]:
    return {
        "surface": scope.surface,
        "panel": scope.panel,
        "region": scope.region,
        "items": [{"item_id": item_id, "rank": rank} for item_id, rank in snapshot],
        "last_updated": to_iso(at),
    }


def snapshot_from_document(document: Mapping[str, Any]) -> tuple[Scope, list[tuple[str, int]]]:
    scope = Scope(
        surface=document["surface"],
        panel=document["panel"],
        region=document["region"],
    )
    items = [(item["item_id"], int(item["rank"])) for item in document.get("items", [])]
    return scope, items


def discovery_summary(
    snapshots: Mapping[Scope, Snapshot],
    at: datetime,
) -> dict[str, dict[str, Any]]:
    """Per-item summary across every current snapshot.

    Returns:
        ``{item_id: {"in_discovery", "surface_count", "first_surface",
        "best_rank", "last_seen"}}`` for every item present somewhere.
        ``first_surface`` follows the iteration order of ``snapshots``.
    """
    surfaces: dict[str, list[str]] = {}
    best: dict[str, int] = {}
    for scope, snapshot in snapshots.items():
        for item_id, rank in snapshot:
            item_surfaces = surfaces.setdefault(item_id, [])
            if scope.surface not in item_surfaces:
                item_surfaces.append(scope.surface)
            best[item_id] = min(rank, best.get(item_id, rank))

    seen_at = to_iso(at)
    return {
        item_id: {
            "in_discovery": True,
            "surface_count": len(item_surfaces),
            "first_surface": item_surfaces[0],
            "best_rank": best[item_id],
            "last_seen": seen_at,
        }
        for item_id, item_surfaces in surfaces.items()
    }


def departed_summary() -> dict[str, Any]:
    """Summary for an item no longer on any surface.

    ``first_surface``, ``best_rank`` and ``last_seen`` are left out, so the
    stored values remain as the last observation.
    """
    return {"in_discovery": False, "surface_count": 0}

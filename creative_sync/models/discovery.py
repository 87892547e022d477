"""
Ranked discovery-surface models.

A discovery surface (e.g. the game's front page) is made of panels; each
panel is served per matchmaking region as an ordered list of artifacts.
``Scope`` identifies one such list; ranks are 0-based positions in it.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, model_validator

from creative_sync.utils.time_utils import to_iso

SCOPE_KEY_SEPARATOR = "|"


class EventKind(str, Enum):
    """Classification of one item's movement between two snapshots."""

    ADDED = "ADDED"
    REMOVED = "REMOVED"
    MOVED = "MOVED"


class Scope(BaseModel):
    """The (surface, panel, region) key space within which ranks are compared."""

    model_config = ConfigDict(frozen=True)

    surface: str
    panel: str
    region: str

    @property
    def key(self) -> str:
        """Stable string key, used as the ``discovery_current`` document id."""
        return SCOPE_KEY_SEPARATOR.join((self.surface, self.panel, self.region))

    def __str__(self) -> str:
        return f"{self.surface}/{self.panel}/{self.region}"


class DifferEvent(BaseModel):
    """One item's change between two snapshots of the same scope.

    ADDED carries only ``new_rank``, REMOVED only ``old_rank``, MOVED both.
    """

    model_config = ConfigDict(frozen=True)

    scope: Scope
    item_id: str
    kind: EventKind
    old_rank: Optional[int] = None
    new_rank: Optional[int] = None
    timestamp: datetime

    @model_validator(mode="after")
    def validate_ranks(self) -> "DifferEvent":
        has_old = self.old_rank is not None
        has_new = self.new_rank is not None
        expected = {
            EventKind.ADDED: (False, True),
            EventKind.REMOVED: (True, False),
            EventKind.MOVED: (True, True),
        }[self.kind]
        if (has_old, has_new) != expected:
            raise ValueError(
                f"{self.kind.value} event for '{self.item_id}' has "
                f"old_rank={self.old_rank}, new_rank={self.new_rank}."
            )
        if self.kind is EventKind.MOVED and self.old_rank == self.new_rank:
            raise ValueError(f"MOVED event for '{self.item_id}' has identical ranks.")
        return self

    def to_document(self) -> dict[str, Any]:
        """Flat JSON-safe dict for the ``discovery_events`` collection."""
        return {
            "event_type": self.kind.value,
            "surface": self.scope.surface,
            "panel": self.scope.panel,
            "region": self.scope.region,
            "item_id": self.item_id,
            "old_rank": self.old_rank,
            "new_rank": self.new_rank,
            "timestamp": to_iso(self.timestamp),
        }


class DiffResult(BaseModel):
    """All events from one ``diff()`` call: one scope, one timestamp.

    Attributes:
        cold_start: ``True`` when no previous snapshot existed for the scope;
            every event is then ADDED and the caller decides whether to
            persist them.
    """

    model_config = ConfigDict(frozen=True)

    scope: Scope
    events: tuple[DifferEvent, ...] = ()
    cold_start: bool = False
    timestamp: datetime

    def counts(self) -> dict[str, int]:
        result = {kind.value: 0 for kind in EventKind}
        for event in self.events:
            result[event.kind.value] += 1
        return result

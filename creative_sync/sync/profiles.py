"""
Per-entity-kind reconcile profiles.

An ``EntityProfile`` tells the change detector which dotted fields of a
record are tracked (a difference produces a changelog entry), which lists
compare as sets, which counters go to a dedicated history collection
instead of the changelog, and what a never-observed field defaults to.

Entity record layout (both kinds)::

    {
      "id": "1234-5678-9012",
      "kind": "artifact",
      "authored": {...},     # written by the owner: title, bio, images, socials, labels
      "computed": {...},     # computed by the platform: counts, state, discovery summary
      "metadata": {"first_seen": ..., "last_synced": ..., "origin": ...}
    }
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

from creative_sync.store.base import (
    ARTIFACT_CHANGELOG,
    ARTIFACTS,
    AUTHOR_CHANGELOG,
    AUTHOR_FOLLOWER_HISTORY,
    AUTHORS,
)
from creative_sync.utils.time_utils import to_iso

_MISSING = object()


# ── Dotted-path helpers ───────────────────────────────────────────────────────


def get_path(document: Optional[Mapping[str, Any]], path: str) -> Any:
    """Value at dotted ``path``, or ``None`` if any segment is missing."""
    node: Any = document
    for key in path.split("."):
        if not isinstance(node, Mapping):
            return None
        node = node.get(key, _MISSING)
        if node is _MISSING:
            return None
    return node


def set_path(document: dict[str, Any], path: str, value: Any) -> None:
    """Set dotted ``path`` in place, creating intermediate dicts."""
    keys = path.split(".")
    node = document
    for key in keys[:-1]:
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child
    node[keys[-1]] = value


# ── Profile ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class EntityProfile:
    """How records of one entity kind are compared, merged and stored.

    Attributes:
        kind: ``"artifact"`` or ``"author"``.
        collection: Keyed collection holding the records.
        changelog_collection: Append-only collection for changelog entries.
        tracked_fields: Dotted paths whose changes are recorded.
        unordered_fields: Tracked list fields compared as sorted sets.
        history_fields: Dotted counter path → append-only history collection.
            These fields are merged like any other but never enter the changelog.
        defaults: Dotted path → value for fields never observed.
    """

    kind: str
    collection: str
    changelog_collection: str
    tracked_fields: tuple[str, ...]
    unordered_fields: frozenset[str] = frozenset()
    history_fields: Mapping[str, str] = field(default_factory=dict)
    defaults: Mapping[str, Any] = field(default_factory=dict)

    def new_record(
        self,
        record_id: str,
        origin: str,
        now: datetime,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> dict[str, Any]:
        """A record with no observed values: profile defaults only."""
        record: dict[str, Any] = {
            "id": record_id,
            "kind": self.kind,
            "authored": {},
            "computed": {},
            "metadata": {
                "first_seen": to_iso(now),
                "last_synced": None,
                "origin": origin,
                **(metadata or {}),
            },
        }
        for path, value in self.defaults.items():
            set_path(record, path, copy.deepcopy(value))
        return record


ARTIFACT_PROFILE = EntityProfile(
    kind="artifact",
    collection=ARTIFACTS,
    changelog_collection=ARTIFACT_CHANGELOG,
    tracked_fields=(
        "authored.title",
        "authored.tagline",
        "authored.introduction",
        "authored.image_url",
        "authored.genre_labels",
        "authored.category_labels",
        "authored.support_code",
        "authored.author_id",
        "authored.author_name",
        "computed.active",
        "computed.version",
        "computed.published",
        "computed.moderation_status",
        "computed.discovery_intent",
        "computed.link_state",
    ),
    unordered_fields=frozenset({"authored.genre_labels", "authored.category_labels"}),
    defaults={
        "computed.discovery": {
            "in_discovery": False,
            "surface_count": 0,
            "first_surface": None,
            "best_rank": None,
            "last_seen": None,
        },
    },
)

SOCIAL_PLATFORMS = ("youtube", "twitter", "twitch", "instagram", "tiktok")

AUTHOR_PROFILE = EntityProfile(
    kind="author",
    collection=AUTHORS,
    changelog_collection=AUTHOR_CHANGELOG,
    tracked_fields=(
        "authored.display_name",
        "authored.bio",
        "authored.images.avatar",
        "authored.images.banner",
        *(f"authored.social.{platform}" for platform in SOCIAL_PLATFORMS),
    ),
    history_fields={"computed.follower_count": AUTHOR_FOLLOWER_HISTORY},
)

PROFILES = {profile.kind: profile for profile in (ARTIFACT_PROFILE, AUTHOR_PROFILE)}

"""
API payload → entity-record update.

Each normalizer returns ``(record_id, fresh)`` where ``fresh`` is a partial
record (``{"authored": {...}, "computed": {...}}``) ready for
``ChangeDetector.reconcile``. A field the payload does not carry is emitted
as ``None`` ("not observed"), so it never overwrites a stored value.
Platform placeholders (the default avatar and banner images) are treated the
same way.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from creative_sync.exceptions import PermanentItemError
from creative_sync.sync.profiles import SOCIAL_PLATFORMS

DEFAULT_AVATAR = (
    "https://cdn2.unrealengine.com/t-ui-creatorprofile-default-256x256-8d5feae6bc8e.png"
)
DEFAULT_BANNER = (
    "https://cdn2.unrealengine.com/"
    "t-ui-creatorprofile-banner-fallbackerror-1920x1080-3f830cc95018.png"
)


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _list(value: Any) -> Optional[list[Any]]:
    return list(value) if isinstance(value, (list, tuple)) else None


def _int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def normalize_artifact(payload: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
    """Bulk links result → artifact update.

    Raises:
        PermanentItemError: The payload has no ``mnemonic``.
    """
    artifact_id = payload.get("mnemonic")
    if not artifact_id:
        raise PermanentItemError(f"Artifact payload without mnemonic: keys={sorted(payload)}")

    meta = _mapping(payload.get("metadata"))
    images = _mapping(meta.get("image_urls"))
    matchmaking = _mapping(meta.get("matchmakingV2")) or _mapping(meta.get("matchmaking"))

    fresh = {
        "authored": {
            "title": meta.get("title"),
            "tagline": meta.get("tagline"),
            "introduction": meta.get("introduction"),
            "image_url": meta.get("image_url") or images.get("url"),
            "genre_labels": _list(meta.get("genre_labels")),
            "category_labels": _list(meta.get("category_labels")),
            "support_code": meta.get("supportCode"),
            "author_id": payload.get("accountId"),
            "author_name": payload.get("creatorName"),
            "tags": _list(payload.get("descriptionTags")),
            "min_players": _int(matchmaking.get("minPlayers")),
            "max_players": _int(matchmaking.get("maxPlayers")),
        },
        "computed": {
            "active": payload.get("active"),
            "version": _int(payload.get("version")),
            "published": payload.get("published"),
            "moderation_status": payload.get("moderationStatus"),
            "discovery_intent": payload.get("discoveryIntent"),
            "link_state": payload.get("linkState"),
            "created": payload.get("created"),
            "last_activated": payload.get("lastActivatedDate"),
        },
    }
    return str(artifact_id), fresh


def _image(value: Any, placeholder: str) -> Optional[str]:
    if not value or value == placeholder:
        return None
    return value


def normalize_author(author_id: str, payload: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
    """Profile payload → author update.

    When the payload carries a ``social`` object, every platform is
    observed: a platform missing from it becomes ``""`` (link removed).

    Raises:
        PermanentItemError: ``author_id`` is empty.
    """
    if not author_id:
        raise PermanentItemError("Author profile without an id.")

    images = _mapping(payload.get("images"))
    social_payload = payload.get("social")
    social: Optional[dict[str, str]] = None
    if isinstance(social_payload, Mapping):
        social = {platform: social_payload.get(platform) or "" for platform in SOCIAL_PLATFORMS}

    fresh = {
        "authored": {
            "display_name": payload.get("displayName"),
            "bio": payload.get("bio"),
            "images": {
                "avatar": _image(images.get("avatar"), DEFAULT_AVATAR),
                "banner": _image(images.get("banner"), DEFAULT_BANNER),
            },
            "social": social,
        },
        "computed": {
            "follower_count": _int(payload.get("followerCount")),
        },
    }
    return author_id, fresh


def link_code(link: Mapping[str, Any]) -> Optional[str]:
    """Artifact id of a creator-page or discovery result entry."""
    return link.get("linkCode") or link.get("mnemonic") or None

"""Tests for creative_sync.ingestion.normalize — payloads to partial records."""

from __future__ import annotations

import pytest

from creative_sync.exceptions import PermanentItemError
from creative_sync.ingestion.normalize import (
    DEFAULT_AVATAR,
    DEFAULT_BANNER,
    link_code,
    normalize_artifact,
    normalize_author,
)


class TestNormalizeArtifact:
    def test_full_payload(self, payload_factory):
        payload = payload_factory(
            "1111-2222-3333",
            descriptionTags=["pvp"],
            created="2026-01-01T00:00:00Z",
            metadata={
                "title": "Box Fight",
                "genre_labels": ["pvp"],
                "supportCode": "maker",
                "image_urls": {"url": "https://cdn.example/img.png"},
                "matchmakingV2": {"minPlayers": 2, "maxPlayers": "16"},
            },
        )
        artifact_id, fresh = normalize_artifact(payload)

        assert artifact_id == "1111-2222-3333"
        authored, computed = fresh["authored"], fresh["computed"]
        assert authored["title"] == "Box Fight"
        assert authored["image_url"] == "https://cdn.example/img.png"
        assert authored["support_code"] == "maker"
        assert authored["author_id"] == "author-1"
        assert authored["tags"] == ["pvp"]
        assert (authored["min_players"], authored["max_players"]) == (2, 16)
        assert computed["version"] == 3
        assert computed["link_state"] == "LIVE"
        assert computed["created"] == "2026-01-01T00:00:00Z"

    def test_missing_fields_are_none(self):
        _, fresh = normalize_artifact({"mnemonic": "a"})
        assert fresh["authored"]["title"] is None
        assert fresh["authored"]["genre_labels"] is None
        assert fresh["computed"]["active"] is None

    def test_empty_values_are_kept(self, payload_factory):
        payload = payload_factory("a", metadata={"tagline": "", "category_labels": []}, active=False)
        _, fresh = normalize_artifact(payload)
        assert fresh["authored"]["tagline"] == ""
        assert fresh["authored"]["category_labels"] == []
        assert fresh["computed"]["active"] is False

    def test_missing_mnemonic_is_permanent(self):
        with pytest.raises(PermanentItemError):
            normalize_artifact({"metadata": {"title": "x"}})


class TestNormalizeAuthor:
    def test_profile(self):
        _, fresh = normalize_author("u", {
            "displayName": "Maker",
            "bio": "",
            "followerCount": 1200,
            "images": {"avatar": "https://cdn.example/a.png", "banner": DEFAULT_BANNER},
            "social": {"youtube": "makerchan", "twitter": None},
        })
        authored = fresh["authored"]
        assert authored["display_name"] == "Maker"
        assert authored["bio"] == ""
        assert authored["images"] == {"avatar": "https://cdn.example/a.png", "banner": None}
        assert authored["social"] == {
            "youtube": "makerchan", "twitter": "", "twitch": "", "instagram": "", "tiktok": "",
        }
        assert fresh["computed"]["follower_count"] == 1200

    def test_placeholder_images_are_not_observed(self):
        _, fresh = normalize_author("u", {"images": {"avatar": DEFAULT_AVATAR}})
        assert fresh["authored"]["images"] == {"avatar": None, "banner": None}

    def test_no_social_object_is_not_observed(self):
        _, fresh = normalize_author("u", {"displayName": "Maker"})
        assert fresh["authored"]["social"] is None
        assert fresh["computed"]["follower_count"] is None

    def test_empty_id_is_permanent(self):
        with pytest.raises(PermanentItemError):
            normalize_author("", {})


class TestLinkCode:
    def test_prefers_link_code(self):
        assert link_code({"linkCode": "a", "mnemonic": "b"}) == "a"
        assert link_code({"mnemonic": "b"}) == "b"
        assert link_code({}) is None

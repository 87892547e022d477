"""
Tests for creative_sync.ingestion.epic_client.

All HTTP traffic goes through ``httpx.MockTransport``; no network.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from creative_sync.config import ApiConfig
from creative_sync.exceptions import NotFoundError, PermanentItemError, TransientError
from creative_sync.ingestion.epic_client import (
    INVALID_SURFACE_ERROR,
    AuthorArtifactsPage,
    EpicClient,
)
from creative_sync.models.credential import Credential

_NOW = datetime(2026, 10, 19, 15, 0, tzinfo=timezone.utc)
_TOKEN = Credential(
    access_token="tok",
    expires_at=_NOW + timedelta(hours=2),
    refresh_token="ref",
    refresh_expires_at=_NOW + timedelta(days=1),
    account_id="acct-1",
)
_API = ApiConfig(
    links_url="https://links.example/links/api",
    profiles_url="https://pops.example/page",
    creator_page_url="https://discovery.example/api/v1/creator/page",
    discovery_url="https://discovery.example/api/v2/discovery/surface",
    branch="++Fortnite+Release-32.00",
)


def _client(handler) -> EpicClient:
    return EpicClient(_API, transport=httpx.MockTransport(handler))


class TestFetchArtifacts:
    def test_bulk_request_shape(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=[{"mnemonic": "1111-2222-3333"}])

        with _client(handler) as client:
            payload = client.fetch_artifacts(["1111-2222-3333", "4444-5555-6666"], _TOKEN)

        assert seen["method"] == "POST"
        assert seen["url"] == "https://links.example/links/api/fn/mnemonic?ignoreFailures=true"
        assert seen["auth"] == "bearer tok"
        assert seen["body"][0] == {
            "mnemonic": "1111-2222-3333", "linkType": "", "filter": False, "v": "",
        }
        assert len(seen["body"]) == 2
        assert payload == [{"mnemonic": "1111-2222-3333"}]

    def test_rejects_empty_and_oversized_batches(self):
        with _client(lambda request: httpx.Response(200, json=[])) as client:
            with pytest.raises(ValueError):
                client.fetch_artifacts([], _TOKEN)
            with pytest.raises(ValueError, match="At most 100"):
                client.fetch_artifacts([str(i) for i in range(101)], _TOKEN)

    def test_non_list_response_is_permanent(self):
        with _client(lambda request: httpx.Response(200, json={"oops": True})) as client:
            with pytest.raises(PermanentItemError):
                client.fetch_artifacts(["a"], _TOKEN)

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_throttling_is_transient(self, status):
        with _client(lambda request: httpx.Response(status)) as client:
            with pytest.raises(TransientError):
                client.fetch_artifacts(["a"], _TOKEN)


class TestFetchAuthorProfile:
    def test_request_and_payload(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"displayName": "Maker"})

        with _client(handler) as client:
            payload = client.fetch_author_profile("author-1", _TOKEN)

        assert seen["url"] == "https://pops.example/page/v1/author-1?playerId=acct-1"
        assert payload == {"displayName": "Maker"}

    def test_404_is_not_found(self):
        with _client(lambda request: httpx.Response(404)) as client:
            with pytest.raises(NotFoundError):
                client.fetch_author_profile("gone", _TOKEN)

    def test_403_is_permanent(self):
        with _client(lambda request: httpx.Response(403)) as client:
            with pytest.raises(PermanentItemError):
                client.fetch_author_profile("private", _TOKEN)


class TestFetchAuthorArtifacts:
    def test_paging_params(self):
        urls = []

        def handler(request: httpx.Request) -> httpx.Response:
            urls.append(request.url)
            return httpx.Response(200, json={
                "links": [{"linkCode": "a", "lastActivatedDate": "2026-10-01T00:00:00Z"}],
                "hasMore": True,
            })

        with _client(handler) as client:
            page = client.fetch_author_artifacts("author-1", _TOKEN, older_than="2026-10-05T00:00:00Z", limit=50)

        params = urls[0].params
        assert params["limit"] == "50"
        assert params["olderThan"] == "2026-10-05T00:00:00Z"
        assert params["playerId"] == "acct-1"
        assert page.has_more
        assert page.next_cursor == "2026-10-01T00:00:00Z"

    def test_last_page_has_no_cursor(self):
        page = AuthorArtifactsPage(author_id="u", links=[{"lastActivatedDate": "x"}], has_more=False)
        assert page.next_cursor is None

    def test_missing_links_is_empty(self):
        with _client(lambda request: httpx.Response(200, json={})) as client:
            page = client.fetch_author_artifacts("author-1", _TOKEN)
        assert page.links == []
        assert page.next_cursor is None


class TestDiscovery:
    def test_surface_panels(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = request.url
            return httpx.Response(200, json={
                "testVariantName": "Baseline",
                "panels": [
                    {"panelName": "Homebar", "panelDisplayName": "Home"},
                    {"panelDisplayName": "nameless"},
                    {"panelName": "Popular"},
                ],
            })

        with _client(handler) as client:
            panels = client.fetch_surface_panels("CreativeDiscoverySurface_Frontend", _TOKEN)

        assert seen["url"].path.endswith("/CreativeDiscoverySurface_Frontend")
        assert seen["url"].params["appId"] == "Fortnite"
        assert seen["url"].params["stream"] == "++Fortnite+Release-32.00"
        assert panels.test_variant == "Baseline"
        assert [p.name for p in panels.panels] == ["Homebar", "Popular"]
        assert panels.panels[0].display_name == "Home"

    def test_panel_page(self):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={
                "results": [{"linkCode": "a"}, {"mnemonic": "b"}, {"other": 1}],
                "hasMore": False,
            })

        with _client(handler) as client:
            page = client.fetch_panel_page("S", "Homebar", "Baseline", "EU", 1, _TOKEN, results_per_page=25)

        assert bodies[0] == {
            "testVariantName": "Baseline",
            "surfaceName": "S",
            "panelName": "Homebar",
            "region": "EU",
            "page": 1,
            "resultsPerPage": 25,
            "playerId": "acct-1",
        }
        assert page.item_ids == ["a", "b"]
        assert not page.has_more

    def test_invalid_surface_is_an_empty_page(self):
        handler = lambda request: httpx.Response(400, json={"errorCode": INVALID_SURFACE_ERROR})
        with _client(handler) as client:
            page = client.fetch_panel_page("S", "Homebar", "", "ME", 0, _TOKEN)
        assert page.invalid_surface
        assert page.item_ids == []

    def test_other_errors_are_classified(self):
        handler = lambda request: httpx.Response(502, text="bad gateway")
        with _client(handler) as client:
            with pytest.raises(TransientError):
                client.fetch_panel_page("S", "Homebar", "", "EU", 0, _TOKEN)

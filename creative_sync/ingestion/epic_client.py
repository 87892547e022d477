"""
Platform API client for the four endpoint classes the mirror polls.

  links          POST {links_url}/fn/mnemonic?ignoreFailures=true
                 bulk artifact lookup, at most 100 ids per request
  profiles       GET  {profiles_url}/v1/{author_id}?playerId=...
                 one author profile
  creator_page   GET  {creator_page_url}/{author_id}?playerId=&limit=[&olderThan=]
                 an author's published artifacts, newest first, paged by
                 ``olderThan`` = the last link's ``lastActivatedDate``
  discovery      POST {discovery_url}/{surface}?appId=Fortnite&stream={branch}
                 panel list of a surface;
                 POST {discovery_url}/{surface}/page?appId=Fortnite&stream={branch}
                 one page of one panel in one region

Every request carries ``Authorization: bearer <access_token>`` from the
``Credential`` passed in; the client never refreshes tokens itself. HTTP
failures are mapped by ``classify_http_error``: 404 → ``NotFoundError``,
timeouts, 401, 429 and 5xx → ``TransientError``, other 4xx →
``PermanentItemError``.

Rate limiting is not done here: callers wrap every method in
``RateScheduler.schedule()`` under the matching endpoint class.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional, Sequence

import httpx

from creative_sync.exceptions import PermanentItemError, classify_http_error
from creative_sync.models.credential import Credential

logger = logging.getLogger(__name__)

MAX_BULK_ARTIFACTS = 100
INVALID_SURFACE_ERROR = "errors.com.epicgames.discovery.invalid_discovery_surface"


# ── Response types ─────────────────────────────────────────────────────────────


@dataclass
class AuthorArtifactsPage:
    """One page of an author's published artifacts."""

    author_id: str
    links: list[dict[str, Any]] = field(default_factory=list)
    has_more: bool = False

    @property
    def next_cursor(self) -> Optional[str]:
        """``olderThan`` value for the following page, if there is one."""
        if not self.has_more or not self.links:
            return None
        return self.links[-1].get("lastActivatedDate")


@dataclass(frozen=True)
class Panel:
    name: str
    display_name: str = ""


@dataclass
class SurfacePanels:
    """Panel list of one discovery surface and the A/B variant it was served under."""

    surface: str
    test_variant: str = ""
    panels: list[Panel] = field(default_factory=list)


@dataclass
class PanelPage:
    """One page of ranked results of a panel in one region."""

    results: list[dict[str, Any]] = field(default_factory=list)
    has_more: bool = False
    invalid_surface: bool = False

    @property
    def item_ids(self) -> list[str]:
        return [
            item.get("linkCode") or item.get("mnemonic")
            for item in self.results
            if item.get("linkCode") or item.get("mnemonic")
        ]


# ── Client ─────────────────────────────────────────────────────────────────────


class EpicClient:
    """Thin ``httpx`` wrapper over the platform's public read endpoints.

    Args:
        api_config: ``ApiConfig`` section (base URLs, branch, timeout).
        transport: Optional ``httpx`` transport; tests pass ``httpx.MockTransport``.
    """

    APP_ID: ClassVar[str] = "Fortnite"

    def __init__(self, api_config: Any, transport: Optional[httpx.BaseTransport] = None) -> None:
        self.config = api_config
        self._client = httpx.Client(
            timeout=api_config.timeout_seconds,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "EpicClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ── links ──────────────────────────────────────────────────────────────────

    def fetch_artifacts(self, ids: Sequence[str], token: Credential) -> list[dict[str, Any]]:
        """Bulk lookup of up to 100 artifacts.

        Ids the platform does not know are silently absent from the result
        (``ignoreFailures=true``).

        Raises:
            ValueError: If ``ids`` is empty or longer than 100.
        """
        if not ids:
            raise ValueError("fetch_artifacts needs at least one id.")
        if len(ids) > MAX_BULK_ARTIFACTS:
            raise ValueError(
                f"At most {MAX_BULK_ARTIFACTS} ids per bulk lookup, got {len(ids)}."
            )
        body = [{"mnemonic": mnemonic, "linkType": "", "filter": False, "v": ""} for mnemonic in ids]
        payload = self._request(
            "POST",
            f"{self.config.links_url}/fn/mnemonic",
            token,
            context=f"links bulk ({len(ids)} ids)",
            params={"ignoreFailures": "true"},
            json=body,
        )
        if not isinstance(payload, list):
            raise PermanentItemError(f"links bulk: expected a list, got {type(payload).__name__}")
        logger.debug("links bulk: %d requested, %d found", len(ids), len(payload))
        return payload

    # ── profiles ───────────────────────────────────────────────────────────────

    def fetch_author_profile(self, author_id: str, token: Credential) -> dict[str, Any]:
        """One author's public profile.

        Raises:
            NotFoundError: The author no longer exists.
        """
        payload = self._request(
            "GET",
            f"{self.config.profiles_url}/v1/{author_id}",
            token,
            context=f"profile {author_id}",
            params=self._player_params(token),
        )
        if not isinstance(payload, dict):
            raise PermanentItemError(f"profile {author_id}: expected an object")
        return payload

    # ── creator_page ───────────────────────────────────────────────────────────

    def fetch_author_artifacts(
        self,
        author_id: str,
        token: Credential,
        older_than: Optional[str] = None,
        limit: int = 100,
    ) -> AuthorArtifactsPage:
        """One page of an author's published artifacts, newest first."""
        params = {**self._player_params(token), "limit": str(limit)}
        if older_than:
            params["olderThan"] = older_than
        payload = self._request(
            "GET",
            f"{self.config.creator_page_url}/{author_id}",
            token,
            context=f"creator page {author_id}",
            params=params,
        )
        payload = payload if isinstance(payload, dict) else {}
        links = payload.get("links")
        return AuthorArtifactsPage(
            author_id=author_id,
            links=links if isinstance(links, list) else [],
            has_more=payload.get("hasMore") is True,
        )

    # ── discovery ──────────────────────────────────────────────────────────────

    def fetch_surface_panels(self, surface: str, token: Credential) -> SurfacePanels:
        payload = self._request(
            "POST",
            f"{self.config.discovery_url}/{surface}",
            token,
            context=f"surface {surface}",
            params=self._discovery_params(),
            json={},
        )
        payload = payload if isinstance(payload, dict) else {}
        panels = [
            Panel(name=panel["panelName"], display_name=panel.get("panelDisplayName") or "")
            for panel in payload.get("panels") or []
            if panel.get("panelName")
        ]
        return SurfacePanels(
            surface=surface,
            test_variant=payload.get("testVariantName") or "",
            panels=panels,
        )

    def fetch_panel_page(
        self,
        surface: str,
        panel: str,
        test_variant: str,
        region: str,
        page: int,
        token: Credential,
        results_per_page: int = 50,
    ) -> PanelPage:
        """One page of ranked results.

        A surface the platform reports as invalid for the region yields an
        empty page flagged ``invalid_surface`` instead of an error.
        """
        body = {
            "testVariantName": test_variant,
            "surfaceName": surface,
            "panelName": panel,
            "region": region,
            "page": page,
            "resultsPerPage": results_per_page,
            "playerId": token.account_id,
        }
        try:
            payload = self._request(
                "POST",
                f"{self.config.discovery_url}/{surface}/page",
                token,
                context=f"panel {surface}/{panel}/{region} page {page}",
                params=self._discovery_params(),
                json=body,
                raise_raw=True,
            )
        except httpx.HTTPStatusError as exc:
            if _error_code(exc.response) == INVALID_SURFACE_ERROR:
                logger.info("Surface %s is not served in region %s; skipping.", surface, region)
                return PanelPage(invalid_surface=True)
            raise classify_http_error(exc, f"panel {surface}/{panel}/{region}") from exc

        payload = payload if isinstance(payload, dict) else {}
        results = payload.get("results")
        return PanelPage(
            results=results if isinstance(results, list) else [],
            has_more=payload.get("hasMore") is True,
        )

    # ── Internals ──────────────────────────────────────────────────────────────

    def _player_params(self, token: Credential) -> dict[str, str]:
        return {"playerId": token.account_id} if token.account_id else {}

    def _discovery_params(self) -> dict[str, str]:
        return {"appId": self.APP_ID, "stream": self.config.branch}

    def _request(
        self,
        method: str,
        url: str,
        token: Credential,
        context: str,
        raise_raw: bool = False,
        **kwargs: Any,
    ) -> Any:
        headers = {"Authorization": f"bearer {token.access_token}"}
        try:
            resp = self._client.request(method, url, headers=headers, **kwargs)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as exc:
            if raise_raw:
                raise
            raise classify_http_error(exc, context) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise classify_http_error(exc, context) from exc


def _error_code(response: httpx.Response) -> Optional[str]:
    try:
        payload = response.json()
    except ValueError:
        return None
    return payload.get("errorCode") if isinstance(payload, dict) else None

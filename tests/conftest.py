"""
Shared pytest fixtures for the creative_sync test suite.

Provides:
  - ``clock``: a ``FakeClock`` whose ``sleep`` advances time instead of waiting.
  - ``memory_store``: a fresh in-memory SQLite document store per test.
  - ``app_config``: the built-in default ``AppConfig``.
  - ``credential`` / ``credentials``: a long-lived credential and a manager
    serving it.
  - ``fake_client``: an in-memory stand-in for ``EpicClient``.
  - ``job_context``: everything a job needs, wired to the fakes above.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Generator, Optional

import pytest

from creative_sync.auth.credential_manager import CredentialManager
from creative_sync.config import AppConfig
from creative_sync.exceptions import NotFoundError
from creative_sync.ingestion.epic_client import (
    AuthorArtifactsPage,
    Panel,
    PanelPage,
    SurfacePanels,
)
from creative_sync.jobs.base import JobContext
from creative_sync.models.credential import Credential
from creative_sync.scheduling.rate_scheduler import RateScheduler
from creative_sync.store.sqlite_store import SqliteDocumentStore

_EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


# ── Clock ─────────────────────────────────────────────────────────────────────

class FakeClock:
    """Deterministic clock shared by every component under test.

    ``now()`` returns an aware UTC datetime, ``monotonic()`` seconds since an
    arbitrary epoch; ``sleep(seconds, stop)`` advances both instantly.
    """

    def __init__(self, start: datetime = datetime(2026, 10, 19, 8, 17, 42, tzinfo=timezone.utc)) -> None:
        self.current = start
        self.sleeps: list[float] = []
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self.current

    def monotonic(self) -> float:
        with self._lock:
            return (self.current - _EPOCH).total_seconds()

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.current += timedelta(seconds=seconds)

    def sleep(self, seconds: float, stop: Optional[threading.Event] = None) -> bool:
        if stop is not None and stop.is_set():
            return False
        with self._lock:
            self.sleeps.append(seconds)
            self.current += timedelta(seconds=seconds)
        return True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ── Store and config ──────────────────────────────────────────────────────────

@pytest.fixture
def memory_store(clock: FakeClock) -> Generator[SqliteDocumentStore, None, None]:
    """Yield a fresh in-memory document store; closed after the test."""
    store = SqliteDocumentStore(":memory:", clock=clock.now)
    yield store
    store.close()


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig()


# ── Credentials ───────────────────────────────────────────────────────────────

def make_credential(
    now: datetime,
    expires_in: timedelta = timedelta(hours=2),
    refresh_expires_in: timedelta = timedelta(days=7),
    access_token: str = "access-1",
    account_id: Optional[str] = "acct-1",
) -> Credential:
    return Credential(
        access_token=access_token,
        expires_at=now + expires_in,
        refresh_token=f"refresh-for-{access_token}",
        refresh_expires_at=now + refresh_expires_in,
        account_id=account_id,
    )


@pytest.fixture
def credential_factory():
    """``make_credential`` for tests that need several credentials."""
    return make_credential


@pytest.fixture
def credential(clock: FakeClock) -> Credential:
    return make_credential(clock.now(), expires_in=timedelta(days=1))


@pytest.fixture
def credentials(clock: FakeClock, credential: Credential) -> CredentialManager:
    def _never_refresh(refresh_token: str) -> Credential:
        raise AssertionError("refresh should not be needed in this test")

    return CredentialManager(refresher=_never_refresh, clock=clock.now, credential=credential)


# ── Fake platform client ─────────────────────────────────────────────────────

def artifact_payload(mnemonic: str, **overrides: Any) -> dict[str, Any]:
    """A links-service bulk result entry."""
    payload: dict[str, Any] = {
        "mnemonic": mnemonic,
        "accountId": "author-1",
        "creatorName": "Maker",
        "active": True,
        "version": 3,
        "published": "2026-09-01T10:00:00Z",
        "moderationStatus": "Approved",
        "discoveryIntent": "PUBLIC",
        "linkState": "LIVE",
        "metadata": {
            "title": f"Island {mnemonic}",
            "tagline": "Jump in",
            "genre_labels": ["parkour", "deathrun"],
            "image_url": f"https://cdn.example/{mnemonic}.png",
        },
    }
    payload.update(overrides)
    return payload


class FakeEpicClient:
    """Serves canned payloads with the same method signatures as ``EpicClient``.

    Attributes:
        artifacts: mnemonic → links payload (ids not present are omitted).
        profiles: author id → profile payload or exception to raise.
        catalogs: author id → creator-page links (paged by ``limit``).
        surfaces: surface → list of panel names.
        panels: (surface, panel, region) → ordered list of link codes.
        calls: (method, argument) log.
    """

    def __init__(self) -> None:
        self.artifacts: dict[str, dict[str, Any]] = {}
        self.profiles: dict[str, Any] = {}
        self.catalogs: dict[str, list[dict[str, Any]]] = {}
        self.surfaces: dict[str, list[str]] = {}
        self.panels: dict[tuple[str, str, str], list[str]] = {}
        self.failing_panels: set[tuple[str, str, str]] = set()
        self.calls: list[tuple[str, Any]] = []
        self.closed = False
        self._lock = threading.Lock()

    def _record(self, method: str, arg: Any) -> None:
        with self._lock:
            self.calls.append((method, arg))

    def fetch_artifacts(self, ids, token):
        self._record("fetch_artifacts", list(ids))
        return [self.artifacts[i] for i in ids if i in self.artifacts]

    def fetch_author_profile(self, author_id, token):
        self._record("fetch_author_profile", author_id)
        profile = self.profiles.get(author_id)
        if profile is None:
            raise NotFoundError(f"profile {author_id}: HTTP 404")
        if isinstance(profile, Exception):
            raise profile
        return profile

    def fetch_author_artifacts(self, author_id, token, older_than=None, limit=100):
        self._record("fetch_author_artifacts", (author_id, older_than))
        links = self.catalogs.get(author_id, [])
        start = 0
        if older_than is not None:
            start = next(
                i + 1 for i, link in enumerate(links) if link["lastActivatedDate"] == older_than
            )
        chunk = links[start:start + limit]
        return AuthorArtifactsPage(
            author_id=author_id, links=chunk, has_more=start + limit < len(links)
        )

    def fetch_surface_panels(self, surface, token):
        self._record("fetch_surface_panels", surface)
        return SurfacePanels(
            surface=surface,
            test_variant="Baseline",
            panels=[Panel(name=name) for name in self.surfaces.get(surface, [])],
        )

    def fetch_panel_page(self, surface, panel, test_variant, region, page, token, results_per_page=50):
        key = (surface, panel, region)
        self._record("fetch_panel_page", (key, page))
        if key in self.failing_panels:
            raise NotFoundError(f"panel {surface}/{panel}/{region}: HTTP 404")
        codes = self.panels.get(key, [])
        chunk = codes[page * results_per_page:(page + 1) * results_per_page]
        return PanelPage(
            results=[{"linkCode": code} for code in chunk],
            has_more=(page + 1) * results_per_page < len(codes),
        )

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def payload_factory():
    """``artifact_payload`` for tests that build links results."""
    return artifact_payload


@pytest.fixture
def fake_client() -> FakeEpicClient:
    return FakeEpicClient()


@pytest.fixture
def job_context(
    app_config: AppConfig,
    memory_store: SqliteDocumentStore,
    credentials: CredentialManager,
    fake_client: FakeEpicClient,
    clock: FakeClock,
) -> JobContext:
    scheduler = RateScheduler.from_config(app_config, clock=clock.monotonic, sleep=clock.sleep)
    return JobContext(
        config=app_config,
        store=memory_store,
        credentials=credentials,
        scheduler=scheduler,
        client=fake_client,
        clock=clock.now,
    )

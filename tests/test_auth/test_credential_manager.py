"""
Tests for creative_sync.auth.credential_manager.

Covers:
  - fast path: a token outside the margin is served without refreshing
  - single-flight: 50 concurrent callers inside the margin → one refresh
  - degraded mode: refresh failure while the token is still valid
  - hard failures: expired access token, lapsed refresh token, no credential
  - persistence through ``TokenStore``
"""

from __future__ import annotations

import threading
import time
from datetime import timedelta

import pytest

from creative_sync.auth.credential_manager import CredentialManager
from creative_sync.auth.token_store import TokenStore
from creative_sync.exceptions import (
    CredentialExpiredError,
    CredentialRefreshError,
    TransientError,
)


class _CountingRefresher:
    """Refresher returning a fresh 2-hour credential; counts calls."""

    def __init__(self, clock, factory, delay: float = 0.0, error: Exception | None = None):
        self.clock = clock
        self.factory = factory
        self.delay = delay
        self.error = error
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, refresh_token: str):
        with self._lock:
            self.calls += 1
            number = self.calls
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.factory(self.clock.now(), access_token=f"access-{number + 1}", account_id=None)


class TestFastPath:
    def test_valid_token_served_without_refresh(self, clock, credential_factory):
        refresher = _CountingRefresher(clock, credential_factory)
        current = credential_factory(clock.now(), expires_in=timedelta(hours=1))
        manager = CredentialManager(refresher, clock=clock.now, credential=current)

        assert manager.get_token() is current
        assert refresher.calls == 0

    def test_token_inside_margin_is_refreshed(self, clock, credential_factory):
        refresher = _CountingRefresher(clock, credential_factory)
        current = credential_factory(clock.now(), expires_in=timedelta(minutes=2))
        manager = CredentialManager(refresher, clock=clock.now, credential=current)

        fresh = manager.get_token()

        assert refresher.calls == 1
        assert fresh.access_token == "access-2"
        assert manager.status().refresh_count == 1
        assert manager.get_token() is fresh

    def test_account_id_survives_refresh(self, clock, credential_factory):
        refresher = _CountingRefresher(clock, credential_factory)
        current = credential_factory(clock.now(), expires_in=timedelta(minutes=2))
        manager = CredentialManager(refresher, clock=clock.now, credential=current)

        assert manager.get_token().account_id == "acct-1"


class TestSingleFlight:
    @pytest.mark.parametrize("expires_in", [timedelta(minutes=2), timedelta(seconds=-1)])
    def test_fifty_concurrent_callers_refresh_once(self, clock, credential_factory, expires_in):
        refresher = _CountingRefresher(clock, credential_factory, delay=0.05)
        current = credential_factory(clock.now(), expires_in=expires_in)
        manager = CredentialManager(refresher, clock=clock.now, credential=current)

        barrier = threading.Barrier(50)
        tokens, errors = [], []

        def caller():
            barrier.wait()
            try:
                tokens.append(manager.get_token())
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=caller) for _ in range(50)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert errors == []
        assert len(tokens) == 50
        assert refresher.calls == 1

    def test_expired_callers_all_get_the_new_token(self, clock, credential_factory):
        refresher = _CountingRefresher(clock, credential_factory, delay=0.05)
        current = credential_factory(clock.now(), expires_in=timedelta(seconds=-1))
        manager = CredentialManager(refresher, clock=clock.now, credential=current)

        results = []
        threads = [
            threading.Thread(target=lambda: results.append(manager.get_token().access_token))
            for _ in range(10)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert results == ["access-2"] * 10


class TestFailures:
    def test_failed_refresh_serves_valid_token_degraded(self, clock, credential_factory):
        refresher = _CountingRefresher(clock, credential_factory, error=TransientError("HTTP 503"))
        current = credential_factory(clock.now(), expires_in=timedelta(minutes=2))
        manager = CredentialManager(refresher, clock=clock.now, credential=current)

        assert manager.get_token() is current
        status = manager.status()
        assert status.degraded is True
        assert "503" in status.last_error

    def test_failed_refresh_backs_off(self, clock, credential_factory):
        refresher = _CountingRefresher(clock, credential_factory, error=TransientError("HTTP 503"))
        current = credential_factory(clock.now(), expires_in=timedelta(minutes=2))
        manager = CredentialManager(
            refresher, clock=clock.now, credential=current, refresh_retry_seconds=30
        )

        manager.get_token()
        clock.advance(10)
        manager.get_token()
        assert refresher.calls == 1

        clock.advance(25)
        manager.get_token()
        assert refresher.calls == 2

    def test_recovers_after_degraded(self, clock, credential_factory):
        refresher = _CountingRefresher(clock, credential_factory, error=TransientError("HTTP 503"))
        current = credential_factory(clock.now(), expires_in=timedelta(minutes=2))
        manager = CredentialManager(
            refresher, clock=clock.now, credential=current, refresh_retry_seconds=30
        )
        manager.get_token()

        refresher.error = None
        clock.advance(31)
        fresh = manager.get_token()

        assert fresh is not current
        assert manager.status().degraded is False

    def test_failed_refresh_with_expired_token_raises(self, clock, credential_factory):
        refresher = _CountingRefresher(clock, credential_factory, error=TransientError("HTTP 503"))
        current = credential_factory(clock.now(), expires_in=timedelta(seconds=-1))
        manager = CredentialManager(refresher, clock=clock.now, credential=current)

        with pytest.raises(CredentialRefreshError):
            manager.get_token()

    def test_lapsed_refresh_token_is_fatal(self, clock, credential_factory):
        refresher = _CountingRefresher(clock, credential_factory)
        current = credential_factory(
            clock.now(), expires_in=timedelta(minutes=2), refresh_expires_in=timedelta(seconds=-1)
        )
        manager = CredentialManager(refresher, clock=clock.now, credential=current)

        with pytest.raises(CredentialExpiredError):
            manager.get_token()
        assert refresher.calls == 0

    def test_rejected_refresh_token_is_fatal(self, clock, credential_factory):
        refresher = _CountingRefresher(
            clock, credential_factory, error=CredentialExpiredError("rejected")
        )
        current = credential_factory(clock.now(), expires_in=timedelta(minutes=2))
        manager = CredentialManager(refresher, clock=clock.now, credential=current)

        with pytest.raises(CredentialExpiredError):
            manager.get_token()

    def test_no_credential_is_fatal(self, clock, credential_factory, tmp_path):
        refresher = _CountingRefresher(clock, credential_factory)
        manager = CredentialManager(
            refresher, token_store=TokenStore(tmp_path / "token.json"), clock=clock.now
        )
        with pytest.raises(CredentialExpiredError, match="auth-exchange"):
            manager.get_token()


class TestPersistence:
    def test_loads_lazily_from_token_store(self, clock, credential_factory, tmp_path):
        store = TokenStore(tmp_path / "token.json")
        stored = credential_factory(clock.now(), expires_in=timedelta(hours=1))
        store.save(stored)
        manager = CredentialManager(
            _CountingRefresher(clock, credential_factory), token_store=store, clock=clock.now
        )

        assert manager.get_token() == stored

    def test_refresh_is_persisted(self, clock, credential_factory, tmp_path):
        store = TokenStore(tmp_path / "token.json")
        store.save(credential_factory(clock.now(), expires_in=timedelta(minutes=1)))
        manager = CredentialManager(
            _CountingRefresher(clock, credential_factory), token_store=store, clock=clock.now
        )

        fresh = manager.get_token()

        assert store.load() == fresh

    def test_install_replaces_and_persists(self, clock, credential_factory, tmp_path):
        store = TokenStore(tmp_path / "token.json")
        manager = CredentialManager(
            _CountingRefresher(clock, credential_factory), token_store=store, clock=clock.now
        )
        new = credential_factory(clock.now(), access_token="installed")

        manager.install(new)

        assert manager.get_token() is new
        assert store.load() == new
        assert manager.account_id == "acct-1"

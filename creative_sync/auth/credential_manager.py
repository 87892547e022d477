"""
Shared, auto-renewing OAuth credential.

``CredentialManager.get_token()`` is called by every job thread before every
API call. The fast path (token valid beyond the safety margin) takes no lock.
When the token enters the margin, exactly one caller performs the refresh:

  - the refreshing thread holds ``_refresh_lock`` for the duration of the
    token-endpoint call;
  - concurrent callers whose token is still valid (``now < expires_at``)
    return it immediately instead of queueing behind the refresh;
  - callers without a valid token wait for the lock, then re-check and
    return whatever the refresher installed.

Failure handling:
  - refresh failed, token still valid   → keep serving it, ``degraded=True``,
    retry the refresh no sooner than ``refresh_retry_seconds`` later;
  - refresh failed, token hard-expired  → ``CredentialRefreshError``;
  - refresh token lapsed, rejected, or no credential at all →
    ``CredentialExpiredError`` (operator must run ``creative-sync auth-exchange``).
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from creative_sync.auth.token_store import TokenStore
from creative_sync.exceptions import (
    CredentialExpiredError,
    CredentialRefreshError,
)
from creative_sync.models.credential import Credential, CredentialStatus
from creative_sync.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

Refresher = Callable[[str], Credential]

_REAUTHORIZE_HINT = "Re-authorize with: creative-sync auth-exchange <authorization-code>"


class CredentialManager:
    """Owns the one ``Credential`` every poller uses.

    Args:
        refresher: Callable trading a refresh token for a new credential
            (``OAuthClient.refresh`` in production).
        token_store: Optional persistence; loaded lazily on first use and
            written after every successful refresh.
        refresh_margin: Refresh when the token expires within this window.
        refresh_retry_seconds: Minimum pause between refresh attempts after a
            failed refresh while the old token is still valid.
        clock: Source of "now" (injected in tests).
        credential: Optional initial credential (skips the token store load).
    """

    def __init__(
        self,
        refresher: Refresher,
        token_store: Optional[TokenStore] = None,
        refresh_margin: timedelta = timedelta(minutes=5),
        refresh_retry_seconds: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
        credential: Optional[Credential] = None,
    ) -> None:
        self._refresher = refresher
        self._token_store = token_store
        self._margin = refresh_margin
        self._retry_after = timedelta(seconds=refresh_retry_seconds)
        self._clock = clock

        self._refresh_lock = threading.Lock()
        self._credential: Optional[Credential] = credential
        self._store_loaded = credential is not None

        self._degraded = False
        self._last_error: Optional[str] = None
        self._last_refreshed_at: Optional[datetime] = None
        self._next_attempt_at: Optional[datetime] = None
        self._refresh_count = 0

    # ── Public API ────────────────────────────────────────────────────────────

    def get_token(self) -> Credential:
        """Return a credential usable right now, refreshing if needed.

        Raises:
            CredentialRefreshError: Refresh failed and the token has expired.
            CredentialExpiredError: No credential, or the refresh token lapsed.
        """
        now = self._clock()
        current = self._credential
        if current is not None and not current.expires_within(now, self._margin):
            return current

        if not self._refresh_lock.acquire(blocking=False):
            # A refresh is in flight; a still-valid token need not wait for it.
            if current is not None and not current.is_expired(now):
                return current
            self._refresh_lock.acquire()
        try:
            return self._refresh_locked()
        finally:
            self._refresh_lock.release()

    def install(self, credential: Credential) -> None:
        """Replace the credential (after ``auth-exchange``) and persist it."""
        with self._refresh_lock:
            self._credential = credential
            self._store_loaded = True
            self._degraded = False
            self._last_error = None
            self._next_attempt_at = None
            self._persist(credential)
        logger.info(
            "Credential installed | account_id=%s expires_at=%s",
            credential.account_id, credential.expires_at,
        )

    def status(self) -> CredentialStatus:
        current = self._credential
        return CredentialStatus(
            loaded=current is not None,
            account_id=current.account_id if current else None,
            expires_at=current.expires_at if current else None,
            refresh_expires_at=current.refresh_expires_at if current else None,
            degraded=self._degraded,
            last_error=self._last_error,
            last_refreshed_at=self._last_refreshed_at,
            refresh_count=self._refresh_count,
        )

    @property
    def account_id(self) -> Optional[str]:
        current = self._credential
        return current.account_id if current else None

    def refresh_ahead(self, stop: threading.Event, max_sleep_seconds: float = 60.0) -> None:
        """Refresh the token as it enters the safety margin, until ``stop`` is set.

        Runs in its own thread so job threads rarely hit the refresh path.
        Returns early if the credential can no longer be renewed.
        """
        logger.info("Credential refresh-ahead loop started.")
        while not stop.is_set():
            try:
                self.get_token()
            except CredentialExpiredError as exc:
                logger.critical("Credential cannot be renewed: %s. %s", exc, _REAUTHORIZE_HINT)
                return
            except CredentialRefreshError as exc:
                logger.error("Credential refresh failed and token expired: %s", exc)

            current = self._credential
            if current is None:
                wait = max_sleep_seconds
            else:
                wait = (current.expires_at - self._margin - self._clock()).total_seconds()
            stop.wait(min(max(wait, 1.0), max_sleep_seconds))
        logger.info("Credential refresh-ahead loop stopped.")

    # ── Internals ─────────────────────────────────────────────────────────────

    def _refresh_locked(self) -> Credential:
        """Refresh under ``_refresh_lock``; re-checks first, since a peer may have won."""
        now = self._clock()
        if not self._store_loaded:
            self._store_loaded = True
            if self._token_store is not None:
                self._credential = self._token_store.load()

        current = self._credential
        if current is None:
            raise CredentialExpiredError(f"No credential available. {_REAUTHORIZE_HINT}")
        if not current.expires_within(now, self._margin):
            return current

        if current.refresh_expired(now):
            self._mark_degraded(f"refresh token expired at {current.refresh_expires_at}")
            raise CredentialExpiredError(
                f"Refresh token expired at {current.refresh_expires_at}. {_REAUTHORIZE_HINT}"
            )

        if self._next_attempt_at is not None and now < self._next_attempt_at:
            if not current.is_expired(now):
                return current
            raise CredentialRefreshError(
                f"Access token expired and refresh is backing off: {self._last_error}"
            )

        try:
            fresh = self._refresher(current.refresh_token)
        except CredentialExpiredError as exc:
            self._mark_degraded(str(exc))
            raise
        except Exception as exc:
            self._mark_degraded(str(exc))
            self._next_attempt_at = now + self._retry_after
            if not current.is_expired(now):
                logger.warning(
                    "Credential refresh failed; serving current token until %s: %s",
                    current.expires_at, exc,
                )
                return current
            raise CredentialRefreshError(f"Refresh failed and token expired: {exc}") from exc

        if fresh.account_id is None and current.account_id is not None:
            fresh = fresh.model_copy(update={"account_id": current.account_id})

        self._credential = fresh
        self._degraded = False
        self._last_error = None
        self._next_attempt_at = None
        self._last_refreshed_at = now
        self._refresh_count += 1
        self._persist(fresh)
        logger.info("Credential refreshed | expires_at=%s", fresh.expires_at)
        return fresh

    def _mark_degraded(self, message: str) -> None:
        self._degraded = True
        self._last_error = message

    def _persist(self, credential: Credential) -> None:
        if self._token_store is None:
            return
        try:
            self._token_store.save(credential)
        except OSError as exc:
            # In-memory credential stays authoritative; next refresh retries the write.
            logger.error("Could not persist credential to %s: %s", self._token_store.path, exc)

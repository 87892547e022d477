"""
OAuth token endpoint client.

Two grants are used:
  - ``authorization_code`` — one-off, by an operator, via
    ``creative-sync auth-exchange <code>``;
  - ``refresh_token`` — by the ``CredentialManager`` whenever the access
    token nears expiry.

Both POST form data to the token endpoint with HTTP Basic client
credentials and return a ``Credential`` with absolute expiry timestamps
(the endpoint answers with relative ``expires_in`` seconds).

Credential setup (.env, gitignored)::

    EPIC_CLIENT_ID=your_client_id
    EPIC_CLIENT_SECRET=your_client_secret
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import httpx
from pydantic import ValidationError

from creative_sync.exceptions import (
    CredentialExpiredError,
    PermanentItemError,
    classify_http_error,
)
from creative_sync.models.credential import Credential
from creative_sync.utils.time_utils import parse_iso, utcnow

logger = logging.getLogger(__name__)

# Refresh-grant statuses meaning "this refresh token will never work again".
_REJECTED_REFRESH_STATUSES = frozenset({400, 401})


class OAuthClient:
    """Token endpoint client.

    Args:
        token_url: OAuth token endpoint.
        client_id: OAuth client id.
        client_secret: OAuth client secret.
        timeout: Request timeout in seconds.
        transport: Optional ``httpx`` transport (tests use ``MockTransport``).
        clock: Source of "now" for converting ``expires_in`` to timestamps.
    """

    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.token_url = token_url
        self._clock = clock
        self._client = httpx.Client(
            auth=httpx.BasicAuth(client_id, client_secret),
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_env(cls, auth_config: Any) -> "OAuthClient":
        """Build from an ``AuthConfig`` plus ``EPIC_CLIENT_ID`` / ``EPIC_CLIENT_SECRET``.

        Raises:
            RuntimeError: If either environment variable is missing.
        """
        client_id = os.environ.get("EPIC_CLIENT_ID")
        client_secret = os.environ.get("EPIC_CLIENT_SECRET")
        if not client_id or not client_secret:
            raise RuntimeError("EPIC_CLIENT_ID and EPIC_CLIENT_SECRET must be set in .env.")
        return cls(
            token_url=auth_config.token_url,
            client_id=client_id,
            client_secret=client_secret,
            timeout=auth_config.request_timeout_seconds,
        )

    def close(self) -> None:
        self._client.close()

    # ── Grants ────────────────────────────────────────────────────────────────

    def exchange_code(self, code: str) -> Credential:
        """Exchange a one-time authorization code for a credential.

        Raises:
            TransientError: Timeout, 429 or 5xx from the token endpoint.
            PermanentItemError: The code was rejected (expired or already used).
        """
        payload = self._post({"grant_type": "authorization_code", "code": code}, "exchange_code")
        credential = self._to_credential(payload)
        logger.info(
            "Authorization code exchanged | account_id=%s expires_at=%s",
            credential.account_id, credential.expires_at,
        )
        return credential

    def refresh(self, refresh_token: str) -> Credential:
        """Trade a refresh token for a new credential.

        Raises:
            CredentialExpiredError: The endpoint rejected the refresh token.
            TransientError: Timeout, 429 or 5xx from the token endpoint.
        """
        try:
            payload = self._post(
                {"grant_type": "refresh_token", "refresh_token": refresh_token},
                "refresh",
                raise_raw=True,
            )
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code in _REJECTED_REFRESH_STATUSES:
                raise CredentialExpiredError(
                    f"Refresh token rejected (HTTP {exc.response.status_code}): "
                    f"{exc.response.text[:200]}"
                ) from exc
            raise classify_http_error(exc, "refresh") from exc
        return self._to_credential(payload)

    # ── Internals ────────────────────────────────────────────────────────────

    def _post(self, form: dict[str, str], context: str, raise_raw: bool = False) -> dict[str, Any]:
        try:
            resp = self._client.post(self.token_url, data=form)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as exc:
            if raise_raw:
                raise
            raise classify_http_error(exc, context) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise classify_http_error(exc, context) from exc

    def _to_credential(self, payload: dict[str, Any]) -> Credential:
        now = self._clock()
        expires_at = parse_iso(payload.get("expires_at")) or now + timedelta(
            seconds=int(payload.get("expires_in", 0))
        )
        refresh_expires_at = parse_iso(payload.get("refresh_expires_at")) or now + timedelta(
            seconds=int(payload.get("refresh_expires_in", 0))
        )
        try:
            return Credential(
                access_token=payload["access_token"],
                expires_at=expires_at,
                refresh_token=payload["refresh_token"],
                refresh_expires_at=refresh_expires_at,
                account_id=payload.get("account_id"),
            )
        except (KeyError, ValidationError) as exc:
            raise PermanentItemError(f"Malformed token response: {exc}") from exc

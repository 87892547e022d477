"""
Error taxonomy for creative_sync.

Every failure the pollers care about falls into one of four buckets:

  TransientError       timeout, remote throttling (429), 5xx, temporary store
                       unavailability. Retried with bounded backoff at the call
                       site that produced it (see ``RateScheduler``).
  PermanentItemError   malformed record, missing identity, 404. Logged, counted
                       and skipped; never fatal to a job.
  CredentialError      the shared credential could not be produced. Ends the
                       current cycle of the calling job.
    CredentialExpiredError   the refresh token itself has lapsed. Fatal: the
                             job stops and an operator must re-authorize.

``classify_http_error()`` maps ``httpx`` exceptions onto this taxonomy so
fetchers raise domain errors instead of transport errors.
"""

from __future__ import annotations

from typing import Optional

import httpx

# Status codes the platform uses for throttling / temporary unavailability.
_TRANSIENT_STATUSES = frozenset({401, 408, 425, 429, 500, 502, 503, 504})


class CreativeSyncError(Exception):
    """Base exception for creative_sync."""


class TransientError(CreativeSyncError):
    """A failure that is expected to succeed if retried later."""

    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class StoreError(TransientError):
    """The document store was temporarily unavailable or a write failed."""


class PermanentItemError(CreativeSyncError):
    """A single item cannot be processed; retrying will not help."""


class NotFoundError(PermanentItemError):
    """The remote API reports that the entity no longer exists."""


class CredentialError(CreativeSyncError):
    """No usable access token could be produced."""


class CredentialRefreshError(CredentialError):
    """Refresh failed and the current access token has already expired."""


class CredentialExpiredError(CredentialError):
    """The refresh token has lapsed (or no credential exists).

    Requires external re-authorization: ``creative-sync auth-exchange <code>``.
    """


def _retry_after_seconds(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def classify_http_error(exc: Exception, context: str = "") -> CreativeSyncError:
    """Map an ``httpx`` exception to the creative_sync error taxonomy.

    Args:
        exc: Exception raised by an ``httpx`` call (or ``raise_for_status``).
        context: Short description of the request, prefixed to the message.

    Returns:
        A ``TransientError``, ``NotFoundError`` or ``PermanentItemError``.
        The caller is expected to ``raise ... from exc``.
    """
    prefix = f"{context}: " if context else ""

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        message = f"{prefix}HTTP {status}"
        if status == 404:
            return NotFoundError(message)
        if status in _TRANSIENT_STATUSES or status >= 500:
            return TransientError(message, retry_after=_retry_after_seconds(exc.response))
        return PermanentItemError(message)

    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return TransientError(f"{prefix}{type(exc).__name__}: {exc}")

    if isinstance(exc, ValueError):
        # json decoding of a truncated / non-JSON body
        return PermanentItemError(f"{prefix}invalid response body: {exc}")

    return PermanentItemError(f"{prefix}{type(exc).__name__}: {exc}")

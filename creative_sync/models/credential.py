"""
OAuth credential shared by every poller.

``Credential`` is frozen: a refresh produces a new instance which the
``CredentialManager`` swaps in under its lock, so readers never observe a
half-updated token pair.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class Credential(BaseModel):
    """An access token plus the refresh token that renews it.

    Attributes:
        access_token: Bearer token sent on every API call.
        expires_at: UTC instant after which ``access_token`` is rejected.
        refresh_token: Token exchanged for a new credential.
        refresh_expires_at: UTC instant after which ``refresh_token`` is
            rejected; past this point only an operator can re-authorize.
        account_id: Epic account the token belongs to (sent as ``playerId``).
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    expires_at: datetime
    refresh_token: str
    refresh_expires_at: datetime
    account_id: Optional[str] = None

    @field_validator("expires_at", "refresh_expires_at")
    @classmethod
    def validate_aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @field_validator("access_token", "refresh_token")
    @classmethod
    def validate_token(cls, v: str) -> str:
        if not v:
            raise ValueError("Tokens must be non-empty strings.")
        return v

    def is_expired(self, now: datetime) -> bool:
        """True once ``now`` has reached the access token's hard expiry."""
        return now >= self.expires_at

    def expires_within(self, now: datetime, margin: timedelta) -> bool:
        """True if the access token expires within ``margin`` of ``now``."""
        return now >= self.expires_at - margin

    def refresh_expired(self, now: datetime) -> bool:
        return now >= self.refresh_expires_at


class CredentialStatus(BaseModel):
    """Point-in-time view of the credential manager, for operators and logs."""

    model_config = ConfigDict(frozen=True)

    loaded: bool
    account_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    refresh_expires_at: Optional[datetime] = None
    degraded: bool = False
    last_error: Optional[str] = None
    last_refreshed_at: Optional[datetime] = None
    refresh_count: int = 0

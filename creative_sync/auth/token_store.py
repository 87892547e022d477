"""
JSON file persistence of the OAuth credential.

The file survives restarts so a new process resumes with the last refreshed
token pair instead of requiring a fresh authorization code. Writes go to a
temporary sibling file which then replaces the target, so a crash mid-write
never leaves a truncated token file behind.

File format (``data/auth/token.json``)::

    {
      "access_token": "...",
      "expires_at": "2026-10-19T17:00:00Z",
      "refresh_token": "...",
      "refresh_expires_at": "2026-10-27T15:00:00Z",
      "account_id": "..."
    }
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from creative_sync.models.credential import Credential

logger = logging.getLogger(__name__)


class TokenStore:
    """Load and save a ``Credential`` at a fixed path."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Optional[Credential]:
        """Return the stored credential, or ``None`` if missing or unreadable.

        An unreadable file is logged rather than raised: the caller treats it
        the same as "never authorized" and asks the operator to re-authorize.
        """
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return Credential.model_validate(data)
        except (OSError, ValueError, ValidationError) as exc:
            logger.error("Token file %s is unreadable: %s", self.path, exc)
            return None

    def save(self, credential: Credential) -> None:
        """Atomically write ``credential`` (owner-readable only)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(
            json.dumps(credential.model_dump(mode="json"), indent=2),
            encoding="utf-8",
        )
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.path)
        logger.debug("Saved credential to %s (expires_at=%s)", self.path, credential.expires_at)

    def clear(self) -> bool:
        """Delete the stored credential. Returns ``True`` if a file was removed."""
        if self.path.exists():
            self.path.unlink()
            return True
        return False

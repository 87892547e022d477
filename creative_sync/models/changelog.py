"""
Audit-trail records written by the change detector.

``ChangelogEntry`` — one per reconcile that changed at least one tracked
field. ``CounterSample`` — one per observed change of a counter field that is
kept out of the changelog (author follower count).

Both are frozen and append-only: once written they are never merged or
rewritten. History of an entity is reconstructed only from these records.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

VALID_SUBJECT_KINDS = frozenset({"artifact", "author"})


class FieldChange(BaseModel):
    """Old and new value of one tracked field."""

    model_config = ConfigDict(frozen=True)

    old: Any = None
    new: Any = None


class ChangelogEntry(BaseModel):
    """Immutable record of one detected change event.

    Attributes:
        subject_id: Id of the artifact or author that changed.
        subject_kind: ``"artifact"`` or ``"author"``.
        update: Snapshot of the fresh observation that triggered the change.
        changes: Dotted field path → ``FieldChange``. Never empty.
        timestamp: UTC time of the reconcile.
        origin: Job or process that observed the change.
    """

    model_config = ConfigDict(frozen=True)

    subject_id: str
    subject_kind: str
    update: dict[str, Any]
    changes: dict[str, FieldChange]
    timestamp: datetime
    origin: str

    @field_validator("subject_kind")
    @classmethod
    def validate_subject_kind(cls, v: str) -> str:
        if v not in VALID_SUBJECT_KINDS:
            raise ValueError(
                f"Unknown subject_kind '{v}'. Must be one of {sorted(VALID_SUBJECT_KINDS)}."
            )
        return v

    @field_validator("changes")
    @classmethod
    def validate_changes(cls, v: dict[str, FieldChange]) -> dict[str, FieldChange]:
        if not v:
            raise ValueError("A changelog entry must record at least one changed field.")
        return v

    @property
    def changed_fields(self) -> list[str]:
        return sorted(self.changes)

    def to_document(self) -> dict[str, Any]:
        """JSON-safe dict for the append-only changelog collection."""
        return self.model_dump(mode="json")


class CounterSample(BaseModel):
    """One observed change of a counter field, e.g. an author's follower count."""

    model_config = ConfigDict(frozen=True)

    subject_id: str
    field: str
    old: Any = None
    new: Any = None
    timestamp: datetime
    origin: str

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

"""Time-aligned sample of a polled entity (e.g. an artifact's player count)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class Sample(BaseModel):
    """One value for one entity, stamped with the boundary it belongs to.

    ``boundary`` is the aligned wall-clock instant (``08:10:00``), never the
    moment the sampler actually ran.
    """

    model_config = ConfigDict(frozen=True)

    entity_id: str
    owner_id: Optional[str] = None
    value: int
    boundary: datetime
    source: str

    @field_validator("value")
    @classmethod
    def validate_value(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"Sample values must be >= 0, got {v}.")
        return v

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

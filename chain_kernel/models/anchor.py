"""Anchor: the fixed external commitment a chain is built around."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_validator, model_validator


class AnchorType(str, Enum):
    CLASS = "class"
    SEMINAR = "seminar"
    WORKSHOP = "workshop"
    APPOINTMENT = "appointment"
    OTHER = "other"


class Anchor(BaseModel):
    """
    A scheduled commitment supplied by calendar synchronization.

    Never mutated by the kernel. Chains keep a snapshot of it.
    """

    id: str
    start: datetime
    end: datetime
    title: str
    location: Optional[str] = None         # Free-text place, None = no travel lookup
    type: AnchorType = AnchorType.OTHER
    must_attend: bool = True
    calendar_event_id: Optional[str] = None

    @field_validator("start", "end")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # Naive times are read as UTC, matching the clock callers supply
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _check_window(self) -> "Anchor":
        if self.end <= self.start:
            raise ValueError("anchor end must be after start")
        return self

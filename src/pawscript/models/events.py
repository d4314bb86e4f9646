"""
Logged Event Models

Observations supplied by the mobile logging app: dose events and daily
symptom entries. The engine only reads them.
"""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pawscript.timeutil import ensure_utc


class DoseStatus(str, Enum):
    """Status recorded by the pet owner."""
    GIVEN = "given"
    MISSED = "missed"
    SKIPPED = "skipped"


class LoggedDoseEvent(BaseModel):
    """A dose logged against a scheduled instant."""

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    visit_id: str
    medication_id: str | None = Field(default=None, description="Missing on legacy records")
    medication_name: str = ""
    scheduled_at: datetime = Field(..., description="Scheduled instant the log was made against")
    actual_at: datetime | None = Field(default=None, description="When the dose was actually given")
    status: DoseStatus
    logged_at: datetime | None = None
    notes: str | None = None

    @field_validator("scheduled_at", "actual_at", "logged_at")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value else value

    @property
    def occurred_at(self) -> datetime:
        return self.actual_at or self.scheduled_at

    @property
    def recency_key(self) -> datetime:
        """Ordering used when several logs target one instant."""
        return self.logged_at or self.actual_at or self.scheduled_at


class SymptomEntry(BaseModel):
    """A daily symptom observation."""

    model_config = ConfigDict(frozen=True)

    visit_id: str | None = None
    date: date
    appetite: int = Field(..., ge=1, le=5, description="1-5 scale")
    energy: int = Field(..., ge=1, le=5, description="1-5 scale")
    panting: bool = False
    notes: str | None = None
    recorded_at: datetime | None = None

    @field_validator("recorded_at")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value else value

"""
Medication Domain Models

Pydantic models for prescribed medication plans and taper stages,
plus the clinic's frequency catalog.
"""

from datetime import date
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Frequency Catalog
# =============================================================================

EVERY_OTHER_DAY = 0.5
AS_NEEDED = -1
EVERY_8_HOURS = -8
EVERY_12_HOURS = -12
CUSTOM = -99


class FrequencyOption(BaseModel):
    """A selectable dosing frequency."""

    model_config = ConfigDict(frozen=True)

    value: float
    label: str
    abbreviation: str
    times: tuple[str, ...] = ()
    category: Literal["common", "other"] = "common"


FREQUENCY_OPTIONS: tuple[FrequencyOption, ...] = (
    # Common
    FrequencyOption(value=1, label="SID – Once daily", abbreviation="SID", times=("08:00",)),
    FrequencyOption(value=2, label="BID – Twice daily", abbreviation="BID", times=("08:00", "20:00")),
    FrequencyOption(value=3, label="TID – Three times daily", abbreviation="TID",
                    times=("08:00", "14:00", "20:00")),
    FrequencyOption(value=4, label="QID – Four times daily", abbreviation="QID",
                    times=("08:00", "12:00", "16:00", "20:00")),

    # Other
    FrequencyOption(value=EVERY_OTHER_DAY, label="EOD – Every other day", abbreviation="EOD",
                    times=("08:00",), category="other"),
    FrequencyOption(value=AS_NEEDED, label="PRN – As needed", abbreviation="PRN", category="other"),
    FrequencyOption(value=EVERY_8_HOURS, label="q8h – Every 8 hours", abbreviation="q8h",
                    times=("08:00", "16:00", "00:00"), category="other"),
    FrequencyOption(value=EVERY_12_HOURS, label="q12h – Every 12 hours", abbreviation="q12h",
                    times=("08:00", "20:00"), category="other"),
    FrequencyOption(value=CUSTOM, label="Custom – Enter manually", abbreviation="Custom", category="other"),
)


def get_frequency_option(frequency: float | None) -> FrequencyOption | None:
    """Look up a catalog entry by frequency value."""
    if frequency is None:
        return None
    for option in FREQUENCY_OPTIONS:
        if option.value == frequency:
            return option
    return None


# =============================================================================
# Medication Models
# =============================================================================

class ScheduleShape(str, Enum):
    """How a plan's expected doses are laid out."""
    SIMPLE = "simple"
    TAPERED = "tapered"


class DoseWindow(BaseModel):
    """
    Dosing fields shared by simple plans and taper stages.

    Times of day stay as the "HH:MM" strings the clinic entered; they are
    parsed during schedule expansion so a bad value only affects its own
    medication.
    """

    model_config = ConfigDict(frozen=True)

    dosage: str = Field(default="", description="Opaque dosage text, e.g. '10mg'")
    frequency: float | None = Field(default=None, description="Doses per day or a catalog sentinel")
    times: tuple[str, ...] = Field(default=(), description="Times of day, HH:MM clinic-local")
    start_date: date | None = None
    end_date: date | None = None
    every_other_day: bool = False
    max_doses: int | None = Field(default=None, description="Total dose cap")

    @property
    def is_every_other_day(self) -> bool:
        return self.every_other_day or self.frequency == EVERY_OTHER_DAY

    @property
    def is_as_needed(self) -> bool:
        """As-needed or custom plans with no times never expect a dose."""
        return len(self.times) == 0

    @property
    def day_step(self) -> int:
        return 2 if self.is_every_other_day else 1


class TaperStage(DoseWindow):
    """
    A sub-period of a plan with its own dosage and cadence.

    Stages are contiguous by convention only; nothing here rejects
    overlapping or undated stages.
    """


class MedicationPlan(DoseWindow):
    """
    One prescribed medication within one visit.

    Either the simple-schedule fields or the taper stages are
    authoritative; when stages are present the simple fields are ignored.
    """

    id: str = Field(..., description="Medication identifier")
    name: str = Field(..., description="Display name")
    instructions: str = ""
    is_tapered: bool = False
    taper_stages: tuple[TaperStage, ...] = ()

    @property
    def shape(self) -> ScheduleShape:
        if self.is_tapered or self.taper_stages:
            return ScheduleShape.TAPERED
        return ScheduleShape.SIMPLE

    @property
    def schedule_windows(self) -> tuple[DoseWindow, ...]:
        """The windows the expander walks, in precedence order."""
        if self.shape == ScheduleShape.TAPERED:
            return self.taper_stages
        return (self,)

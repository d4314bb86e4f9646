"""
Visit Domain Models

A visit (discharge) is one clinical encounter with its prescribed plans.
"""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from pawscript.models.medication import MedicationPlan


class PetSnapshot(BaseModel):
    """Patient details as recorded at visit time."""

    model_config = ConfigDict(frozen=True)

    name: str
    species: str = ""
    weight: str | None = None


class Visit(BaseModel):
    """
    Visit (discharge) entity.

    Medications are immutable after creation; new prescriptions are
    appended as new visits.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Visit identifier")
    clinic_id: str | None = Field(default=None, description="Owning clinic")
    pet: PetSnapshot
    visit_date: date | None = Field(default=None, description="Date of the encounter")
    created_at: datetime | None = None
    diagnosis: str | None = None
    medications: tuple[MedicationPlan, ...] = ()
    notes: str | None = None

    @property
    def visited_on(self) -> date | None:
        """Visit date, falling back to the record's creation date."""
        if self.visit_date:
            return self.visit_date
        if self.created_at:
            return self.created_at.date()
        return None

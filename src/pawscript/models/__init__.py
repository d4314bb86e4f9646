"""
PawScript Data Models

Strict internal value types for visits, medication plans and logged events.
"""

from pawscript.models.medication import (
    FREQUENCY_OPTIONS,
    DoseWindow,
    FrequencyOption,
    MedicationPlan,
    ScheduleShape,
    TaperStage,
    get_frequency_option,
)
from pawscript.models.visit import PetSnapshot, Visit
from pawscript.models.events import DoseStatus, LoggedDoseEvent, SymptomEntry

__all__ = [
    # Medication
    "FREQUENCY_OPTIONS",
    "DoseWindow",
    "FrequencyOption",
    "MedicationPlan",
    "ScheduleShape",
    "TaperStage",
    "get_frequency_option",
    # Visit
    "PetSnapshot",
    "Visit",
    # Events
    "DoseStatus",
    "LoggedDoseEvent",
    "SymptomEntry",
]

"""
PawScript Analytics Engine

Pure computations over visits and logged events:
schedule expansion, dose reconciliation, adherence, symptoms and
per-patient metrics.
"""

from pawscript.engine.schedule import (
    DoseSchedule,
    ExpectedDose,
    MedicationWarning,
    expand_schedule,
    expand_visits,
    is_medication_active,
)
from pawscript.engine.reconcile import (
    LATE_THRESHOLD,
    ClassifiedDose,
    DoseOutcome,
    reconcile_doses,
)
from pawscript.engine.adherence import (
    AdherenceCounts,
    AdherenceMetrics,
    DailyAdherence,
    MedicationAdherence,
    aggregate_adherence,
    compute_adherence,
)
from pawscript.engine.symptoms import (
    FlagSeverity,
    SymptomAnalysis,
    SymptomFlag,
    SymptomFlagType,
    TrendDirection,
    analyze_symptoms,
    compute_symptoms,
    flags_on_date,
    format_flag,
    has_flags_on_date,
)
from pawscript.engine.patient import (
    ActivityEvent,
    AlertLevel,
    PatientAggregator,
    PatientMetrics,
    PatientStatus,
    compute_patient_metrics,
    matches_patient,
)

__all__ = [
    # Schedule
    "DoseSchedule",
    "ExpectedDose",
    "MedicationWarning",
    "expand_schedule",
    "expand_visits",
    "is_medication_active",
    # Reconcile
    "LATE_THRESHOLD",
    "ClassifiedDose",
    "DoseOutcome",
    "reconcile_doses",
    # Adherence
    "AdherenceCounts",
    "AdherenceMetrics",
    "DailyAdherence",
    "MedicationAdherence",
    "aggregate_adherence",
    "compute_adherence",
    # Symptoms
    "FlagSeverity",
    "SymptomAnalysis",
    "SymptomFlag",
    "SymptomFlagType",
    "TrendDirection",
    "analyze_symptoms",
    "compute_symptoms",
    "flags_on_date",
    "format_flag",
    "has_flags_on_date",
    # Patient
    "ActivityEvent",
    "AlertLevel",
    "PatientAggregator",
    "PatientMetrics",
    "PatientStatus",
    "compute_patient_metrics",
    "matches_patient",
]

"""
Patient Aggregation

Merges every visit of one patient into the longitudinal metrics shown on
the clinic dashboard:
- Overall (90-day) and active-only adherence
- Recent missed/late counts, last dose and activity status
- Symptom flag count, alert level and adherence streaks
- A most-recent-first activity timeline

Patients have no stable identifier across legacy records, so visits are
grouped by `matches_patient` alone.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo
from enum import Enum
from typing import TYPE_CHECKING, Iterable, List, Optional

import structlog
from pydantic import BaseModel, Field

from pawscript.config import EngineSettings, get_settings
from pawscript.engine.adherence import DailyAdherence, aggregate_adherence, classify_visits
from pawscript.engine.schedule import MedicationWarning, is_medication_active, last_dose_date
from pawscript.engine.symptoms import FlagSeverity, SymptomFlag, compute_symptoms
from pawscript.exceptions import ContractViolationError
from pawscript.models.events import DoseStatus, LoggedDoseEvent, SymptomEntry
from pawscript.models.visit import Visit
from pawscript.timeutil import UTC, ensure_utc, local_date, local_midnight, utcnow

if TYPE_CHECKING:
    from pawscript.readers import DoseLogReader, SymptomLogReader, VisitReader

logger = structlog.get_logger(__name__)

# A patient with any dose logged this recently counts as active
ACTIVITY_WINDOW = timedelta(days=7)


def _normalized(value: str | None) -> str:
    return (value or "").strip().casefold()


def matches_patient(visit: Visit, name: str, species: str | None = None) -> bool:
    """
    Whether a visit belongs to the named patient.

    Names compare case-insensitively; species is only compared when given.
    Two pets sharing a name and species within a clinic are merged.
    """
    if _normalized(visit.pet.name) != _normalized(name):
        return False
    if species and _normalized(visit.pet.species) != _normalized(species):
        return False
    return True


# =============================================================================
# Models
# =============================================================================

class PatientStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class AlertLevel(str, Enum):
    """Dashboard alert level."""
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class MedicationState(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class ActivityType(str, Enum):
    """Kinds of activity timeline entries."""
    DOSE_GIVEN = "dose_given"
    DOSE_LATE = "dose_late"
    DOSE_MISSED = "dose_missed"
    DOSE_SKIPPED = "dose_skipped"
    SYMPTOM_FLAG = "symptom_flag"


class MedicationActivity(BaseModel):
    """One prescribed medication and whether it is still current."""
    visit_id: str
    medication_id: str
    medication_name: str
    dosage: str = ""
    state: MedicationState
    start_date: Optional[date] = None
    last_dose_date: Optional[date] = None


class ActivityEvent(BaseModel):
    """A dose log or symptom flag on the activity timeline."""
    type: ActivityType
    timestamp: datetime
    description: str
    severity: FlagSeverity = FlagSeverity.LOW
    visit_id: Optional[str] = None
    medication_name: Optional[str] = None


class PatientMetrics(BaseModel):
    """Longitudinal metrics for one patient across all visits."""

    # Patient (from the latest visit)
    pet_name: str
    species: str = ""
    weight: Optional[str] = None
    total_visits: int = 0
    last_visit_date: Optional[date] = None

    # Adherence
    overall_adherence_rate: int = 0
    active_adherence_rate: int = 0
    active_medications: int = 0
    archived_medications: int = 0
    missed_doses_30d: int = 0
    late_doses_30d: int = 0
    current_streak: int = 0
    longest_streak: int = 0

    # Activity
    last_dose_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    current_status: PatientStatus = PatientStatus.INACTIVE
    alert_level: AlertLevel = AlertLevel.NONE

    # Symptoms
    symptom_flags_14d: int = 0
    symptom_flags: List[SymptomFlag] = Field(default_factory=list)

    medications: List[MedicationActivity] = Field(default_factory=list)
    activity: List[ActivityEvent] = Field(default_factory=list)
    warnings: List[MedicationWarning] = Field(default_factory=list)
    computed_at: datetime


# =============================================================================
# Derived Indicators
# =============================================================================

def calculate_alert_level(
    adherence_rate: int,
    countable: int,
    days_since_activity: int | None,
) -> AlertLevel:
    """
    Alert level from overall adherence and logging recency.

    Args:
        adherence_rate: Overall adherence percentage
        countable: Doses behind the rate; a zero-denominator rate is ignored
        days_since_activity: Days since the last logged dose, None if never

    Returns:
        AlertLevel
    """
    if days_since_activity is not None and days_since_activity > ACTIVITY_WINDOW.days:
        return AlertLevel.HIGH
    if countable == 0:
        return AlertLevel.NONE
    if adherence_rate < 50:
        return AlertLevel.HIGH
    if adherence_rate < 70:
        return AlertLevel.MEDIUM
    if adherence_rate < 85:
        return AlertLevel.LOW
    return AlertLevel.NONE


def calculate_streaks(timeline: Iterable[DailyAdherence]) -> tuple[int, int]:
    """
    Current and longest run of days on which every countable dose was given.

    Days with nothing countable (only skipped or unlogged doses, or nothing
    expected) neither extend nor break a run, so today only breaks the
    current run once a dose is recorded missed.
    """
    run = longest = 0
    for day in sorted(timeline, key=lambda d: d.date):
        if day.countable == 0:
            continue
        if day.missed == 0:
            run += 1
            longest = max(longest, run)
        else:
            run = 0
    return run, longest


def _dose_activity(event: LoggedDoseEvent) -> ActivityEvent:
    name = event.medication_name or "Medication"

    if event.status == DoseStatus.MISSED:
        return ActivityEvent(
            type=ActivityType.DOSE_MISSED,
            timestamp=event.occurred_at,
            description=f"{name} dose missed",
            severity=FlagSeverity.HIGH,
            visit_id=event.visit_id,
            medication_name=event.medication_name,
        )
    if event.status == DoseStatus.SKIPPED:
        return ActivityEvent(
            type=ActivityType.DOSE_SKIPPED,
            timestamp=event.occurred_at,
            description=f"{name} dose skipped",
            visit_id=event.visit_id,
            medication_name=event.medication_name,
        )

    hours_late = 0.0
    if event.actual_at is not None:
        hours_late = max(0.0, (event.actual_at - event.scheduled_at).total_seconds() / 3600)

    if hours_late > 6:
        severity = FlagSeverity.HIGH
    elif hours_late > 2:
        severity = FlagSeverity.MEDIUM
    else:
        severity = FlagSeverity.LOW

    if severity == FlagSeverity.LOW:
        return ActivityEvent(
            type=ActivityType.DOSE_GIVEN,
            timestamp=event.occurred_at,
            description=f"{name} given",
            visit_id=event.visit_id,
            medication_name=event.medication_name,
        )
    return ActivityEvent(
        type=ActivityType.DOSE_LATE,
        timestamp=event.occurred_at,
        description=f"{name} given {hours_late:.1f}h late",
        severity=severity,
        visit_id=event.visit_id,
        medication_name=event.medication_name,
    )


def build_activity_timeline(
    dose_events: Iterable[LoggedDoseEvent],
    flags: Iterable[SymptomFlag],
    since: datetime | None = None,
    tz: tzinfo = UTC,
    limit: int | None = None,
) -> List[ActivityEvent]:
    """Dose logs and symptom flags, most recent first."""
    activity = [_dose_activity(event) for event in dose_events]
    for flag in flags:
        activity.append(ActivityEvent(
            type=ActivityType.SYMPTOM_FLAG,
            timestamp=local_midnight(flag.date, tz),
            description=flag.description,
            severity=flag.severity,
        ))

    if since is not None:
        activity = [a for a in activity if a.timestamp >= since]
    activity.sort(key=lambda a: a.timestamp, reverse=True)
    return activity[:limit] if limit is not None else activity


# =============================================================================
# Metrics
# =============================================================================

def compute_patient_metrics(
    visits: Iterable[Visit],
    dose_events: Iterable[LoggedDoseEvent],
    symptom_entries: Iterable[SymptomEntry],
    now: datetime | None = None,
    settings: EngineSettings | None = None,
) -> PatientMetrics:
    """
    Merge all visits of one patient into PatientMetrics.

    Args:
        visits: Every visit already matched to the patient
        dose_events: Dose events logged against those visits
        symptom_entries: Symptom entries logged against those visits
        now: Reference clock
        settings: Window sizes and clinic timezone

    Returns:
        PatientMetrics; visits without any logs give zero-valued metrics

    Raises:
        ContractViolationError: If there are no visits or the patient has no name
    """
    if visits is None:
        raise ContractViolationError("visits is required")
    visits = sorted(visits, key=lambda v: (v.visited_on or date.min, v.id))
    if not visits:
        raise ContractViolationError("Patient has no visits")

    latest = visits[-1]
    if not latest.pet.name or not latest.pet.name.strip():
        raise ContractViolationError("Patient name is required")

    settings = settings or get_settings()
    tz = settings.tz
    now = ensure_utc(now) if now else utcnow()
    today = local_date(now, tz)

    visit_ids = {visit.id for visit in visits}
    events = [e for e in dose_events if e.visit_id in visit_ids]

    # Adherence
    overall_start = now - timedelta(days=settings.overall_window_days)
    recent_start = now - timedelta(days=settings.recent_window_days)
    classified, expansion = classify_visits(visits, events, overall_start, now, tz)

    medications: list[MedicationActivity] = []
    active_keys: set[tuple[str, str]] = set()
    for visit in visits:
        for plan in visit.medications:
            active = is_medication_active(plan, today)
            if active:
                active_keys.add((visit.id, plan.id))
            windows = plan.schedule_windows
            medications.append(MedicationActivity(
                visit_id=visit.id,
                medication_id=plan.id,
                medication_name=plan.name,
                dosage=windows[-1].dosage if windows else plan.dosage,
                state=MedicationState.ACTIVE if active else MedicationState.ARCHIVED,
                start_date=windows[0].start_date if windows else None,
                last_dose_date=last_dose_date(windows[-1]) if windows else None,
            ))

    overall = aggregate_adherence(classified, overall_start, now, tz=tz)
    active_only = aggregate_adherence(classified, overall_start, now, medication_keys=active_keys, tz=tz)
    recent = aggregate_adherence(classified, recent_start, now, tz=tz)
    current_streak, longest_streak = calculate_streaks(overall.timeline)

    # Activity
    given = [e.occurred_at for e in events if e.status == DoseStatus.GIVEN]
    last_dose_at = max(given, default=None)
    last_activity_at = max((e.occurred_at for e in events), default=None)

    days_since_activity = None
    current_status = PatientStatus.INACTIVE
    if last_activity_at is not None:
        days_since_activity = (now - last_activity_at).days
        if now - last_activity_at <= ACTIVITY_WINDOW:
            current_status = PatientStatus.ACTIVE

    # Symptoms
    symptoms = compute_symptoms(
        visits,
        symptom_entries,
        window_days=settings.symptom_flag_window_days,
        now=now,
        tz=tz,
    )

    metrics = PatientMetrics(
        pet_name=latest.pet.name,
        species=latest.pet.species,
        weight=latest.pet.weight,
        total_visits=len(visits),
        last_visit_date=latest.visited_on,
        overall_adherence_rate=overall.overall.rate,
        active_adherence_rate=active_only.overall.rate,
        active_medications=sum(1 for m in medications if m.state == MedicationState.ACTIVE),
        archived_medications=sum(1 for m in medications if m.state == MedicationState.ARCHIVED),
        missed_doses_30d=recent.overall.missed,
        late_doses_30d=recent.overall.late,
        current_streak=current_streak,
        longest_streak=longest_streak,
        last_dose_at=last_dose_at,
        last_activity_at=last_activity_at,
        current_status=current_status,
        alert_level=calculate_alert_level(
            overall.overall.rate, overall.overall.countable, days_since_activity
        ),
        symptom_flags_14d=len(symptoms.flags),
        symptom_flags=symptoms.flags,
        medications=medications,
        activity=build_activity_timeline(events, symptoms.flags, since=recent_start, tz=tz),
        warnings=list(expansion.warnings),
        computed_at=now,
    )

    logger.info(
        "Patient metrics computed",
        pet=metrics.pet_name,
        visits=metrics.total_visits,
        overall_rate=metrics.overall_adherence_rate,
        active_rate=metrics.active_adherence_rate,
        status=metrics.current_status.value,
        alert=metrics.alert_level.value,
        warnings=len(metrics.warnings),
    )
    return metrics


# =============================================================================
# Store-backed Aggregator
# =============================================================================

@dataclass
class PatientRecord:
    """Everything read from the store for one patient."""
    visits: list[Visit] = field(default_factory=list)
    dose_events: list[LoggedDoseEvent] = field(default_factory=list)
    symptom_entries: list[SymptomEntry] = field(default_factory=list)


class PatientAggregator:
    """
    Reads a patient's visits and logs, then computes PatientMetrics.

    Dose and symptom reads for every visit run concurrently and are joined
    before computation; read errors propagate unchanged.
    """

    def __init__(
        self,
        visit_reader: "VisitReader",
        dose_reader: "DoseLogReader",
        symptom_reader: "SymptomLogReader",
        settings: EngineSettings | None = None,
    ):
        self.visit_reader = visit_reader
        self.dose_reader = dose_reader
        self.symptom_reader = symptom_reader
        self.settings = settings or get_settings()

    @classmethod
    def from_store(cls, store, settings: EngineSettings | None = None) -> "PatientAggregator":
        """Aggregator over a store that implements every reader."""
        return cls(store, store, store, settings=settings)

    async def load(
        self,
        clinic_id: str,
        name: str,
        species: str | None = None,
        now: datetime | None = None,
    ) -> PatientRecord:
        """
        Read all visits of a patient and the logs recorded against them.

        Raises:
            ContractViolationError: If no patient name is given
        """
        if not name or not name.strip():
            raise ContractViolationError("Patient name is required")

        now = ensure_utc(now) if now else utcnow()
        visits = [
            v for v in await self.visit_reader.get_visits(clinic_id, name, species)
            if matches_patient(v, name, species)
        ]
        if not visits:
            logger.info("No visits found", clinic_id=clinic_id, pet=name, species=species)
            return PatientRecord()

        today = local_date(now, self.settings.tz)
        symptom_start = today - timedelta(
            days=max(self.settings.symptom_window_days, self.settings.symptom_flag_window_days)
        )

        dose_results, symptom_results = await asyncio.gather(
            asyncio.gather(*(self.dose_reader.get_dose_events(v.id) for v in visits)),
            asyncio.gather(*(
                self.symptom_reader.get_symptom_entries(v.id, symptom_start, today) for v in visits
            )),
        )

        record = PatientRecord(visits=visits)
        for visit, events, entries in zip(visits, dose_results, symptom_results):
            logger.debug(
                "Visit read",
                visit_id=visit.id,
                dose_events=len(events),
                symptom_entries=len(entries),
            )
            record.dose_events.extend(events)
            record.symptom_entries.extend(entries)
        return record

    async def metrics(
        self,
        clinic_id: str,
        name: str,
        species: str | None = None,
        now: datetime | None = None,
    ) -> PatientMetrics:
        """Load a patient and compute their metrics."""
        now = ensure_utc(now) if now else utcnow()
        record = await self.load(clinic_id, name, species, now=now)
        return compute_patient_metrics(
            record.visits,
            record.dose_events,
            record.symptom_entries,
            now=now,
            settings=self.settings,
        )

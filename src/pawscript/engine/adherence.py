"""
Adherence Aggregation

Rolls classified doses up into the rates shown on the clinic dashboard:
- Overall counts and rate
- Per-medication breakdown across visits
- Daily timeline for charting

Rate = given / (given + missed), as an integer percentage. Unlogged and
skipped doses never enter the numerator or the denominator, and a zero
denominator reports 0.
"""

from collections import defaultdict
from datetime import date, datetime, timedelta, tzinfo
from typing import Collection, Iterable

import structlog
from pydantic import BaseModel, Field, computed_field

from pawscript.engine.reconcile import ClassifiedDose, DoseOutcome, events_for_plan, reconcile_doses
from pawscript.engine.schedule import MedicationWarning, VisitExpansion, expand_visits
from pawscript.config import get_settings
from pawscript.exceptions import ContractViolationError
from pawscript.models.events import LoggedDoseEvent
from pawscript.models.visit import Visit
from pawscript.timeutil import UTC, ensure_utc, local_date, utcnow

logger = structlog.get_logger(__name__)


def adherence_rate(given: int, countable: int) -> int:
    """Integer percentage rounded half up; 0 when nothing is countable."""
    if countable <= 0:
        return 0
    return (200 * given + countable) // (2 * countable)


# =============================================================================
# Result Models
# =============================================================================

class AdherenceCounts(BaseModel):
    """Dose counts for one scope (overall, a medication, a day)."""
    scheduled: int = 0
    given: int = 0
    on_time: int = 0
    late: int = 0
    missed: int = 0
    skipped: int = 0
    unlogged: int = 0

    def add(self, dose: ClassifiedDose) -> None:
        self.scheduled += 1
        if dose.status == DoseOutcome.GIVEN_ON_TIME:
            self.given += 1
            self.on_time += 1
        elif dose.status == DoseOutcome.GIVEN_LATE:
            self.given += 1
            self.late += 1
        elif dose.status == DoseOutcome.MISSED:
            self.missed += 1
        elif dose.status == DoseOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.unlogged += 1

    @computed_field
    @property
    def countable(self) -> int:
        return self.given + self.missed

    @computed_field
    @property
    def rate(self) -> int:
        return adherence_rate(self.given, self.countable)


class MedicationAdherence(AdherenceCounts):
    """Per-medication breakdown; names match exactly across visits."""
    medication_name: str
    visit_ids: list[str] = Field(default_factory=list)


class DailyAdherence(AdherenceCounts):
    """One calendar day of the timeline."""
    date: date


class AdherenceMetrics(BaseModel):
    """Adherence over a window."""
    overall: AdherenceCounts = Field(default_factory=AdherenceCounts)
    per_medication: list[MedicationAdherence] = Field(default_factory=list)
    timeline: list[DailyAdherence] = Field(default_factory=list)

    window_start: datetime | None = None
    window_end: datetime | None = None

    # Plans left out of every rate
    unscheduled_medications: list[str] = Field(default_factory=list)
    warnings: list[MedicationWarning] = Field(default_factory=list)


# =============================================================================
# Aggregation
# =============================================================================

def _calendar_days(first: date, last: date) -> list[date]:
    return [first + timedelta(days=offset) for offset in range((last - first).days + 1)]


def aggregate_adherence(
    doses: Iterable[ClassifiedDose],
    window_start: datetime | None = None,
    window_end: datetime | None = None,
    medication_keys: Collection[tuple[str, str]] | None = None,
    tz: tzinfo = UTC,
) -> AdherenceMetrics:
    """
    Reduce classified doses into overall, per-medication and daily rates.

    Args:
        doses: Classified doses, any number of medications and visits
        window_start: Drop doses scheduled before this instant
        window_end: Drop doses scheduled after this instant
        medication_keys: Keep only these (visit_id, medication_id) pairs
        tz: Clinic timezone used to bucket doses into days

    Returns:
        AdherenceMetrics
    """
    window_start = ensure_utc(window_start) if window_start else None
    window_end = ensure_utc(window_end) if window_end else None
    if window_start and window_end and window_end < window_start:
        raise ContractViolationError("Adherence window ends before it starts")

    overall = AdherenceCounts()
    per_medication: dict[str, MedicationAdherence] = {}
    visits_by_medication: dict[str, set[str]] = defaultdict(set)
    per_day: dict[date, DailyAdherence] = {}

    for dose in doses:
        expected = dose.expected
        if window_start and expected.scheduled_at < window_start:
            continue
        if window_end and expected.scheduled_at > window_end:
            continue
        if medication_keys is not None and (expected.visit_id, expected.medication_id) not in medication_keys:
            continue

        overall.add(dose)

        name = expected.medication_name
        if name not in per_medication:
            per_medication[name] = MedicationAdherence(medication_name=name)
        per_medication[name].add(dose)
        if expected.visit_id:
            visits_by_medication[name].add(expected.visit_id)

        day = local_date(expected.scheduled_at, tz)
        if day not in per_day:
            per_day[day] = DailyAdherence(date=day)
        per_day[day].add(dose)

    for name, medication in per_medication.items():
        medication.visit_ids = sorted(visits_by_medication[name])

    first = local_date(window_start, tz) if window_start else min(per_day, default=None)
    last = local_date(window_end, tz) if window_end else max(per_day, default=None)
    timeline = []
    if first is not None and last is not None:
        timeline = [per_day.get(day) or DailyAdherence(date=day) for day in _calendar_days(first, last)]

    return AdherenceMetrics(
        overall=overall,
        per_medication=[per_medication[name] for name in sorted(per_medication)],
        timeline=timeline,
        window_start=window_start,
        window_end=window_end,
    )


def classify_visits(
    visits: Iterable[Visit],
    dose_events: Iterable[LoggedDoseEvent],
    window_start: datetime | None,
    now: datetime,
    tz: tzinfo = UTC,
) -> tuple[list[ClassifiedDose], VisitExpansion]:
    """Expand and reconcile every medication of every visit."""
    events = list(dose_events)
    expansion = expand_visits(visits, window_start, now, now=now, tz=tz)

    classified: list[ClassifiedDose] = []
    for (visit_id, _), schedule in expansion.schedules.items():
        classified.extend(reconcile_doses(schedule, events_for_plan(visit_id, schedule.plan, events)))
    return classified, expansion


def compute_adherence(
    visits: Iterable[Visit],
    dose_events: Iterable[LoggedDoseEvent],
    window_days: int | None = None,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> AdherenceMetrics:
    """
    Adherence across the given visits over the last `window_days` days.

    Args:
        visits: Visits whose plans define the expected doses
        dose_events: Logged dose events for those visits
        window_days: Size of the trailing window (default: settings)
        now: Reference clock
        tz: Clinic timezone (default: settings)

    Returns:
        AdherenceMetrics, with a warning per skipped medication

    Raises:
        ContractViolationError: If window_days is negative
    """
    settings = get_settings()
    window_days = settings.adherence_window_days if window_days is None else window_days
    tz = tz or settings.tz
    if window_days < 0:
        raise ContractViolationError(f"window_days must be >= 0, got {window_days}")

    now = ensure_utc(now) if now else utcnow()
    window_start = now - timedelta(days=window_days)

    classified, expansion = classify_visits(visits, dose_events, window_start, now, tz)
    metrics = aggregate_adherence(classified, window_start, now, tz=tz)
    metrics.warnings = list(expansion.warnings)
    metrics.unscheduled_medications = sorted(set(expansion.unscheduled))

    logger.debug(
        "Adherence computed",
        window_days=window_days,
        scheduled=metrics.overall.scheduled,
        rate=metrics.overall.rate,
        skipped_medications=len(expansion.warnings),
    )
    return metrics

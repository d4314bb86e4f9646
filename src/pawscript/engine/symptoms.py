"""
Symptom Analysis

Analyze daily symptom logs from pet owners:
- One entry per calendar day (latest recorded wins)
- Appetite and energy trends against a trailing 7-day average
- Panting frequency
- Dated symptom flags for low scores, sudden drops and frequent panting

Flags are derived, never stored; a flag is identified by (type, date) so
recomputing over the same entries always yields the same list.
"""

from datetime import date, datetime, timedelta, tzinfo
from enum import Enum
from typing import Iterable, List, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from pawscript.config import get_settings
from pawscript.exceptions import ContractViolationError
from pawscript.models.events import SymptomEntry
from pawscript.models.visit import Visit
from pawscript.timeutil import UTC, ensure_utc, local_date, utcnow

logger = structlog.get_logger(__name__)


# Fixed clinical thresholds
LOW_SCORE_THRESHOLD = 2
TREND_DEAD_BAND = 0.5
TRAILING_DAYS = 7
PANTING_FREQUENT_DAYS = 3
DROP_POINTS = 2
DROP_HIGH_POINTS = 3
DROP_MIN_BASELINE = 3
SUSTAINED_DAYS = 2
PROLONGED_DAYS = 4
RECENT_ENTRY_COUNT = 14


# =============================================================================
# Models
# =============================================================================

class TrendDirection(str, Enum):
    """Direction of a symptom score."""
    RISING = "rising"
    FALLING = "falling"
    STABLE = "stable"


class FlagSeverity(str, Enum):
    """Symptom flag severity."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SymptomFlagType(str, Enum):
    """Kinds of symptom flags."""
    APPETITE_LOW = "appetite_low"
    APPETITE_DROP = "appetite_drop"
    ENERGY_LOW = "energy_low"
    ENERGY_DROP = "energy_drop"
    PANTING_FREQUENT = "panting_frequent"


_FLAG_ORDER = list(SymptomFlagType)


class SymptomFlag(BaseModel):
    """A dated alert raised by a symptom rule."""

    model_config = ConfigDict(frozen=True)

    type: SymptomFlagType
    date: date
    severity: FlagSeverity
    description: str
    value: Optional[float] = None
    baseline: Optional[float] = None

    @property
    def key(self) -> tuple[SymptomFlagType, date]:
        return (self.type, self.date)


class ScoreTrend(BaseModel):
    """Trend of one 1-5 score."""
    current: int = 0
    seven_day_average: float = 0.0
    trend: TrendDirection = TrendDirection.STABLE


class PantingTrend(BaseModel):
    """Panting over the trailing logged days."""
    recent_days: int = 0
    is_frequent: bool = False


class SymptomTrends(BaseModel):
    appetite: ScoreTrend = Field(default_factory=ScoreTrend)
    energy: ScoreTrend = Field(default_factory=ScoreTrend)
    panting: PantingTrend = Field(default_factory=PantingTrend)


class SymptomAnalysis(BaseModel):
    """Symptom analysis over a window."""
    flags: List[SymptomFlag] = Field(default_factory=list)
    recent_entries: List[SymptomEntry] = Field(default_factory=list)  # most recent first
    trends: SymptomTrends = Field(default_factory=SymptomTrends)
    entry_count: int = 0


# =============================================================================
# Analysis
# =============================================================================

def daily_entries(entries: Iterable[SymptomEntry]) -> List[SymptomEntry]:
    """
    Collapse entries to one per calendar day, oldest first.

    When a day has several entries the most recently recorded one is kept;
    entries without a recorded time lose to those with one.
    """
    by_date: dict[date, SymptomEntry] = {}
    floor = datetime.min.replace(tzinfo=UTC)
    for entry in entries:
        current = by_date.get(entry.date)
        if current is None or (entry.recorded_at or floor) >= (current.recorded_at or floor):
            by_date[entry.date] = entry
    return [by_date[d] for d in sorted(by_date)]


def _mean(values: List[int]) -> float:
    return sum(values) / len(values) if values else 0.0


def _score_trend(values: List[int]) -> ScoreTrend:
    trailing = values[-TRAILING_DAYS:]
    current = trailing[-1]
    average = _mean(trailing)
    difference = current - average

    if abs(difference) < TREND_DEAD_BAND:
        trend = TrendDirection.STABLE
    elif difference > 0:
        trend = TrendDirection.RISING
    else:
        trend = TrendDirection.FALLING

    return ScoreTrend(current=current, seven_day_average=round(average, 2), trend=trend)


def calculate_trends(days: List[SymptomEntry]) -> SymptomTrends:
    """Trends from daily entries ordered oldest first."""
    if not days:
        return SymptomTrends()

    recent_panting = sum(1 for e in days[-TRAILING_DAYS:] if e.panting)
    return SymptomTrends(
        appetite=_score_trend([e.appetite for e in days]),
        energy=_score_trend([e.energy for e in days]),
        panting=PantingTrend(
            recent_days=recent_panting,
            is_frequent=recent_panting >= PANTING_FREQUENT_DAYS,
        ),
    )


def _low_run(days: List[SymptomEntry], index: int, metric: str) -> int:
    """Consecutive calendar days ending at `index` with a low score."""
    run = 1
    while index - run >= 0:
        previous = days[index - run]
        if previous.date != days[index].date - timedelta(days=run):
            break
        if getattr(previous, metric) > LOW_SCORE_THRESHOLD:
            break
        run += 1
    return run


def _low_severity(value: int, run: int) -> FlagSeverity:
    if run >= PROLONGED_DAYS:
        return FlagSeverity.HIGH
    if run >= SUSTAINED_DAYS:
        # A floor score held for several days escalates
        return FlagSeverity.HIGH if value == 1 else FlagSeverity.MEDIUM
    return FlagSeverity.LOW


_METRICS = (
    ("appetite", "Appetite", SymptomFlagType.APPETITE_LOW, SymptomFlagType.APPETITE_DROP),
    ("energy", "Energy", SymptomFlagType.ENERGY_LOW, SymptomFlagType.ENERGY_DROP),
)


def generate_flags(days: List[SymptomEntry]) -> List[SymptomFlag]:
    """
    Evaluate every flag rule for every day.

    Args:
        days: Daily entries ordered oldest first

    Returns:
        Flags ordered most recent first, one per (type, date)
    """
    flags: dict[tuple[SymptomFlagType, date], SymptomFlag] = {}

    def raise_flag(flag: SymptomFlag) -> None:
        flags.setdefault(flag.key, flag)

    for index, entry in enumerate(days):
        for metric, label, low_type, drop_type in _METRICS:
            value = getattr(entry, metric)

            # Low score on the day, graded by depth and duration
            if value <= LOW_SCORE_THRESHOLD:
                run = _low_run(days, index, metric)
                duration = f" for {run} consecutive days" if run > 1 else ""
                raise_flag(SymptomFlag(
                    type=low_type,
                    date=entry.date,
                    severity=_low_severity(value, run),
                    description=f"Low {label.lower()} ({value}/5){duration}",
                    value=value,
                ))

            # Sudden drop against the preceding logged days
            baseline_days = days[max(0, index - TRAILING_DAYS):index]
            if len(baseline_days) >= DROP_MIN_BASELINE:
                baseline = _mean([getattr(e, metric) for e in baseline_days])
                drop = baseline - value
                if drop >= DROP_POINTS:
                    raise_flag(SymptomFlag(
                        type=drop_type,
                        date=entry.date,
                        severity=FlagSeverity.HIGH if drop >= DROP_HIGH_POINTS else FlagSeverity.MEDIUM,
                        description=f"{label} dropped {round(drop, 1)} points below recent average",
                        value=value,
                        baseline=round(baseline, 1),
                    ))

        # Frequent panting over the trailing logged days
        if entry.panting:
            trailing = days[max(0, index - TRAILING_DAYS + 1):index + 1]
            panting_days = sum(1 for e in trailing if e.panting)
            if panting_days >= PANTING_FREQUENT_DAYS:
                # Escalates alongside a same-day low or dropped appetite/energy
                with_drop = any(
                    (flag_type, entry.date) in flags
                    for _, _, low_type, drop_type in _METRICS
                    for flag_type in (low_type, drop_type)
                )
                raise_flag(SymptomFlag(
                    type=SymptomFlagType.PANTING_FREQUENT,
                    date=entry.date,
                    severity=FlagSeverity.HIGH if with_drop else FlagSeverity.MEDIUM,
                    description=f"Frequent panting ({panting_days} of the last {len(trailing)} logged days)",
                    value=panting_days,
                ))

    return sorted(
        flags.values(),
        key=lambda f: (-f.date.toordinal(), _FLAG_ORDER.index(f.type)),
    )


def analyze_symptoms(
    entries: Iterable[SymptomEntry],
    window_days: int = 30,
    as_of: date | None = None,
) -> SymptomAnalysis:
    """
    Analyze symptom entries over the trailing window ending at `as_of`.

    Args:
        entries: Symptom entries in any order
        window_days: Days to include before `as_of`
        as_of: Last day of the window (default: today, UTC)

    Returns:
        SymptomAnalysis; empty entries give zero-valued, stable trends
    """
    if window_days is None or window_days < 0:
        raise ContractViolationError(f"window_days must be >= 0, got {window_days}")

    as_of = as_of or utcnow().date()
    first = as_of - timedelta(days=window_days)
    days = [e for e in daily_entries(entries) if first <= e.date <= as_of]

    if not days:
        return SymptomAnalysis()

    return SymptomAnalysis(
        flags=generate_flags(days),
        recent_entries=list(reversed(days[-RECENT_ENTRY_COUNT:])),
        trends=calculate_trends(days),
        entry_count=len(days),
    )


def compute_symptoms(
    visits: Iterable[Visit],
    symptom_entries: Iterable[SymptomEntry],
    window_days: int | None = None,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> SymptomAnalysis:
    """
    Symptom analysis merged across visits.

    Window size and clinic timezone default to the engine settings.

    Entries attributed to visits outside `visits` are ignored; entries
    without a visit are kept.
    """
    settings = get_settings()
    window_days = settings.symptom_window_days if window_days is None else window_days
    tz = tz or settings.tz

    visit_ids = {visit.id for visit in visits}
    entries = [e for e in symptom_entries if e.visit_id is None or e.visit_id in visit_ids]
    now = ensure_utc(now) if now else utcnow()
    analysis = analyze_symptoms(entries, window_days=window_days, as_of=local_date(now, tz))

    logger.debug(
        "Symptoms analyzed",
        visits=len(visit_ids),
        entries=analysis.entry_count,
        flags=len(analysis.flags),
    )
    return analysis


# =============================================================================
# Flag Helpers
# =============================================================================

def flags_on_date(flags: Iterable[SymptomFlag], day: date) -> List[SymptomFlag]:
    """Flags raised on a given day."""
    return [flag for flag in flags if flag.date == day]


def has_flags_on_date(flags: Iterable[SymptomFlag], day: date) -> bool:
    return any(flag.date == day for flag in flags)


def format_flag(flag: SymptomFlag) -> str:
    """Short dashboard sentence for a flag."""
    when = f"{flag.date:%b} {flag.date.day}"
    value = int(flag.value) if flag.value is not None else None

    if flag.type == SymptomFlagType.APPETITE_LOW:
        return f"{when}: Low appetite ({value}/5)"
    if flag.type == SymptomFlagType.ENERGY_LOW:
        return f"{when}: Low energy ({value}/5)"
    if flag.type == SymptomFlagType.APPETITE_DROP:
        return f"{when}: Appetite dropped from {flag.baseline} to {value}"
    if flag.type == SymptomFlagType.ENERGY_DROP:
        return f"{when}: Energy dropped from {flag.baseline} to {value}"
    if flag.type == SymptomFlagType.PANTING_FREQUENT:
        return f"{when}: Frequent panting"
    return f"{when}: {flag.description}"

"""
Schedule Expansion

Turns a medication plan into the concrete instants at which doses were
expected. Handles simple daily plans, every-other-day cadences anchored
to the plan start, dose caps, and tapered plans whose stages are walked
in order (a later-listed stage owns any day it shares with an earlier one).

Nothing here performs I/O; expansions are recomputed on every query.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Iterator
import re

import structlog

from pawscript.exceptions import MalformedScheduleError
from pawscript.models.medication import DoseWindow, MedicationPlan, ScheduleShape
from pawscript.timeutil import UTC, ensure_utc, local_date, local_instant, utcnow

logger = structlog.get_logger(__name__)

_TIME_PATTERN = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")

# Open-ended plans stop counting as current this long after they start
OPEN_ENDED_ACTIVE_DAYS = 30


@dataclass(frozen=True)
class ExpectedDose:
    """A dose that should have been given at `scheduled_at`."""
    scheduled_at: datetime
    medication_id: str
    medication_name: str = ""
    dosage: str = ""
    visit_id: str | None = None
    stage_index: int | None = None


def parse_time_of_day(value: str) -> time:
    """Parse an "HH:MM" string; raises MalformedScheduleError otherwise."""
    match = _TIME_PATTERN.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise MalformedScheduleError(f"Unparseable time of day: {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


def _slots(window: DoseWindow) -> list[time]:
    return sorted({parse_time_of_day(t) for t in window.times})


def validate_plan(plan: MedicationPlan) -> None:
    """
    Reject plans whose fields contradict each other.

    Raises:
        MalformedScheduleError: naming the first problem found
    """
    if plan.shape == ScheduleShape.TAPERED and not plan.taper_stages:
        raise MalformedScheduleError("Tapered plan has no taper stages", plan.id)

    for index, window in enumerate(plan.schedule_windows):
        label = "plan" if window is plan else f"taper stage {index + 1}"
        if window.start_date is None:
            raise MalformedScheduleError(f"{label} has no start date", plan.id)
        if window.end_date is not None and window.end_date < window.start_date:
            raise MalformedScheduleError(f"{label} ends before it starts", plan.id)
        if window.max_doses is not None and window.max_doses <= 0:
            raise MalformedScheduleError(f"{label} has a non-positive dose cap", plan.id)
        for value in window.times:
            try:
                parse_time_of_day(value)
            except MalformedScheduleError as e:
                raise MalformedScheduleError(f"{label}: {e.reason}", plan.id) from e


def last_dose_date(window: DoseWindow) -> date | None:
    """
    Last calendar day on which a window can expect a dose.

    Uses the end date, or the day the dose cap runs out; None when the
    window is open-ended.
    """
    candidates = []
    if window.end_date is not None:
        candidates.append(window.end_date)
    if window.max_doses is not None and window.max_doses > 0 and window.times and window.start_date is not None:
        try:
            per_day = len(_slots(window))
        except MalformedScheduleError:
            per_day = len(set(window.times))
        dosing_days = -(-window.max_doses // per_day)
        candidates.append(window.start_date + timedelta(days=(dosing_days - 1) * window.day_step))
    return min(candidates) if candidates else None


class DoseSchedule:
    """
    Restartable, finite sequence of the expected doses of one plan.

    Iterating yields ExpectedDose values ordered by scheduled instant,
    deduplicated, bounded by the window and never later than `now`.
    """

    def __init__(
        self,
        plan: MedicationPlan,
        window_start: datetime | None = None,
        window_end: datetime | None = None,
        now: datetime | None = None,
        tz: tzinfo = UTC,
        visit_id: str | None = None,
    ):
        validate_plan(plan)
        self.plan = plan
        self.now = ensure_utc(now) if now else utcnow()
        self.window_start = ensure_utc(window_start) if window_start else None
        end = ensure_utc(window_end) if window_end else self.now
        self.window_end = min(end, self.now)
        self.tz = tz
        self.visit_id = visit_id

    def __iter__(self) -> Iterator[ExpectedDose]:
        windows = self.plan.schedule_windows
        claimed: set[date] = set()
        per_stage: list[list[ExpectedDose]] = []

        # Walk stages last-first so later-listed stages keep their days
        for index in range(len(windows) - 1, -1, -1):
            window = windows[index]
            stage_index = index if self.plan.shape == ScheduleShape.TAPERED else None
            owned = [d for d in self._dosing_days(window) if d not in claimed]
            claimed.update(self._span(window))
            per_stage.append(list(self._doses_for(window, owned, stage_index)))

        seen: set[datetime] = set()
        for dose in sorted((d for stage in per_stage for d in stage), key=lambda d: d.scheduled_at):
            if dose.scheduled_at in seen:
                continue
            seen.add(dose.scheduled_at)
            yield dose

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def _last_day(self, window: DoseWindow) -> date:
        last = local_date(self.window_end, self.tz)
        cap_day = last_dose_date(window)
        return min(last, cap_day) if cap_day is not None else last

    def _span(self, window: DoseWindow) -> set[date]:
        """Every calendar day the window covers, dosing or not."""
        last = self._last_day(window)
        return {
            window.start_date + timedelta(days=offset)
            for offset in range((last - window.start_date).days + 1)
        }

    def _dosing_days(self, window: DoseWindow) -> Iterator[date]:
        if window.is_as_needed:
            return

        first = window.start_date
        last = self._last_day(window)

        if self.window_start is not None:
            lower = local_date(self.window_start, self.tz)
            if lower > first:
                # Keep the cadence anchored to the start date
                gap = (lower - first).days
                first += timedelta(days=-(-gap // window.day_step) * window.day_step)

        step = timedelta(days=window.day_step)
        day = first
        while day <= last:
            yield day
            day += step

    def _doses_for(
        self,
        window: DoseWindow,
        days: list[date],
        stage_index: int | None,
    ) -> Iterator[ExpectedDose]:
        times = _slots(window)
        for day in days:
            day_number = (day - window.start_date).days // window.day_step
            for slot, at in enumerate(times):
                if window.max_doses is not None and day_number * len(times) + slot >= window.max_doses:
                    return
                scheduled = local_instant(day, at, self.tz)
                if scheduled > self.window_end:
                    continue
                if self.window_start is not None and scheduled < self.window_start:
                    continue
                yield ExpectedDose(
                    scheduled_at=scheduled,
                    medication_id=self.plan.id,
                    medication_name=self.plan.name,
                    dosage=window.dosage,
                    visit_id=self.visit_id,
                    stage_index=stage_index,
                )


def expand_schedule(
    plan: MedicationPlan,
    window_start: datetime | None = None,
    window_end: datetime | None = None,
    now: datetime | None = None,
    tz: tzinfo = UTC,
    visit_id: str | None = None,
) -> DoseSchedule:
    """
    Expand a plan into its expected doses.

    Args:
        plan: Medication plan to expand
        window_start: Earliest instant of interest (default: plan start)
        window_end: Latest instant of interest (default and ceiling: now)
        now: Reference clock; doses after it are never emitted
        tz: Clinic timezone for dates and times of day
        visit_id: Visit the plan belongs to, copied onto each dose

    Returns:
        DoseSchedule that can be iterated any number of times

    Raises:
        MalformedScheduleError: If the plan cannot be expanded
    """
    return DoseSchedule(plan, window_start, window_end, now=now, tz=tz, visit_id=visit_id)


@dataclass(frozen=True)
class MedicationWarning:
    """A medication whose contribution was skipped."""
    visit_id: str | None
    medication_id: str | None
    medication_name: str
    reason: str


@dataclass
class VisitExpansion:
    """Expected doses of every expandable plan in a set of visits."""
    schedules: dict[tuple[str, str], DoseSchedule]
    warnings: list[MedicationWarning]
    unscheduled: list[str]


def expand_visits(
    visits,
    window_start: datetime | None = None,
    window_end: datetime | None = None,
    now: datetime | None = None,
    tz: tzinfo = UTC,
) -> VisitExpansion:
    """
    Expand every plan of every visit, skipping malformed plans.

    A plan that cannot be expanded contributes no doses and is reported
    as a MedicationWarning instead of failing the whole computation.
    Plans without any time of day (as-needed or custom) are listed in
    `unscheduled` and stay out of every rate.
    """
    schedules: dict[tuple[str, str], DoseSchedule] = {}
    warnings: list[MedicationWarning] = []
    unscheduled: list[str] = []

    for visit in visits:
        for plan in visit.medications:
            try:
                schedule = expand_schedule(plan, window_start, window_end, now=now, tz=tz, visit_id=visit.id)
            except MalformedScheduleError as e:
                logger.warning(
                    "Skipping malformed medication",
                    visit_id=visit.id,
                    medication_id=plan.id,
                    medication=plan.name,
                    reason=e.reason,
                )
                warnings.append(MedicationWarning(visit.id, plan.id, plan.name, e.reason))
                continue

            if all(window.is_as_needed for window in plan.schedule_windows):
                unscheduled.append(plan.name)
                continue
            schedules[(visit.id, plan.id)] = schedule

    return VisitExpansion(schedules=schedules, warnings=warnings, unscheduled=unscheduled)


def is_medication_active(plan: MedicationPlan, today: date) -> bool:
    """
    Whether a plan still counts as current on `today`.

    A window is active from its start through its end date (or the day its
    dose cap runs out); open-ended windows stop counting OPEN_ENDED_ACTIVE_DAYS days
    after they start.
    """
    for window in plan.schedule_windows:
        if window.start_date is None or today < window.start_date:
            continue
        last = last_dose_date(window)
        if last is None:
            last = window.start_date + timedelta(days=OPEN_ENDED_ACTIVE_DAYS)
        if today <= last:
            return True
    return False

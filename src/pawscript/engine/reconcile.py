"""Dose Reconciliation - match expected doses to logged events"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable

import structlog

from pawscript.engine.schedule import ExpectedDose
from pawscript.models.events import DoseStatus, LoggedDoseEvent
from pawscript.models.medication import MedicationPlan

logger = structlog.get_logger(__name__)

LATE_THRESHOLD = timedelta(hours=2)


class DoseOutcome(str, Enum):
    GIVEN_ON_TIME = "given-on-time"
    GIVEN_LATE = "given-late"
    MISSED = "missed"
    SKIPPED = "skipped"
    UNLOGGED = "unlogged"


@dataclass(frozen=True)
class ClassifiedDose:
    expected: ExpectedDose
    status: DoseOutcome
    event: LoggedDoseEvent | None = None
    lateness_hours: float = 0.0

    @property
    def scheduled_at(self) -> datetime:
        return self.expected.scheduled_at

    @property
    def is_given(self) -> bool:
        return self.status in (DoseOutcome.GIVEN_ON_TIME, DoseOutcome.GIVEN_LATE)

    @property
    def is_countable(self) -> bool:
        """Unlogged and skipped doses stay out of rate math."""
        return self.status not in (DoseOutcome.UNLOGGED, DoseOutcome.SKIPPED)


def events_for_plan(
    visit_id: str,
    plan: MedicationPlan,
    events: Iterable[LoggedDoseEvent],
) -> list[LoggedDoseEvent]:
    """
    Logged events recorded against one plan of one visit.

    Legacy events without a medication id are attributed by exact name.
    """
    matched = []
    for event in events:
        if event.visit_id != visit_id:
            continue
        if event.medication_id is not None:
            if event.medication_id == plan.id:
                matched.append(event)
        elif event.medication_name == plan.name:
            matched.append(event)
    return matched


def latest_by_instant(events: Iterable[LoggedDoseEvent]) -> dict[datetime, LoggedDoseEvent]:
    """Collapse events per scheduled instant; the most recently logged wins."""
    latest: dict[datetime, LoggedDoseEvent] = {}
    for event in events:
        current = latest.get(event.scheduled_at)
        if current is None or event.recency_key >= current.recency_key:
            latest[event.scheduled_at] = event
    return latest


def classify(expected: ExpectedDose, event: LoggedDoseEvent | None) -> ClassifiedDose:
    """Resolve the status of one expected dose."""
    if event is None:
        return ClassifiedDose(expected=expected, status=DoseOutcome.UNLOGGED)

    if event.status == DoseStatus.MISSED:
        return ClassifiedDose(expected=expected, status=DoseOutcome.MISSED, event=event)
    if event.status == DoseStatus.SKIPPED:
        return ClassifiedDose(expected=expected, status=DoseOutcome.SKIPPED, event=event)

    # Given without an actual timestamp counts as on time
    if event.actual_at is None:
        return ClassifiedDose(expected=expected, status=DoseOutcome.GIVEN_ON_TIME, event=event)

    delay = max(timedelta(0), event.actual_at - expected.scheduled_at)
    if delay <= LATE_THRESHOLD:
        return ClassifiedDose(expected=expected, status=DoseOutcome.GIVEN_ON_TIME, event=event)
    return ClassifiedDose(
        expected=expected,
        status=DoseOutcome.GIVEN_LATE,
        event=event,
        lateness_hours=delay.total_seconds() / 3600,
    )


def reconcile_doses(
    expected: Iterable[ExpectedDose],
    events: Iterable[LoggedDoseEvent],
) -> list[ClassifiedDose]:
    """
    Classify each expected dose of one medication.

    Matching is by exact scheduled-instant equality; events logged against
    instants that were never expected are ignored.
    """
    by_instant = latest_by_instant(events)
    classified = [classify(dose, by_instant.get(dose.scheduled_at)) for dose in expected]

    orphans = len(by_instant) - sum(1 for c in classified if c.event is not None)
    if orphans:
        logger.debug("Logged doses with no expected instant", count=orphans)

    return classified

"""
Store Readers

Read interfaces the engine consumes, plus an in-memory store that
implements all of them. Implementations are free to hit a network store
or a local cache; the engine only awaits the returned collections.
"""
from datetime import date, datetime
from typing import Protocol, runtime_checkable

import structlog

from pawscript.engine.patient import matches_patient
from pawscript.models.events import LoggedDoseEvent, SymptomEntry
from pawscript.models.visit import Visit
from pawscript.timeutil import ensure_utc

logger = structlog.get_logger(__name__)


@runtime_checkable
class VisitReader(Protocol):
    async def get_visits(self, clinic_id: str, name: str, species: str | None = None) -> list[Visit]:
        """All visits of one patient within a clinic, in any order."""
        ...


@runtime_checkable
class DoseLogReader(Protocol):
    async def get_dose_events(
        self,
        visit_id: str,
        limit: int | None = None,
        since: datetime | None = None,
    ) -> list[LoggedDoseEvent]:
        """Dose events logged against a visit, optionally the most recent `limit`."""
        ...


@runtime_checkable
class SymptomLogReader(Protocol):
    async def get_symptom_entries(
        self,
        visit_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[SymptomEntry]:
        """Symptom entries logged against a visit within [start, end]."""
        ...


class InMemoryStore:
    """Visit, dose-log and symptom-log reader backed by plain lists."""

    def __init__(
        self,
        visits: list[Visit] | None = None,
        dose_events: list[LoggedDoseEvent] | None = None,
        symptom_entries: list[SymptomEntry] | None = None,
    ):
        self._in_memory: dict[str, list] = {
            "visits": list(visits or []),
            "dose_events": list(dose_events or []),
            "symptom_entries": list(symptom_entries or []),
        }

    def add_visit(self, visit: Visit) -> None:
        self._in_memory["visits"].append(visit)

    def add_dose_event(self, event: LoggedDoseEvent) -> None:
        self._in_memory["dose_events"].append(event)

    def add_symptom_entry(self, entry: SymptomEntry) -> None:
        self._in_memory["symptom_entries"].append(entry)

    async def get_visits(self, clinic_id: str, name: str, species: str | None = None) -> list[Visit]:
        return [
            v for v in self._in_memory["visits"]
            if v.clinic_id == clinic_id and matches_patient(v, name, species)
        ]

    async def get_dose_events(
        self,
        visit_id: str,
        limit: int | None = None,
        since: datetime | None = None,
    ) -> list[LoggedDoseEvent]:
        since = ensure_utc(since) if since else None
        results = []
        for event in self._in_memory["dose_events"]:
            if event.visit_id != visit_id:
                continue
            if since and event.scheduled_at < since:
                continue
            results.append(event)

        results.sort(key=lambda e: e.scheduled_at)
        if limit is not None:
            results = results[-limit:] if limit > 0 else []
        return results

    async def get_symptom_entries(
        self,
        visit_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[SymptomEntry]:
        results = []
        for entry in self._in_memory["symptom_entries"]:
            if entry.visit_id != visit_id:
                continue
            if start and entry.date < start:
                continue
            if end and entry.date > end:
                continue
            results.append(entry)
        return sorted(results, key=lambda e: e.date)

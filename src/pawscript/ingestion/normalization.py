"""
Document Normalization

Single total pass that turns loosely-typed store documents into strict
engine values. Every legacy shape the portal ever wrote is accepted:
- Visits (discharges) with or without an explicit visit date
- Medications without ids, with custom frequency/times, or tapered
- Dates as "YYYY-MM-DD", datetimes, epoch seconds or milliseconds, or
  {seconds, nanoseconds} maps
- Dose logs with symptom data embedded, and standalone symptom logs

Problems inside a medication never fail the visit: the plan is kept with
the offending field blanked, so schedule expansion reports it as a
per-medication warning.
"""

from datetime import date, datetime, timedelta, tzinfo
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from pawscript.exceptions import NormalizationError
from pawscript.models.events import DoseStatus, LoggedDoseEvent, SymptomEntry
from pawscript.models.medication import (
    MedicationPlan,
    TaperStage,
    get_frequency_option,
)
from pawscript.models.visit import PetSnapshot, Visit
from pawscript.timeutil import UTC, ensure_utc, local_date

logger = structlog.get_logger(__name__)


# =============================================================================
# Scalar Parsers
# =============================================================================

# Larger epoch values are milliseconds (1e11 seconds is beyond year 5000)
_EPOCH_MILLIS_CUTOFF = 1e11


def _from_epoch(seconds: float) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(seconds, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a store timestamp into a UTC datetime.

    Accepts datetimes, ISO-8601 strings (with or without "Z"), epoch
    seconds or milliseconds, and {seconds, nanoseconds} maps. Returns None
    when the value is absent, unrecognized or out of range.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # JavaScript clients wrote epoch milliseconds
        if abs(value) > _EPOCH_MILLIS_CUTOFF:
            value = value / 1000
        return _from_epoch(value)
    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        nanos = value.get("nanoseconds", value.get("_nanoseconds", 0))
        if not isinstance(nanos, (int, float)) or isinstance(nanos, bool):
            nanos = 0
        if isinstance(seconds, (int, float)) and not isinstance(seconds, bool):
            instant = _from_epoch(seconds)
            if instant is None:
                return None
            try:
                return instant + timedelta(microseconds=nanos // 1000)
            except (OverflowError, ValueError):
                return None
        return None
    if isinstance(value, str):
        try:
            return ensure_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def parse_date(value: Any, tz: tzinfo = UTC) -> Optional[date]:
    """
    Parse a date-only field.

    "YYYY-MM-DD" strings are taken as clinic dates; instants are converted
    to the clinic's calendar date.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return local_date(value, tz)
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if len(text) > 10:
            instant = parse_timestamp(text)
            return local_date(instant, tz) if instant else None
        try:
            return date.fromisoformat(text)
        except ValueError:
            return None
    instant = parse_timestamp(value)
    return local_date(instant, tz) if instant else None


def _as_float(value: Any) -> Optional[float]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_int(value: Any) -> Optional[int]:
    number = _as_float(value)
    if number is None or not number.is_integer():
        return None
    return int(number)


def _as_times(value: Any) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(str(t).strip() for t in value if t is not None and str(t).strip())


def _as_text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _as_list(value: Any) -> list:
    return list(value) if isinstance(value, (list, tuple)) else []


# =============================================================================
# Normalizer
# =============================================================================

class DocumentNormalizer:
    """
    Normalizer for portal documents.

    Usage:
        normalizer = DocumentNormalizer(tz=settings.tz)
        visit = normalizer.normalize_visit(discharge_doc)
        events, entries = normalizer.normalize_dose_documents(adherence_docs, visit.id)
    """

    def __init__(self, tz: tzinfo = UTC):
        """
        Initialize the normalizer.

        Args:
            tz: Clinic timezone used for date-only fields
        """
        self.tz = tz

    # -------------------------------------------------------------------------
    # Visits and medications
    # -------------------------------------------------------------------------

    def normalize_visit(self, doc: dict) -> Visit:
        """
        Normalize a discharge document.

        Raises:
            NormalizationError: If the document has no id
        """
        if not isinstance(doc, dict):
            raise NormalizationError(f"Visit document must be a mapping, got {type(doc).__name__}")

        visit_id = _as_text(doc.get("id"))
        if not visit_id:
            raise NormalizationError("Visit document has no id")

        pet_doc = doc.get("pet") if isinstance(doc.get("pet"), dict) else {}
        pet = PetSnapshot(
            name=_as_text(pet_doc.get("name", doc.get("petName"))),
            species=_as_text(pet_doc.get("species", doc.get("petSpecies"))),
            weight=_as_text(pet_doc.get("weight")) or None,
        )

        created_at = parse_timestamp(doc.get("createdAt"))
        visit_date = parse_date(doc.get("visitDate"), self.tz)
        fallback_start = visit_date or (local_date(created_at, self.tz) if created_at else None)

        medications = []
        for index, raw in enumerate(_as_list(doc.get("medications"))):
            if not isinstance(raw, dict):
                logger.warning(
                    "Rejected medication document",
                    visit_id=visit_id,
                    index=index,
                    reason="not a mapping",
                )
                continue
            medications.append(self.normalize_medication(raw, visit_id, index, fallback_start))

        return Visit(
            id=visit_id,
            clinic_id=_as_text(doc.get("clinicId")) or None,
            pet=pet,
            visit_date=visit_date,
            created_at=created_at,
            diagnosis=_as_text(doc.get("diagnosis")) or None,
            medications=tuple(medications),
            notes=_as_text(doc.get("notes")) or None,
        )

    def normalize_visits(self, docs: list[dict]) -> list[Visit]:
        """Normalize many discharge documents, skipping those without identity."""
        visits = []
        for doc in docs:
            try:
                visits.append(self.normalize_visit(doc))
            except NormalizationError as e:
                logger.warning("Rejected visit document", reason=str(e))
        return visits

    def _window_fields(self, doc: dict, default_start: Optional[date] = None) -> dict:
        """Fields shared by simple plans and taper stages."""
        frequency = _as_float(doc.get("customFrequency"))
        if frequency is None:
            frequency = _as_float(doc.get("frequency"))

        times = _as_times(doc.get("customTimes")) or _as_times(doc.get("times"))
        if not times:
            option = get_frequency_option(frequency)
            if option is not None:
                times = option.times

        max_doses = doc.get("maxDoses", doc.get("totalDoses"))
        return {
            "dosage": _as_text(doc.get("dosage")),
            "frequency": frequency,
            "times": times,
            "start_date": parse_date(doc.get("startDate"), self.tz) or default_start,
            "end_date": parse_date(doc.get("endDate"), self.tz),
            "every_other_day": bool(doc.get("everyOtherDay", False)),
            "max_doses": _as_int(max_doses),
        }

    def normalize_medication(
        self,
        doc: dict,
        visit_id: str,
        index: int,
        visit_date: Optional[date] = None,
    ) -> MedicationPlan:
        """
        Normalize one medication document of a visit.

        Legacy medications without an id get "<visit_id>:<index>:<name>".
        A simple plan without a start date starts on the visit date.
        """
        name = _as_text(doc.get("name"))
        medication_id = _as_text(doc.get("id") or doc.get("medicationId")) or f"{visit_id}:{index}:{name}"

        stages = []
        for raw_stage in _as_list(doc.get("taperStages")):
            if isinstance(raw_stage, dict):
                stages.append(TaperStage(**self._window_fields(raw_stage)))

        is_tapered = bool(doc.get("isTapered", False))
        simple = self._window_fields(doc, default_start=None if is_tapered else visit_date)

        for raw_key in ("startDate", "endDate"):
            if doc.get(raw_key) not in (None, "") and parse_date(doc.get(raw_key), self.tz) is None:
                # An unreadable date leaves the plan without a start so expansion skips it
                logger.warning(
                    "Unparseable medication date",
                    visit_id=visit_id,
                    medication=name,
                    field=raw_key,
                )
                simple["start_date"] = None

        return MedicationPlan(
            id=medication_id,
            name=name,
            instructions=_as_text(doc.get("instructions")),
            is_tapered=is_tapered,
            taper_stages=tuple(stages),
            **simple,
        )

    # -------------------------------------------------------------------------
    # Logged events
    # -------------------------------------------------------------------------

    def normalize_dose_event(self, doc: dict, visit_id: Optional[str] = None) -> Optional[LoggedDoseEvent]:
        """Normalize a dose log; rejected documents return None."""
        if not isinstance(doc, dict):
            logger.warning("Rejected dose document", reason="not a mapping")
            return None
        visit_id = _as_text(doc.get("dischargeId") or doc.get("visitId") or visit_id)
        scheduled_at = parse_timestamp(doc.get("scheduledTime"))
        status = _as_text(doc.get("status")).lower()

        reason = None
        if not visit_id:
            reason = "no visit id"
        elif scheduled_at is None:
            reason = "no scheduled time"
        elif status not in {s.value for s in DoseStatus}:
            reason = f"unknown status {status!r}"

        if reason:
            logger.warning("Rejected dose document", document_id=doc.get("id"), reason=reason)
            return None

        return LoggedDoseEvent(
            id=_as_text(doc.get("id")) or None,
            visit_id=visit_id,
            medication_id=_as_text(doc.get("medicationId")) or None,
            medication_name=_as_text(doc.get("medicationName")),
            scheduled_at=scheduled_at,
            actual_at=parse_timestamp(doc.get("givenAt", doc.get("actualTime"))),
            status=DoseStatus(status),
            logged_at=parse_timestamp(doc.get("loggedAt", doc.get("createdAt"))),
            notes=_as_text(doc.get("notes")) or None,
        )

    def _symptom_entry(self, visit_id: Optional[str], day: Optional[date], values: dict) -> Optional[SymptomEntry]:
        if day is None:
            logger.warning("Rejected symptom entry", visit_id=visit_id, reason="no date")
            return None
        try:
            return SymptomEntry(visit_id=visit_id or None, date=day, **values)
        except ValidationError as e:
            logger.warning(
                "Rejected symptom entry",
                visit_id=visit_id,
                date=day.isoformat(),
                reason=e.errors()[0]["msg"],
            )
            return None

    def embedded_symptom_entry(self, doc: dict, visit_id: Optional[str] = None) -> Optional[SymptomEntry]:
        """Symptom entry carried in a dose log's `symptoms` map, if any."""
        symptoms = doc.get("symptoms") if isinstance(doc, dict) else None
        if not isinstance(symptoms, dict):
            return None

        visit_id = _as_text(doc.get("dischargeId") or doc.get("visitId") or visit_id)
        recorded_at = parse_timestamp(symptoms.get("recordedAt"))
        anchor = parse_timestamp(doc.get("scheduledTime")) or recorded_at
        day = local_date(anchor, self.tz) if anchor else None

        return self._symptom_entry(visit_id, day, {
            "appetite": symptoms.get("appetite"),
            "energy": symptoms.get("energyLevel", symptoms.get("energy")),
            "panting": bool(symptoms.get("isPanting", symptoms.get("panting", False))),
            "notes": _as_text(symptoms.get("notes")) or None,
            "recorded_at": recorded_at,
        })

    def normalize_symptom_entry(self, doc: dict, visit_id: Optional[str] = None) -> Optional[SymptomEntry]:
        """Normalize a standalone symptom log; rejected documents return None."""
        if not isinstance(doc, dict):
            logger.warning("Rejected symptom entry", reason="not a mapping")
            return None
        visit_id = _as_text(doc.get("dischargeId") or doc.get("visitId") or visit_id)
        recorded_at = parse_timestamp(doc.get("recordedAt", doc.get("createdAt")))
        day = parse_date(doc.get("logDate", doc.get("date")), self.tz)

        return self._symptom_entry(visit_id, day, {
            "appetite": doc.get("appetite"),
            "energy": doc.get("energy", doc.get("energyLevel")),
            "panting": bool(doc.get("panting", doc.get("isPanting", False))),
            "notes": _as_text(doc.get("notes")) or None,
            "recorded_at": recorded_at,
        })

    def normalize_dose_documents(
        self,
        docs: list[dict],
        visit_id: Optional[str] = None,
    ) -> tuple[list[LoggedDoseEvent], list[SymptomEntry]]:
        """Dose events and embedded symptom entries from a visit's dose logs."""
        events: list[LoggedDoseEvent] = []
        entries: list[SymptomEntry] = []
        for doc in docs:
            event = self.normalize_dose_event(doc, visit_id)
            if event is not None:
                events.append(event)
            entry = self.embedded_symptom_entry(doc, visit_id)
            if entry is not None:
                entries.append(entry)
        return events, entries


# =============================================================================
# Convenience Functions
# =============================================================================

def normalize_visit(doc: dict, tz: tzinfo = UTC) -> Visit:
    """Normalize a discharge document with a one-off normalizer."""
    return DocumentNormalizer(tz).normalize_visit(doc)


def normalize_dose_event(doc: dict, visit_id: Optional[str] = None, tz: tzinfo = UTC) -> Optional[LoggedDoseEvent]:
    return DocumentNormalizer(tz).normalize_dose_event(doc, visit_id)


def normalize_symptom_entry(doc: dict, visit_id: Optional[str] = None, tz: tzinfo = UTC) -> Optional[SymptomEntry]:
    return DocumentNormalizer(tz).normalize_symptom_entry(doc, visit_id)

import pytest
from datetime import date, datetime, timedelta

from pawscript.engine.adherence import DailyAdherence
from pawscript.engine.patient import (
    ActivityType,
    AlertLevel,
    PatientAggregator,
    PatientStatus,
    build_activity_timeline,
    calculate_alert_level,
    calculate_streaks,
    compute_patient_metrics,
    matches_patient,
)
from pawscript.engine.schedule import expand_schedule
from pawscript.engine.symptoms import FlagSeverity
from pawscript.exceptions import ContractViolationError
from pawscript.models import DoseStatus, MedicationPlan, SymptomEntry
from pawscript.readers import InMemoryStore
from pawscript.timeutil import UTC


@pytest.fixture
def old_plan():
    """Finished course from an earlier visit."""
    return MedicationPlan(
        id="med-amox",
        name="Amoxicillin",
        dosage="250mg",
        frequency=2,
        times=("08:00", "20:00"),
        start_date=date(2026, 9, 1),
        end_date=date(2026, 9, 10),
    )


@pytest.fixture
def history(make_visit, make_event, bid_plan, old_plan, now):
    """Two visits: an archived course with every evening dose missed and a current plan fully given."""
    old_visit = make_visit("visit-old", medications=[old_plan], visit_date=date(2026, 9, 1))
    visit = make_visit("visit-1", medications=[bid_plan], name="buddy", species="dog")

    events = []
    for dose in expand_schedule(old_plan, now=now):
        status = DoseStatus.MISSED if dose.scheduled_at.hour == 20 else DoseStatus.GIVEN
        events.append(make_event(old_plan, dose.scheduled_at, status=status, visit_id="visit-old"))
    for dose in expand_schedule(bid_plan, now=now):
        events.append(make_event(bid_plan, dose.scheduled_at))

    entries = [SymptomEntry(visit_id="visit-1", date=date(2026, 10, 16), appetite=1, energy=4)]
    return [old_visit, visit], events, entries


class TestMatching:

    def test_name_is_case_insensitive(self, make_visit):
        visit = make_visit(name="Buddy", species="Dog")
        assert matches_patient(visit, " buddy ")
        assert matches_patient(visit, "BUDDY", "dog")

    def test_species_only_compared_when_given(self, make_visit):
        visit = make_visit(name="Buddy", species="Dog")
        assert not matches_patient(visit, "Buddy", "Cat")
        assert not matches_patient(visit, "Max")


class TestPatientMetrics:

    def test_merges_visits(self, history, settings, now):
        visits, events, entries = history

        metrics = compute_patient_metrics(visits, events, entries, now=now, settings=settings)

        assert metrics.pet_name == "buddy"
        assert metrics.total_visits == 2
        assert metrics.last_visit_date == date(2026, 10, 7)
        assert metrics.overall_adherence_rate == 75
        assert metrics.active_adherence_rate == 100
        assert metrics.active_medications == 1
        assert metrics.archived_medications == 1
        assert metrics.missed_doses_30d == 0
        assert metrics.late_doses_30d == 0
        assert metrics.last_dose_at == datetime(2026, 10, 16, 20, 30, tzinfo=UTC)
        assert metrics.current_status == PatientStatus.ACTIVE
        assert metrics.alert_level == AlertLevel.LOW
        assert metrics.symptom_flags_14d == 1
        assert (metrics.current_streak, metrics.longest_streak) == (10, 10)
        assert metrics.warnings == []

    def test_activity_is_most_recent_first(self, history, settings, now):
        visits, events, entries = history

        activity = compute_patient_metrics(visits, events, entries, now=now, settings=settings).activity

        assert activity[0].type == ActivityType.DOSE_GIVEN
        assert activity[0].timestamp == datetime(2026, 10, 16, 20, 30, tzinfo=UTC)
        assert [a.timestamp for a in activity] == sorted((a.timestamp for a in activity), reverse=True)
        assert any(a.type == ActivityType.SYMPTOM_FLAG for a in activity)

    def test_no_logs_gives_zero_metrics(self, make_visit, bid_plan, settings, now):
        metrics = compute_patient_metrics([make_visit(medications=[bid_plan])], [], [], now=now, settings=settings)

        assert metrics.overall_adherence_rate == 0
        assert metrics.last_dose_at is None
        assert metrics.current_status == PatientStatus.INACTIVE
        assert metrics.alert_level == AlertLevel.NONE
        assert metrics.symptom_flags_14d == 0

    def test_stale_logging_is_inactive_and_high_alert(self, make_visit, make_event, bid_plan, settings, now):
        doses = list(expand_schedule(bid_plan, now=now))
        events = [make_event(bid_plan, d.scheduled_at) for d in doses[:2]]

        metrics = compute_patient_metrics([make_visit(medications=[bid_plan])], events, [], now=now,
                                          settings=settings)

        assert metrics.current_status == PatientStatus.INACTIVE
        assert metrics.alert_level == AlertLevel.HIGH

    def test_malformed_medication_becomes_a_warning(self, make_visit, bid_plan, settings, now):
        bad = MedicationPlan(id="med-bad", name="Gabapentin", is_tapered=True)
        metrics = compute_patient_metrics([make_visit(medications=[bid_plan, bad])], [], [], now=now,
                                          settings=settings)
        assert [w.medication_id for w in metrics.warnings] == ["med-bad"]

    def test_requires_visits(self, settings, now):
        with pytest.raises(ContractViolationError):
            compute_patient_metrics([], [], [], now=now, settings=settings)
        with pytest.raises(ContractViolationError):
            compute_patient_metrics(None, [], [], now=now, settings=settings)

    def test_requires_patient_name(self, make_visit, settings, now):
        with pytest.raises(ContractViolationError):
            compute_patient_metrics([make_visit(name="  ")], [], [], now=now, settings=settings)


class TestIndicators:

    @pytest.mark.parametrize("rate,countable,days,level", [
        (100, 10, 8, AlertLevel.HIGH),
        (40, 10, 0, AlertLevel.HIGH),
        (69, 10, 1, AlertLevel.MEDIUM),
        (84, 10, 1, AlertLevel.LOW),
        (85, 10, 1, AlertLevel.NONE),
        (0, 0, None, AlertLevel.NONE),
    ])
    def test_alert_level(self, rate, countable, days, level):
        assert calculate_alert_level(rate, countable, days) == level

    def test_streaks(self):
        start = date(2026, 10, 10)

        def day(offset, scheduled=2, given=2, missed=0):
            return DailyAdherence(date=start + timedelta(days=offset), scheduled=scheduled, given=given,
                                  missed=missed, unlogged=scheduled - given - missed)

        timeline = [
            day(0), day(1), day(2), day(3, given=1, missed=1),
            day(4), day(5, scheduled=0, given=0), day(6),
            day(7, scheduled=1, given=0),
        ]

        assert calculate_streaks(timeline) == (2, 3)

    def test_unlogged_and_skipped_doses_do_not_break_streaks(self):
        start = date(2026, 10, 10)
        timeline = [
            DailyAdherence(date=start, scheduled=2, given=1, unlogged=1),
            DailyAdherence(date=start + timedelta(days=1), scheduled=2, given=1, unlogged=1),
            DailyAdherence(date=start + timedelta(days=2), scheduled=2, skipped=2),
            DailyAdherence(date=start + timedelta(days=3), scheduled=2, given=1, skipped=1),
        ]

        assert calculate_streaks(timeline) == (3, 3)

    def test_dose_activity_severity(self, bid_plan, make_event):
        at = datetime(2026, 10, 16, 8, 0, tzinfo=UTC)
        events = [
            make_event(bid_plan, at, delay=timedelta(hours=7)),
            make_event(bid_plan, at - timedelta(days=1), delay=timedelta(hours=3)),
            make_event(bid_plan, at - timedelta(days=2), status=DoseStatus.MISSED),
        ]

        activity = build_activity_timeline(events, [])

        assert [(a.type, a.severity) for a in activity] == [
            (ActivityType.DOSE_LATE, FlagSeverity.HIGH),
            (ActivityType.DOSE_LATE, FlagSeverity.MEDIUM),
            (ActivityType.DOSE_MISSED, FlagSeverity.HIGH),
        ]


class FailingDoseReader:
    async def get_dose_events(self, visit_id, limit=None, since=None):
        raise RuntimeError("store unavailable")


class TestPatientAggregator:

    @pytest.mark.asyncio
    async def test_load_and_compute(self, history, make_visit, settings, now):
        visits, events, entries = history
        store = InMemoryStore(
            visits=visits + [make_visit("visit-cat", name="Buddy", species="Cat")],
            dose_events=events,
            symptom_entries=entries,
        )
        aggregator = PatientAggregator.from_store(store, settings=settings)

        record = await aggregator.load("clinic-1", "BUDDY", "dog", now=now)
        metrics = await aggregator.metrics("clinic-1", "BUDDY", "dog", now=now)

        assert sorted(v.id for v in record.visits) == ["visit-1", "visit-old"]
        assert len(record.dose_events) == len(events)
        assert len(record.symptom_entries) == 1
        assert metrics.total_visits == 2
        assert metrics.overall_adherence_rate == 75

    @pytest.mark.asyncio
    async def test_other_clinic_is_not_merged(self, history, settings, now):
        visits, events, entries = history
        aggregator = PatientAggregator.from_store(InMemoryStore(visits, events, entries), settings=settings)

        record = await aggregator.load("clinic-2", "Buddy", now=now)

        assert record.visits == []
        with pytest.raises(ContractViolationError):
            await aggregator.metrics("clinic-2", "Buddy", now=now)

    @pytest.mark.asyncio
    async def test_missing_name_is_rejected(self, settings):
        aggregator = PatientAggregator.from_store(InMemoryStore(), settings=settings)
        with pytest.raises(ContractViolationError):
            await aggregator.load("clinic-1", "")

    @pytest.mark.asyncio
    async def test_read_errors_propagate(self, history, settings, now):
        visits, _, _ = history
        store = InMemoryStore(visits)
        aggregator = PatientAggregator(store, FailingDoseReader(), store, settings=settings)

        with pytest.raises(RuntimeError, match="store unavailable"):
            await aggregator.load("clinic-1", "Buddy", now=now)

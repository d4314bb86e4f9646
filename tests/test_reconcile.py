import pytest
from datetime import datetime, timedelta

from pawscript.engine.reconcile import DoseOutcome, events_for_plan, reconcile_doses
from pawscript.engine.schedule import expand_schedule
from pawscript.models import DoseStatus, LoggedDoseEvent
from pawscript.timeutil import UTC


@pytest.fixture
def expected(bid_plan, now):
    return list(expand_schedule(bid_plan, now=now, visit_id="visit-1"))


class TestClassification:

    def test_unlogged_when_no_event(self, expected):
        classified = reconcile_doses(expected, [])
        assert len(classified) == len(expected)
        assert {c.status for c in classified} == {DoseOutcome.UNLOGGED}

    def test_two_hour_boundary_is_on_time(self, bid_plan, expected, make_event):
        dose = expected[0]
        [result] = reconcile_doses([dose], [make_event(bid_plan, dose.scheduled_at, delay=timedelta(hours=2))])

        assert result.status == DoseOutcome.GIVEN_ON_TIME
        assert result.lateness_hours == 0

    def test_just_past_two_hours_is_late(self, bid_plan, expected, make_event):
        dose = expected[0]
        event = make_event(bid_plan, dose.scheduled_at, delay=timedelta(hours=2, minutes=30))
        [result] = reconcile_doses([dose], [event])

        assert result.status == DoseOutcome.GIVEN_LATE
        assert result.lateness_hours == pytest.approx(2.5)
        assert result.is_given and result.is_countable

    def test_given_early_is_on_time(self, bid_plan, expected, make_event):
        dose = expected[0]
        [result] = reconcile_doses([dose], [make_event(bid_plan, dose.scheduled_at, delay=timedelta(hours=-1))])
        assert result.status == DoseOutcome.GIVEN_ON_TIME

    def test_given_without_actual_time_is_on_time(self, bid_plan, expected, make_event):
        dose = expected[0]
        [result] = reconcile_doses([dose], [make_event(bid_plan, dose.scheduled_at, delay=None)])
        assert result.status == DoseOutcome.GIVEN_ON_TIME

    @pytest.mark.parametrize("status,outcome", [
        (DoseStatus.MISSED, DoseOutcome.MISSED),
        (DoseStatus.SKIPPED, DoseOutcome.SKIPPED),
    ])
    def test_explicit_status(self, bid_plan, expected, make_event, status, outcome):
        dose = expected[0]
        [result] = reconcile_doses([dose], [make_event(bid_plan, dose.scheduled_at, status=status)])
        assert result.status == outcome
        assert result.lateness_hours == 0

    def test_skipped_is_not_countable(self, bid_plan, expected, make_event):
        dose = expected[0]
        [result] = reconcile_doses([dose], [make_event(bid_plan, dose.scheduled_at, status=DoseStatus.SKIPPED)])
        assert not result.is_countable

    def test_event_for_unexpected_instant_is_ignored(self, bid_plan, expected, make_event):
        stray = make_event(bid_plan, datetime(2026, 10, 8, 9, 0, tzinfo=UTC))
        classified = reconcile_doses(expected, [stray])
        assert all(c.event is None for c in classified)


class TestLastWriteWins:

    def test_most_recently_logged_event_wins(self, bid_plan, expected, make_event):
        dose = expected[0]
        given = make_event(bid_plan, dose.scheduled_at, logged_at=datetime(2026, 10, 7, 9, 0, tzinfo=UTC))
        missed = make_event(bid_plan, dose.scheduled_at, status=DoseStatus.MISSED,
                            logged_at=datetime(2026, 10, 7, 12, 0, tzinfo=UTC))

        for events in ([given, missed], [missed, given]):
            [result] = reconcile_doses([dose], events)
            assert result.status == DoseOutcome.MISSED

    def test_tie_goes_to_later_input(self, bid_plan, expected, make_event):
        dose = expected[0]
        missed = make_event(bid_plan, dose.scheduled_at, status=DoseStatus.MISSED)
        skipped = make_event(bid_plan, dose.scheduled_at, status=DoseStatus.SKIPPED)

        [result] = reconcile_doses([dose], [missed, skipped])
        assert result.status == DoseOutcome.SKIPPED


def test_reconcile_is_idempotent(bid_plan, expected, make_event):
    events = [make_event(bid_plan, d.scheduled_at) for d in expected[::2]]
    assert reconcile_doses(expected, events) == reconcile_doses(expected, events)


def test_events_for_plan_matches_legacy_events_by_name(bid_plan):
    at = datetime(2026, 10, 7, 8, 0, tzinfo=UTC)
    by_id = LoggedDoseEvent(visit_id="visit-1", medication_id="med-carprofen", scheduled_at=at,
                            status=DoseStatus.GIVEN)
    legacy = LoggedDoseEvent(visit_id="visit-1", medication_name="Carprofen", scheduled_at=at,
                             status=DoseStatus.GIVEN)
    other_case = LoggedDoseEvent(visit_id="visit-1", medication_name="carprofen", scheduled_at=at,
                                 status=DoseStatus.GIVEN)
    other_visit = LoggedDoseEvent(visit_id="visit-2", medication_id="med-carprofen", scheduled_at=at,
                                  status=DoseStatus.GIVEN)

    matched = events_for_plan("visit-1", bid_plan, [by_id, legacy, other_case, other_visit])

    assert matched == [by_id, legacy]

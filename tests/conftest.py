import pytest
import structlog
from datetime import date, datetime, timedelta

from pawscript.config import EngineSettings
from pawscript.models import DoseStatus, LoggedDoseEvent, MedicationPlan, PetSnapshot, Visit
from pawscript.timeutil import UTC


NOW = datetime(2026, 10, 17, 7, 0, tzinfo=UTC)


@pytest.fixture
def now():
    """Fixed reference clock: 2026-10-17 07:00 UTC."""
    return NOW


@pytest.fixture
def settings():
    return EngineSettings(_env_file=None, clinic_timezone="UTC")


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()


@pytest.fixture
def bid_plan():
    """Twice daily, started ten days before the reference clock."""
    return MedicationPlan(
        id="med-carprofen",
        name="Carprofen",
        dosage="25mg",
        frequency=2,
        times=("08:00", "20:00"),
        start_date=date(2026, 10, 7),
    )


@pytest.fixture
def make_visit():
    def _make(visit_id="visit-1", medications=(), name="Buddy", species="Dog", visit_date=date(2026, 10, 7),
              clinic_id="clinic-1"):
        return Visit(
            id=visit_id,
            clinic_id=clinic_id,
            pet=PetSnapshot(name=name, species=species, weight="32 lb"),
            visit_date=visit_date,
            medications=tuple(medications),
        )
    return _make


@pytest.fixture
def make_event():
    def _make(plan, scheduled_at, status=DoseStatus.GIVEN, delay=timedelta(minutes=30), visit_id="visit-1",
              logged_at=None):
        return LoggedDoseEvent(
            visit_id=visit_id,
            medication_id=plan.id,
            medication_name=plan.name,
            scheduled_at=scheduled_at,
            actual_at=scheduled_at + delay if status == DoseStatus.GIVEN and delay is not None else None,
            status=status,
            logged_at=logged_at,
        )
    return _make

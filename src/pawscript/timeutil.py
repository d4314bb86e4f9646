"""Time helpers shared by the engine."""
from datetime import date, datetime, time, timezone, tzinfo

UTC = timezone.utc


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC; aware ones are converted."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def local_date(value: datetime, tz: tzinfo = UTC) -> date:
    """Calendar date of an instant as seen by the clinic."""
    return ensure_utc(value).astimezone(tz).date()


def local_instant(day: date, at: time, tz: tzinfo = UTC) -> datetime:
    """UTC instant of a clinic-local date and time of day."""
    return datetime.combine(day, at, tzinfo=tz).astimezone(UTC)


def local_midnight(day: date, tz: tzinfo = UTC) -> datetime:
    return local_instant(day, time(0, 0), tz)

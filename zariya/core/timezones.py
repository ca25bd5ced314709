from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from zariya.core.settings import settings


def reporting_zone() -> ZoneInfo:
    return ZoneInfo(settings.reporting_timezone)


def to_utc(value: datetime | date) -> datetime:
    """Normalize a payment timestamp to UTC; naive values and plain dates are reporting-zone local."""
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.min)
    if value.tzinfo is None:
        value = value.replace(tzinfo=reporting_zone())
    return value.astimezone(timezone.utc)


def local_date(value: datetime) -> date:
    return value.astimezone(reporting_zone()).date()


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Half-open UTC interval covering ``day`` in the reporting zone."""
    zone = reporting_zone()
    start = datetime.combine(day, time.min, tzinfo=zone)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)

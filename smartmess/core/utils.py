from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta, timezone

from smartmess.config import settings


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def mess_tz() -> timezone:
    return timezone(timedelta(minutes=settings.meal_tz_offset_minutes))


def local_now() -> datetime:
    return datetime.now(mess_tz())


def local_to_utc(value: datetime) -> datetime:
    """Interpret a naive mess-local datetime and return it as naive UTC."""
    return value.replace(tzinfo=mess_tz()).astimezone(timezone.utc).replace(tzinfo=None)


def add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value else None

"""
Timezone utilities for the autoscuola engine.

Availability windows are expressed in the company's local wall-clock time
(weekday + minute of day) while appointments are stored in UTC. Every
conversion between the two goes through this module.
"""

from datetime import date, datetime, time, timedelta
from typing import Optional

import pytz

from .constants import DEFAULT_TIMEZONE, SLOT_MINUTES


def get_timezone(name: Optional[str]) -> pytz.BaseTzInfo:
    """Return a pytz zone, falling back to the default zone for unknown names."""
    try:
        return pytz.timezone(name or DEFAULT_TIMEZONE)
    except pytz.UnknownTimeZoneError:
        return pytz.timezone(DEFAULT_TIMEZONE)


def ensure_utc(dt: datetime) -> datetime:
    """Return an aware UTC datetime. Naive values are assumed to be UTC."""
    if dt.tzinfo is None:
        return pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC)


def to_local(dt: datetime, tz: pytz.BaseTzInfo) -> datetime:
    return ensure_utc(dt).astimezone(tz)


def local_weekday(dt: datetime, tz: pytz.BaseTzInfo) -> int:
    """
    Weekday of ``dt`` in local time, 0 = Sunday ... 6 = Saturday.

    Availability windows store weekdays in this convention.
    """
    return (to_local(dt, tz).weekday() + 1) % 7


def weekday_of_date(day: date) -> int:
    return (day.weekday() + 1) % 7


def local_minute_of_day(dt: datetime, tz: pytz.BaseTzInfo) -> int:
    local = to_local(dt, tz)
    return local.hour * 60 + local.minute


def local_date(dt: datetime, tz: pytz.BaseTzInfo) -> date:
    return to_local(dt, tz).date()


def local_datetime_at(day: date, minute_of_day: int, tz: pytz.BaseTzInfo) -> datetime:
    """
    Build the UTC instant for ``minute_of_day`` on local calendar ``day``.

    ``minute_of_day`` may be 1440 (end of day). Wall times inside a DST gap
    or overlap are resolved with the standard-time offset.
    """
    naive = datetime.combine(day, time(0, 0)) + timedelta(minutes=minute_of_day)
    local = tz.localize(naive, is_dst=False)
    return local.astimezone(pytz.UTC)


def ceil_to_slot(minutes: int, slot: int = SLOT_MINUTES) -> int:
    return -(-minutes // slot) * slot


def is_slot_aligned(dt: datetime, slot: int = SLOT_MINUTES) -> bool:
    dt = ensure_utc(dt)
    return dt.second == 0 and dt.microsecond == 0 and dt.minute % slot == 0


def to_epoch_ms(dt: datetime) -> int:
    return int(ensure_utc(dt).timestamp() * 1000)

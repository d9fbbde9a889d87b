# backend/autoscuola/services/slot_generator.py
"""
Candidate start times inside a daily window.

Candidates sit on the half-hour grid of the company's local day. A window
that cannot fit the duration produces no candidates; that is not an error.
"""

from datetime import date, datetime, timedelta
from typing import List, Optional, Sequence, Tuple

import pytz

from ..core.constants import SLOT_MINUTES
from ..core.timezone_utils import (
    ceil_to_slot,
    ensure_utc,
    local_date,
    local_datetime_at,
    to_local,
)


def _earliest_local_minute(earliest: datetime, tz: pytz.BaseTzInfo) -> int:
    local = to_local(earliest, tz)
    minute = local.hour * 60 + local.minute
    if local.second or local.microsecond:
        minute += 1
    return ceil_to_slot(minute)


def _inside_ranges(start: int, end: int, ranges: Sequence[Tuple[int, int]]) -> bool:
    return any(range_start <= start and end <= range_end for range_start, range_end in ranges)


def generate_candidates(
    day: date,
    window_start_minutes: int,
    window_end_minutes: int,
    duration_minutes: int,
    tz: pytz.BaseTzInfo,
    earliest: Optional[datetime] = None,
    allowed_ranges: Optional[Sequence[Tuple[int, int]]] = None,
    excluded_interval: Optional[Tuple[datetime, datetime]] = None,
) -> List[datetime]:
    """
    Ordered UTC start instants for ``duration_minutes`` on local ``day``.

    Args:
        day: Local calendar date
        window_start_minutes: Window start, minute of day
        window_end_minutes: Window end, minute of day (exclusive)
        duration_minutes: Required lesson length
        tz: Company time zone
        earliest: Candidates before this instant are dropped
        allowed_ranges: Lesson-policy sub-windows; ``None`` means unrestricted
        excluded_interval: An exact ``(start, end)`` slot never to propose

    Returns:
        Candidate starts, earliest first
    """
    if duration_minutes <= 0:
        return []

    start_minutes = window_start_minutes
    if earliest is not None:
        earliest = ensure_utc(earliest)
        earliest_day = local_date(earliest, tz)
        if earliest_day > day:
            return []
        if earliest_day == day:
            start_minutes = max(start_minutes, _earliest_local_minute(earliest, tz))

    first = ceil_to_slot(start_minutes)
    last_start = window_end_minutes - duration_minutes
    if first > last_start:
        return []

    excluded = None
    if excluded_interval is not None:
        excluded = (ensure_utc(excluded_interval[0]), ensure_utc(excluded_interval[1]))

    duration = timedelta(minutes=duration_minutes)
    candidates: List[datetime] = []
    seen = set()
    for minute in range(first, last_start + 1, SLOT_MINUTES):
        if allowed_ranges is not None and not _inside_ranges(
            minute, minute + duration_minutes, allowed_ranges
        ):
            continue
        start = local_datetime_at(day, minute, tz)
        # Wall times inside a DST gap collapse onto the same instant
        if start in seen:
            continue
        seen.add(start)
        if earliest is not None and start < earliest:
            continue
        if excluded is not None and (start, start + duration) == excluded:
            continue
        candidates.append(start)
    return candidates

# backend/autoscuola/services/availability_index.py
"""
Availability Index for the autoscuola engine.

Builds read-only per-owner schedules: the owner's weekly window plus the
busy intervals of every non-cancelled appointment overlapping the scan
range. Schedules are immutable snapshots built per operation and never
shared across operations.

Busy intervals are epoch milliseconds; window membership is evaluated in the
company's local wall-clock time.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from typing import Dict, FrozenSet, Iterable, Optional, Sequence, Tuple

import pytz
from sqlalchemy.orm import Session

from ..core.constants import CONFLICT_SCAN_PADDING_DAYS, MINUTES_PER_DAY
from ..core.timezone_utils import (
    local_date,
    local_minute_of_day,
    local_weekday,
    to_epoch_ms,
)
from ..models.availability_window import AvailabilityWindow
from ..repositories.factory import RepositoryFactory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WindowRule:
    days_of_week: FrozenSet[int]
    start_minutes: int
    end_minutes: int

    @classmethod
    def from_model(cls, window: AvailabilityWindow) -> "WindowRule":
        return cls(
            days_of_week=frozenset(int(d) for d in (window.days_of_week or [])),
            start_minutes=int(window.start_minutes),
            end_minutes=int(window.end_minutes),
        )

    @property
    def is_valid(self) -> bool:
        return 0 <= self.start_minutes < self.end_minutes <= MINUTES_PER_DAY

    def contains(self, weekday: int, start_minutes: int, end_minutes: int) -> bool:
        if not self.is_valid or weekday not in self.days_of_week:
            return False
        return start_minutes >= self.start_minutes and end_minutes <= self.end_minutes


@dataclass(frozen=True)
class BusyInterval:
    start_ms: int
    end_ms: int

    def overlaps(self, start_ms: int, end_ms: int) -> bool:
        return start_ms < self.end_ms and end_ms > self.start_ms


@dataclass(frozen=True)
class OwnerSchedule:
    owner_type: str
    owner_id: str
    window: Optional[WindowRule]
    intervals: Tuple[BusyInterval, ...] = ()
    starts: FrozenSet[int] = field(default_factory=frozenset)
    ends: FrozenSet[int] = field(default_factory=frozenset)

    @classmethod
    def build(
        cls,
        owner_type: str,
        owner_id: str,
        window: Optional[WindowRule],
        intervals: Iterable[BusyInterval],
    ) -> "OwnerSchedule":
        ordered = tuple(sorted(intervals, key=lambda item: (item.start_ms, item.end_ms)))
        return cls(
            owner_type=owner_type,
            owner_id=owner_id,
            window=window,
            intervals=ordered,
            starts=frozenset(item.start_ms for item in ordered),
            ends=frozenset(item.end_ms for item in ordered),
        )

    def has_conflict(self, start_ms: int, end_ms: int) -> bool:
        return any(interval.overlaps(start_ms, end_ms) for interval in self.intervals)

    def adjacency_score(self, start_ms: int, end_ms: int) -> int:
        """+1 when the slot starts where a booking ends, +1 when it ends where one starts."""
        return int(start_ms in self.ends) + int(end_ms in self.starts)

    def is_available(self, start: datetime, end: datetime, tz: pytz.BaseTzInfo) -> bool:
        if self.window is None:
            return False
        return self.window.contains(*local_slot_minutes(start, end, tz))

    def is_free(self, start: datetime, end: datetime, tz: pytz.BaseTzInfo) -> bool:
        """Inside the weekly window and clear of every busy interval."""
        return self.is_available(start, end, tz) and not self.has_conflict(
            to_epoch_ms(start), to_epoch_ms(end)
        )


def local_slot_minutes(
    start: datetime, end: datetime, tz: pytz.BaseTzInfo
) -> Tuple[int, int, int]:
    """
    Local ``(weekday, start_minute, end_minute)`` of a slot.

    A slot ending exactly at local midnight reports an end minute of 1440.
    Slots spilling further into the next day report an end past 1440, which no
    window contains.
    """
    start_day = local_date(start, tz)
    end_day = local_date(end, tz)
    start_minute = local_minute_of_day(start, tz)
    end_minute = local_minute_of_day(end, tz)
    if end_day != start_day:
        end_minute += (end_day - start_day).days * MINUTES_PER_DAY
    return local_weekday(start, tz), start_minute, end_minute


class AvailabilityIndex:
    """Loads owner schedules for a company over a scan range."""

    def __init__(self, db: Session):
        self.availability_repository = RepositoryFactory.create_availability_repository(db)
        self.appointment_repository = RepositoryFactory.create_appointment_repository(db)

    @staticmethod
    def scan_range(range_start: datetime, range_end: datetime) -> Tuple[datetime, datetime]:
        padding = timedelta(days=CONFLICT_SCAN_PADDING_DAYS)
        return range_start - padding, range_end + padding

    def load(
        self,
        company_id: str,
        owner_type: str,
        owner_ids: Iterable[str],
        range_start: datetime,
        range_end: datetime,
        exclude_appointment_ids: Sequence[str] = (),
    ) -> Dict[str, OwnerSchedule]:
        ids = list(dict.fromkeys(owner_ids))
        if not ids:
            return {}

        windows = self.availability_repository.get_windows(company_id, owner_type, ids)
        scan_start, scan_end = self.scan_range(range_start, range_end)
        column_name = f"{owner_type}_id"
        busy: Dict[str, list] = {owner_id: [] for owner_id in ids}
        for appointment in self.appointment_repository.find_busy_for_owners(
            company_id,
            owner_type,
            ids,
            scan_start,
            scan_end,
            exclude_ids=exclude_appointment_ids,
        ):
            owner_id = getattr(appointment, column_name)
            busy[owner_id].append(
                BusyInterval(to_epoch_ms(appointment.starts_at), to_epoch_ms(appointment.ends_at))
            )

        schedules = {}
        for owner_id in ids:
            window = windows.get(owner_id)
            rule = WindowRule.from_model(window) if window is not None else None
            if rule is not None and not rule.is_valid:
                logger.warning(
                    f"Ignoring invalid availability window for {owner_type} {owner_id}: "
                    f"{rule.start_minutes}-{rule.end_minutes}"
                )
                rule = None
            schedules[owner_id] = OwnerSchedule.build(owner_type, owner_id, rule, busy[owner_id])
        return schedules

    def load_one(
        self,
        company_id: str,
        owner_type: str,
        owner_id: str,
        range_start: datetime,
        range_end: datetime,
    ) -> OwnerSchedule:
        return self.load(company_id, owner_type, [owner_id], range_start, range_end)[owner_id]

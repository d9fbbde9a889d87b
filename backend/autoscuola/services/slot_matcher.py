# backend/autoscuola/services/slot_matcher.py
"""
Resource Matcher for the autoscuola engine.

Searches the student's availability over a horizon of days for a slot where
at least one active instructor and one active vehicle are free, and picks the
combination that best packs existing schedules.

Scoring: a resource earns +1 when the slot starts exactly where one of its
bookings ends and +1 when it ends exactly where one starts. The best
combination has the highest total score, then the earliest start, then the
lowest (instructor_id, vehicle_id) pair.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Callable, Iterable, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from ..core.constants import REPOSITION_HORIZON_DAYS
from ..core.timezone_utils import (
    ensure_utc,
    get_timezone,
    local_date,
    local_datetime_at,
    to_epoch_ms,
    weekday_of_date,
)
from ..models.resource import OwnerType
from ..repositories.company_settings_repository import CompanyConfig
from ..repositories.factory import RepositoryFactory
from .availability_index import AvailabilityIndex, OwnerSchedule
from .directory_service import DirectoryService, SqlDirectoryService
from .lesson_policy import LessonPolicy
from .slot_generator import generate_candidates

logger = logging.getLogger(__name__)

SlotScorer = Callable[[OwnerSchedule, OwnerSchedule, int, int], int]


def adjacency_scorer(
    instructor: OwnerSchedule, vehicle: OwnerSchedule, start_ms: int, end_ms: int
) -> int:
    return instructor.adjacency_score(start_ms, end_ms) + vehicle.adjacency_score(
        start_ms, end_ms
    )


@dataclass(frozen=True)
class MatchResult:
    starts_at: datetime
    ends_at: datetime
    instructor_id: str
    vehicle_id: str
    score: int

    def sort_key(self) -> Tuple[int, datetime, str, str]:
        return (-self.score, self.starts_at, self.instructor_id, self.vehicle_id)


class SlotMatcher:
    def __init__(
        self,
        db: Session,
        directory: Optional[DirectoryService] = None,
        scorer: Optional[SlotScorer] = None,
    ):
        self.index = AvailabilityIndex(db)
        self.directory = directory or SqlDirectoryService(db)
        self.settings_repository = RepositoryFactory.create_company_settings_repository(db)
        self.scorer = scorer or adjacency_scorer

    def find_best_slot(
        self,
        company_id: str,
        student_id: str,
        duration_minutes: int,
        lesson_type: Optional[str],
        earliest: datetime,
        horizon_days: int = REPOSITION_HORIZON_DAYS,
        excluded_instructor_ids: Iterable[str] = (),
        excluded_vehicle_ids: Iterable[str] = (),
        excluded_interval: Optional[Tuple[datetime, datetime]] = None,
        config: Optional[CompanyConfig] = None,
    ) -> Optional[MatchResult]:
        """
        Best (slot, instructor, vehicle) combination within the horizon.

        Returns None when nothing qualifies; callers retry later.
        """
        config = config or self.settings_repository.get_config(company_id)
        tz = get_timezone(config.timezone)
        policy = LessonPolicy.from_config(config.lesson_policy)
        earliest = ensure_utc(earliest)

        first_day = local_date(earliest, tz)
        range_start = local_datetime_at(first_day, 0, tz)
        range_end = local_datetime_at(first_day + timedelta(days=horizon_days + 1), 0, tz)

        student = self.index.load_one(
            company_id, OwnerType.STUDENT.value, student_id, range_start, range_end
        )
        if student.window is None:
            logger.info(f"Student {student_id} has no availability window; nothing to match")
            return None

        instructors = self._load_active(
            company_id, OwnerType.INSTRUCTOR.value, excluded_instructor_ids, range_start, range_end
        )
        vehicles = self._load_active(
            company_id, OwnerType.VEHICLE.value, excluded_vehicle_ids, range_start, range_end
        )
        if not instructors or not vehicles:
            logger.info(
                f"No active instructors or vehicles to match for company {company_id} "
                f"({len(instructors)} instructors, {len(vehicles)} vehicles)"
            )
            return None

        window = student.window
        duration = timedelta(minutes=duration_minutes)
        best: Optional[MatchResult] = None
        for offset in range(horizon_days + 1):
            day = first_day + timedelta(days=offset)
            weekday = weekday_of_date(day)
            if weekday not in window.days_of_week:
                continue
            allowed_ranges = policy.allowed_ranges(lesson_type, weekday)
            if allowed_ranges == []:
                continue

            for start in generate_candidates(
                day,
                window.start_minutes,
                window.end_minutes,
                duration_minutes,
                tz,
                earliest=earliest,
                allowed_ranges=allowed_ranges,
                excluded_interval=excluded_interval,
            ):
                end = start + duration
                if not student.is_free(start, end, tz):
                    continue
                if not policy.is_allowed(lesson_type, start, end, tz):
                    continue
                candidate = self._best_pair(instructors, vehicles, start, end, tz)
                if candidate is None:
                    continue
                if best is None or candidate.sort_key() < best.sort_key():
                    best = candidate
        return best

    def _load_active(
        self,
        company_id: str,
        owner_type: str,
        excluded_ids: Iterable[str],
        range_start: datetime,
        range_end: datetime,
    ) -> Sequence[OwnerSchedule]:
        excluded = {owner_id for owner_id in excluded_ids if owner_id}
        owner_ids = [
            owner_id
            for owner_id in self.directory.list_active_resources(company_id, owner_type)
            if owner_id not in excluded
        ]
        schedules = self.index.load(company_id, owner_type, owner_ids, range_start, range_end)
        return [schedules[owner_id] for owner_id in sorted(schedules)]

    def _best_pair(
        self,
        instructors: Sequence[OwnerSchedule],
        vehicles: Sequence[OwnerSchedule],
        start: datetime,
        end: datetime,
        tz,
    ) -> Optional[MatchResult]:
        free_instructors = [item for item in instructors if item.is_free(start, end, tz)]
        if not free_instructors:
            return None
        free_vehicles = [item for item in vehicles if item.is_free(start, end, tz)]
        if not free_vehicles:
            return None

        start_ms, end_ms = to_epoch_ms(start), to_epoch_ms(end)
        best: Optional[MatchResult] = None
        for instructor in free_instructors:
            for vehicle in free_vehicles:
                candidate = MatchResult(
                    starts_at=start,
                    ends_at=end,
                    instructor_id=instructor.owner_id,
                    vehicle_id=vehicle.owner_id,
                    score=self.scorer(instructor, vehicle, start_ms, end_ms),
                )
                if best is None or candidate.sort_key() < best.sort_key():
                    best = candidate
        return best

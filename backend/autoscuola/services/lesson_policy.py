# backend/autoscuola/services/lesson_policy.py
"""
Lesson-type policy.

Some lesson types may only be booked inside specific weekly sub-windows
(night lessons after dark, highway lessons on weekdays, ...). The policy is
stored as JSON on the company settings:

    {
        "lesson_policy_enabled": true,
        "lesson_type_constraints": {
            "notturna": {"days_of_week": [1, 2, 3], "start_minutes": 1200, "end_minutes": 1380}
        }
    }

Types without a constraint, or with an invalid one, are unrestricted.
"""

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

import pytz

from ..core.constants import MINUTES_PER_DAY, SLOT_MINUTES
from ..models.appointment import LessonType
from .availability_index import local_slot_minutes

logger = logging.getLogger(__name__)

POLICY_LESSON_TYPES = frozenset(
    {
        LessonType.MANOVRE.value,
        LessonType.URBANO.value,
        LessonType.EXTRAURBANO.value,
        LessonType.NOTTURNA.value,
        LessonType.AUTOSTRADA.value,
        LessonType.PARCHEGGIO.value,
        LessonType.ALTRO.value,
    }
)
ALLOWED_LESSON_TYPES = frozenset(item.value for item in LessonType)


def normalize_lesson_type(value: Optional[str]) -> str:
    return (value or "").strip().lower()


@dataclass(frozen=True)
class LessonTypeConstraint:
    days_of_week: FrozenSet[int]
    start_minutes: int
    end_minutes: int

    @classmethod
    def parse(cls, raw: Any) -> Optional["LessonTypeConstraint"]:
        if not isinstance(raw, Mapping):
            return None
        days = raw.get("days_of_week")
        start = raw.get("start_minutes")
        end = raw.get("end_minutes")
        if not isinstance(days, (list, tuple)):
            return None
        normalized_days = frozenset(
            d for d in days if isinstance(d, int) and not isinstance(d, bool) and 0 <= d <= 6
        )
        if not normalized_days:
            return None
        if not isinstance(start, int) or not isinstance(end, int):
            return None
        if (
            start < 0
            or start > MINUTES_PER_DAY - SLOT_MINUTES
            or end < SLOT_MINUTES
            or end > MINUTES_PER_DAY
            or end <= start
            or start % SLOT_MINUTES
            or end % SLOT_MINUTES
        ):
            return None
        return cls(days_of_week=normalized_days, start_minutes=start, end_minutes=end)


@dataclass(frozen=True)
class LessonPolicy:
    enabled: bool = False
    constraints: Dict[str, LessonTypeConstraint] = field(default_factory=dict)

    @classmethod
    def from_config(cls, raw: Optional[Mapping[str, Any]]) -> "LessonPolicy":
        if not raw:
            return cls()
        enabled = raw.get("lesson_policy_enabled") is True
        raw_constraints = raw.get("lesson_type_constraints") or {}
        constraints: Dict[str, LessonTypeConstraint] = {}
        if isinstance(raw_constraints, Mapping):
            for lesson_type, raw_constraint in raw_constraints.items():
                normalized = normalize_lesson_type(lesson_type)
                if normalized not in POLICY_LESSON_TYPES:
                    logger.warning(f"Ignoring lesson policy for unknown type {lesson_type!r}")
                    continue
                constraint = LessonTypeConstraint.parse(raw_constraint)
                if constraint is None:
                    if raw_constraint is not None:
                        logger.warning(f"Ignoring invalid lesson policy constraint for {normalized}")
                    continue
                constraints[normalized] = constraint
        return cls(enabled=enabled, constraints=constraints)

    def constraint_for(self, lesson_type: Optional[str]) -> Optional[LessonTypeConstraint]:
        if not self.enabled:
            return None
        return self.constraints.get(normalize_lesson_type(lesson_type))

    def allowed_ranges(
        self, lesson_type: Optional[str], weekday: int
    ) -> Optional[List[Tuple[int, int]]]:
        """
        Allowed ``(start, end)`` minute ranges for ``lesson_type`` on ``weekday``.

        ``None`` means unrestricted; an empty list means never allowed that day.
        """
        constraint = self.constraint_for(lesson_type)
        if constraint is None:
            return None
        if weekday not in constraint.days_of_week:
            return []
        return [(constraint.start_minutes, constraint.end_minutes)]

    def is_allowed(
        self,
        lesson_type: Optional[str],
        starts_at: datetime,
        ends_at: datetime,
        tz: pytz.BaseTzInfo,
    ) -> bool:
        constraint = self.constraint_for(lesson_type)
        if constraint is None:
            return True
        weekday, start_minute, end_minute = local_slot_minutes(starts_at, ends_at, tz)
        if weekday not in constraint.days_of_week:
            return False
        return (
            start_minute >= constraint.start_minutes
            and end_minute <= constraint.end_minutes
            and end_minute > start_minute
        )

# backend/autoscuola/models/availability_window.py
"""
Recurring weekly availability for a resource owner.

Each (company, owner_type, owner_id) has at most one window. Weekdays use
0 = Sunday ... 6 = Saturday; minutes are local wall-clock minutes of day in
the company's time zone.
"""

from typing import Any, Dict

from sqlalchemy import CheckConstraint, Column, Integer, String, UniqueConstraint
import ulid

from ..database import Base
from .types import IntegerArrayType, TimestampMixin


class AvailabilityWindow(TimestampMixin, Base):
    __tablename__ = "availability_windows"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    company_id = Column(String(26), nullable=False, index=True)
    owner_type = Column(String(20), nullable=False)
    owner_id = Column(String(26), nullable=False, index=True)
    days_of_week = Column(IntegerArrayType(), nullable=False, default=list)
    start_minutes = Column(Integer, nullable=False)
    end_minutes = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("company_id", "owner_type", "owner_id", name="uq_availability_owner"),
        CheckConstraint(
            "start_minutes >= 0 AND end_minutes <= 1440 AND end_minutes > start_minutes",
            name="ck_availability_window_minutes",
        ),
    )

    def covers_weekday(self, weekday: int) -> bool:
        return weekday in (self.days_of_week or [])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "owner_type": self.owner_type,
            "owner_id": self.owner_id,
            "days_of_week": list(self.days_of_week or []),
            "start_minutes": self.start_minutes,
            "end_minutes": self.end_minutes,
        }

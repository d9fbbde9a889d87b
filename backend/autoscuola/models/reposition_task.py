# backend/autoscuola/models/reposition_task.py
"""
Durable reposition queue.

One row per operationally cancelled source appointment; the unique
constraint on ``source_appointment_id`` makes enqueueing an upsert.
"""

from enum import Enum
from typing import Any, Dict

from sqlalchemy import CheckConstraint, Column, Index, Integer, String, Text, UniqueConstraint
import ulid

from ..database import Base
from .types import TimestampMixin, UTCDateTime


class RepositionTaskStatus(str, Enum):
    PENDING = "pending"
    MATCHED = "matched"
    CANCELLED = "cancelled"


class RepositionReason(str, Enum):
    """Why the source appointment was operationally cancelled."""

    INSTRUCTOR_CANCEL = "instructor_cancel"
    INSTRUCTOR_INACTIVE = "instructor_inactive"
    DIRECTORY_INSTRUCTOR_REMOVED = "directory_instructor_removed"
    VEHICLE_INACTIVE = "vehicle_inactive"
    AVAILABILITY_CHANGED = "availability_changed"
    OWNER_DELETE = "owner_delete"


class RepositionTask(TimestampMixin, Base):
    __tablename__ = "reposition_tasks"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    company_id = Column(String(26), nullable=False, index=True)
    source_appointment_id = Column(String(26), nullable=False)
    student_id = Column(String(26), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=RepositionTaskStatus.PENDING.value)
    reason = Column(String(50), nullable=False)
    excluded_instructor_id = Column(String(26), nullable=True)
    excluded_vehicle_id = Column(String(26), nullable=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(UTCDateTime(), nullable=True)
    next_attempt_at = Column(UTCDateTime(), nullable=True)
    matched_appointment_id = Column(String(26), nullable=True)
    last_error = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("source_appointment_id", name="uq_reposition_tasks_source"),
        Index("ix_reposition_tasks_due", "status", "next_attempt_at"),
        CheckConstraint(
            "status IN ('pending', 'matched', 'cancelled')", name="ck_reposition_tasks_status"
        ),
        CheckConstraint("attempt_count >= 0", name="ck_reposition_tasks_attempts"),
    )

    @property
    def is_pending(self) -> bool:
        return self.status == RepositionTaskStatus.PENDING.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "source_appointment_id": self.source_appointment_id,
            "student_id": self.student_id,
            "status": self.status,
            "reason": self.reason,
            "attempt_count": self.attempt_count,
            "last_attempt_at": self.last_attempt_at,
            "next_attempt_at": self.next_attempt_at,
            "matched_appointment_id": self.matched_appointment_id,
            "last_error": self.last_error,
        }

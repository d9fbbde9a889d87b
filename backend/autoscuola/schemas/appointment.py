# backend/autoscuola/schemas/appointment.py
"""
Appointment schemas for the autoscuola API.

Times are timezone-aware instants; naive values are rejected so that a
booking can never be interpreted in the server's local zone.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import Field, field_validator

from ..core.constants import ALLOWED_BOOKING_SLOT_DURATIONS
from ..models.appointment import AppointmentStatus, LessonType
from ..models.reposition_task import RepositionReason
from .base import StandardizedModel, StrictRequestModel


def _require_aware(value: datetime) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError("starts_at must include a timezone offset")
    return value


class AppointmentCreate(StrictRequestModel):
    student_id: str = Field(..., min_length=1, max_length=26)
    instructor_id: str = Field(..., min_length=1, max_length=26)
    vehicle_id: str = Field(..., min_length=1, max_length=26)
    starts_at: datetime = Field(..., description="Lesson start, aligned to a 30-minute boundary")
    duration_minutes: int = Field(
        ...,
        ge=min(ALLOWED_BOOKING_SLOT_DURATIONS),
        le=max(ALLOWED_BOOKING_SLOT_DURATIONS),
    )
    lesson_type: LessonType = LessonType.GUIDA
    case_id: Optional[str] = Field(None, max_length=26)

    @field_validator("starts_at")
    @classmethod
    def _starts_at_aware(cls, value: datetime) -> datetime:
        return _require_aware(value)


class OperationalCancelRequest(StrictRequestModel):
    reason: RepositionReason
    attempt_now: bool = True


class ResourceCancelRequest(StrictRequestModel):
    reason: RepositionReason


class StatusUpdateRequest(StrictRequestModel):
    status: AppointmentStatus
    actor_role: Literal["owner", "instructor", "student"] = "owner"
    reason: Optional[str] = Field(None, max_length=500)


class AppointmentResponse(StandardizedModel):
    id: str
    company_id: str
    student_id: str
    case_id: Optional[str] = None
    instructor_id: str
    vehicle_id: str
    lesson_type: str
    starts_at: datetime
    ends_at: datetime
    status: str
    proposal_expires_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_kind: Optional[str] = None
    cancellation_reason: Optional[str] = None
    replaced_by_appointment_id: Optional[str] = None
    payment_required: bool
    payment_status: str
    price_amount_cents: int
    penalty_amount_cents: int
    penalty_cutoff_at: Optional[datetime] = None
    paid_amount_cents: int
    currency: str
    invoice_id: Optional[str] = None
    invoice_status: Optional[str] = None


class RepositionTaskResponse(StandardizedModel):
    id: str
    source_appointment_id: str
    student_id: str
    status: str
    reason: str
    excluded_instructor_id: Optional[str] = None
    excluded_vehicle_id: Optional[str] = None
    attempt_count: int
    last_attempt_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None
    matched_appointment_id: Optional[str] = None
    last_error: Optional[str] = None


class OperationalCancelResponse(StandardizedModel):
    appointment: AppointmentResponse
    task: RepositionTaskResponse
    outcome: Optional[str] = None
    replacement: Optional[AppointmentResponse] = None


class ResourceCancelResponse(StandardizedModel):
    owner_type: str
    owner_id: str
    cancelled: int

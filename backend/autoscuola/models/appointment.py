# backend/autoscuola/models/appointment.py
"""
Appointment model for the autoscuola engine.

An appointment binds a student, an instructor and a vehicle to a half-hour
aligned interval. It also carries the lesson's financial snapshot: price,
penalty, cutoff and the running paid total. The payment status is derived
from those fields by ``services.payment_ledger`` and is only hand-set through
the locked terminal overrides (``waived`` and ``insoluto``).

Links to a replacement appointment are plain ids, never ORM relationships.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, CheckConstraint, Column, Index, Integer, String, Text
import ulid

from ..core.constants import DEFAULT_CURRENCY
from ..database import Base
from .types import TimestampMixin, UTCDateTime


class AppointmentStatus(str, Enum):
    """Appointment lifecycle statuses."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    PROPOSAL = "proposal"  # Created by the reposition queue, awaiting the student
    CHECKED_IN = "checked_in"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    CANCELLED = "cancelled"


REPOSITIONABLE_STATUSES = frozenset(
    {
        AppointmentStatus.SCHEDULED.value,
        AppointmentStatus.CONFIRMED.value,
        AppointmentStatus.PROPOSAL.value,
        AppointmentStatus.CHECKED_IN.value,
    }
)


class CancellationKind(str, Enum):
    OPERATIONAL = "operational"
    STUDENT_CANCEL = "student_cancel"
    ADMIN_CANCEL = "admin_cancel"
    REPLACED = "replaced"


class PaymentStatus(str, Enum):
    NOT_REQUIRED = "not_required"
    PENDING_PENALTY = "pending_penalty"
    PARTIAL_PAID = "partial_paid"
    PAID = "paid"
    WAIVED = "waived"
    INSOLUTO = "insoluto"


class InvoiceStatus(str, Enum):
    ISSUED = "issued"
    PENDING_FIC = "pending_fic"
    FAILED = "failed"
    NOT_REQUIRED = "not_required"


class LessonType(str, Enum):
    GUIDA = "guida"
    MANOVRE = "manovre"
    URBANO = "urbano"
    EXTRAURBANO = "extraurbano"
    NOTTURNA = "notturna"
    AUTOSTRADA = "autostrada"
    PARCHEGGIO = "parcheggio"
    ALTRO = "altro"
    ESAME = "esame"


class Appointment(TimestampMixin, Base):
    __tablename__ = "appointments"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    company_id = Column(String(26), nullable=False, index=True)
    student_id = Column(String(26), nullable=False, index=True)
    case_id = Column(String(26), nullable=True)
    instructor_id = Column(String(26), nullable=False)
    vehicle_id = Column(String(26), nullable=False)
    lesson_type = Column(String(30), nullable=False, default=LessonType.GUIDA.value)

    starts_at = Column(UTCDateTime(), nullable=False, index=True)
    ends_at = Column(UTCDateTime(), nullable=False)
    status = Column(String(20), nullable=False, default=AppointmentStatus.SCHEDULED.value)
    proposal_expires_at = Column(UTCDateTime(), nullable=True)

    # Cancellation tracking
    cancelled_at = Column(UTCDateTime(), nullable=True)
    cancellation_kind = Column(String(30), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    replaced_by_appointment_id = Column(String(26), nullable=True)

    # Financial snapshot (cents)
    payment_required = Column(Boolean, nullable=False, default=False)
    payment_status = Column(String(30), nullable=False, default=PaymentStatus.NOT_REQUIRED.value)
    payment_status_locked = Column(Boolean, nullable=False, default=False)
    price_amount_cents = Column(Integer, nullable=False, default=0)
    penalty_amount_cents = Column(Integer, nullable=False, default=0)
    penalty_cutoff_at = Column(UTCDateTime(), nullable=True)
    paid_amount_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default=DEFAULT_CURRENCY)

    # Invoicing
    invoice_id = Column(String(100), nullable=True)
    invoice_status = Column(String(30), nullable=True)

    __table_args__ = (
        Index("ix_appointments_company_instructor_start", "company_id", "instructor_id", "starts_at"),
        Index("ix_appointments_company_vehicle_start", "company_id", "vehicle_id", "starts_at"),
        Index("ix_appointments_company_student_start", "company_id", "student_id", "starts_at"),
        CheckConstraint("ends_at > starts_at", name="ck_appointments_time_order"),
        CheckConstraint(
            "status IN ('scheduled', 'confirmed', 'proposal', 'checked_in', "
            "'completed', 'no_show', 'cancelled')",
            name="ck_appointments_status",
        ),
        CheckConstraint("paid_amount_cents >= 0", name="ck_appointments_paid_non_negative"),
        CheckConstraint(
            "price_amount_cents >= 0 AND penalty_amount_cents >= 0",
            name="ck_appointments_amounts_non_negative",
        ),
    )

    @property
    def duration_minutes(self) -> int:
        return int((self.ends_at - self.starts_at).total_seconds() // 60)

    @property
    def is_cancelled(self) -> bool:
        return self.status == AppointmentStatus.CANCELLED.value

    def is_repositionable(self, now: datetime) -> bool:
        return self.status in REPOSITIONABLE_STATUSES and self.starts_at > now

    def is_open_proposal(self, now: datetime) -> bool:
        """A proposal still waiting for the student and not yet expired."""
        if self.status != AppointmentStatus.PROPOSAL.value:
            return False
        if self.starts_at <= now:
            return False
        return self.proposal_expires_at is None or self.proposal_expires_at > now

    def link_replacement(self, replacement_id: str) -> bool:
        """Set the forward link once. Returns False when a link already exists."""
        if self.replaced_by_appointment_id:
            return False
        self.replaced_by_appointment_id = replacement_id
        return True

    def mark_cancelled(
        self,
        kind: CancellationKind,
        reason: Optional[str],
        at: datetime,
    ) -> None:
        self.status = AppointmentStatus.CANCELLED.value
        self.cancellation_kind = kind.value
        self.cancellation_reason = reason
        self.cancelled_at = at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "student_id": self.student_id,
            "case_id": self.case_id,
            "instructor_id": self.instructor_id,
            "vehicle_id": self.vehicle_id,
            "lesson_type": self.lesson_type,
            "starts_at": self.starts_at,
            "ends_at": self.ends_at,
            "status": self.status,
            "cancelled_at": self.cancelled_at,
            "cancellation_kind": self.cancellation_kind,
            "cancellation_reason": self.cancellation_reason,
            "replaced_by_appointment_id": self.replaced_by_appointment_id,
            "payment_required": self.payment_required,
            "payment_status": self.payment_status,
            "price_amount_cents": self.price_amount_cents,
            "penalty_amount_cents": self.penalty_amount_cents,
            "penalty_cutoff_at": self.penalty_cutoff_at,
            "paid_amount_cents": self.paid_amount_cents,
            "currency": self.currency,
            "invoice_id": self.invoice_id,
            "invoice_status": self.invoice_status,
        }

    def __repr__(self) -> str:
        return f"<Appointment {self.id} {self.status} {self.starts_at.isoformat()}>"

# backend/autoscuola/models/appointment_payment.py
"""
Charge attempt records for appointment ledgers.

A record belongs to one appointment and one phase. It moves
pending -> processing -> succeeded | failed, and failed records are retried
until the attempt cap turns them into ``abandoned``.
"""

from enum import Enum
from typing import Any, Dict

from sqlalchemy import CheckConstraint, Column, Index, Integer, String, Text
import ulid

from ..core.constants import DEFAULT_CURRENCY
from ..database import Base
from .types import TimestampMixin, UTCDateTime


class PaymentPhase(str, Enum):
    PENALTY = "penalty"
    SETTLEMENT = "settlement"
    MANUAL_RECOVERY = "manual_recovery"


class PaymentRecordStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABANDONED = "abandoned"


TERMINAL_PAYMENT_STATUSES = frozenset(
    {PaymentRecordStatus.SUCCEEDED.value, PaymentRecordStatus.ABANDONED.value}
)


class AppointmentPayment(TimestampMixin, Base):
    __tablename__ = "appointment_payments"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    appointment_id = Column(String(26), nullable=False, index=True)
    company_id = Column(String(26), nullable=False, index=True)
    student_id = Column(String(26), nullable=False)
    phase = Column(String(30), nullable=False)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default=DEFAULT_CURRENCY)
    status = Column(String(20), nullable=False, default=PaymentRecordStatus.PENDING.value)
    attempt_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(UTCDateTime(), nullable=True)
    last_attempt_at = Column(UTCDateTime(), nullable=True)
    idempotency_key = Column(String(200), nullable=True)
    failure_code = Column(String(100), nullable=True)
    failure_message = Column(Text, nullable=True)
    gateway_payment_intent_id = Column(String(255), nullable=True)
    gateway_charge_id = Column(String(255), nullable=True)
    paid_at = Column(UTCDateTime(), nullable=True)

    __table_args__ = (
        Index("ix_appointment_payments_retry", "status", "next_attempt_at"),
        CheckConstraint("amount_cents > 0", name="ck_appointment_payments_amount_positive"),
        CheckConstraint("attempt_count >= 0", name="ck_appointment_payments_attempts"),
        CheckConstraint(
            "phase IN ('penalty', 'settlement', 'manual_recovery')",
            name="ck_appointment_payments_phase",
        ),
        CheckConstraint(
            "status IN ('pending', 'processing', 'succeeded', 'failed', 'abandoned')",
            name="ck_appointment_payments_status",
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PAYMENT_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "appointment_id": self.appointment_id,
            "phase": self.phase,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "status": self.status,
            "attempt_count": self.attempt_count,
            "next_attempt_at": self.next_attempt_at,
            "failure_code": self.failure_code,
            "failure_message": self.failure_message,
            "gateway_charge_id": self.gateway_charge_id,
            "paid_at": self.paid_at,
        }

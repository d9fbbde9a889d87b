# backend/autoscuola/models/payment_profile.py
"""Saved gateway customer and default payment method per student."""

from enum import Enum

from sqlalchemy import Column, String, UniqueConstraint
import ulid

from ..database import Base
from .types import TimestampMixin


class PaymentProfileStatus(str, Enum):
    ACTIVE = "active"
    DETACHED = "detached"


class StudentPaymentProfile(TimestampMixin, Base):
    __tablename__ = "student_payment_profiles"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    company_id = Column(String(26), nullable=False, index=True)
    student_id = Column(String(26), nullable=False)
    gateway_customer_id = Column(String(255), nullable=False)
    default_payment_method_id = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default=PaymentProfileStatus.ACTIVE.value)

    __table_args__ = (
        UniqueConstraint("company_id", "student_id", name="uq_payment_profile_student"),
    )

    @property
    def is_chargeable(self) -> bool:
        return self.status == PaymentProfileStatus.ACTIVE.value and bool(
            self.default_payment_method_id
        )

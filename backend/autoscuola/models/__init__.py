# backend/autoscuola/models/__init__.py
"""
SQLAlchemy models for the autoscuola engine.

Importing this package registers every table on ``Base.metadata``.
"""

from .appointment import (
    REPOSITIONABLE_STATUSES,
    Appointment,
    AppointmentStatus,
    CancellationKind,
    InvoiceStatus,
    LessonType,
    PaymentStatus,
)
from .appointment_payment import AppointmentPayment, PaymentPhase, PaymentRecordStatus
from .availability_window import AvailabilityWindow
from .company_settings import CompanyAutoscuolaSettings
from .payment_profile import PaymentProfileStatus, StudentPaymentProfile
from .reposition_task import RepositionReason, RepositionTask, RepositionTaskStatus
from .resource import CompanyResource, OwnerType
from .resource_slot import ResourceSlotHold, SlotHoldStatus

__all__ = [
    "Appointment",
    "AppointmentPayment",
    "AppointmentStatus",
    "AvailabilityWindow",
    "CancellationKind",
    "CompanyAutoscuolaSettings",
    "CompanyResource",
    "InvoiceStatus",
    "LessonType",
    "OwnerType",
    "PaymentPhase",
    "PaymentProfileStatus",
    "PaymentRecordStatus",
    "PaymentStatus",
    "REPOSITIONABLE_STATUSES",
    "RepositionReason",
    "RepositionTask",
    "RepositionTaskStatus",
    "ResourceSlotHold",
    "SlotHoldStatus",
    "StudentPaymentProfile",
]

# backend/autoscuola/schemas/__init__.py
"""
Pydantic schemas for the autoscuola API.
"""

from .appointment import (
    AppointmentCreate,
    AppointmentResponse,
    OperationalCancelRequest,
    OperationalCancelResponse,
    RepositionTaskResponse,
    ResourceCancelRequest,
    ResourceCancelResponse,
    StatusUpdateRequest,
)
from .payment import (
    ManualRecoveryResponse,
    PaymentRecordResponse,
    PaymentsOverviewResponse,
    PaymentSummaryResponse,
)

__all__ = [
    "AppointmentCreate",
    "AppointmentResponse",
    "ManualRecoveryResponse",
    "OperationalCancelRequest",
    "OperationalCancelResponse",
    "PaymentRecordResponse",
    "PaymentSummaryResponse",
    "PaymentsOverviewResponse",
    "RepositionTaskResponse",
    "ResourceCancelRequest",
    "ResourceCancelResponse",
    "StatusUpdateRequest",
]

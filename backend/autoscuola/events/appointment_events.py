"""Appointment and ledger domain events."""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class AppointmentCreated:
    """Fired after an appointment is booked."""

    company_id: str
    appointment_id: str
    student_id: str
    instructor_id: str
    vehicle_id: str
    starts_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class OperationalCancellationPending:
    """Fired when an appointment is cancelled operationally and queued for reposition."""

    company_id: str
    appointment_id: str
    student_id: str
    starts_at: datetime
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ReplacementProposed:
    """Fired after the reposition queue creates a proposal for the student."""

    company_id: str
    source_appointment_id: str
    appointment_id: str
    student_id: str
    starts_at: datetime
    lesson_type: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PaymentInsoluto:
    """Fired when a charge record exhausts its attempts."""

    company_id: str
    appointment_id: str
    student_id: str
    amount_cents: int
    failure_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

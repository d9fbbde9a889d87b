from .appointment_events import (
    AppointmentCreated,
    OperationalCancellationPending,
    PaymentInsoluto,
    ReplacementProposed,
)

__all__ = [
    "AppointmentCreated",
    "OperationalCancellationPending",
    "PaymentInsoluto",
    "ReplacementProposed",
]

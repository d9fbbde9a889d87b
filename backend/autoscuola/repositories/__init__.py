"""Repository layer for the autoscuola engine."""

from .appointment_repository import AppointmentRepository
from .availability_repository import AvailabilityRepository
from .base_repository import BaseRepository
from .company_settings_repository import CompanyConfig, CompanySettingsRepository
from .factory import RepositoryFactory
from .payment_repository import PaymentProfileRepository, PaymentRepository
from .reposition_task_repository import RepositionTaskRepository
from .resource_repository import ResourceRepository, SlotHoldRepository

__all__ = [
    "AppointmentRepository",
    "AvailabilityRepository",
    "BaseRepository",
    "CompanyConfig",
    "CompanySettingsRepository",
    "PaymentProfileRepository",
    "PaymentRepository",
    "RepositionTaskRepository",
    "RepositoryFactory",
    "ResourceRepository",
    "SlotHoldRepository",
]

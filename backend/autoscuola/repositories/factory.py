# backend/autoscuola/repositories/factory.py
"""
Repository Factory for the autoscuola engine.

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from .base_repository import BaseRepository

if TYPE_CHECKING:
    from .appointment_repository import AppointmentRepository
    from .availability_repository import AvailabilityRepository
    from .company_settings_repository import CompanySettingsRepository
    from .payment_repository import PaymentProfileRepository, PaymentRepository
    from .reposition_task_repository import RepositionTaskRepository
    from .resource_repository import ResourceRepository, SlotHoldRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_base_repository(db: Session, model) -> BaseRepository:
        """Create a generic base repository for any model."""
        return BaseRepository(db, model)

    @staticmethod
    def create_appointment_repository(db: Session) -> "AppointmentRepository":
        """Create repository for appointment queries and sweep selections."""
        from .appointment_repository import AppointmentRepository

        return AppointmentRepository(db)

    @staticmethod
    def create_availability_repository(db: Session) -> "AvailabilityRepository":
        """Create repository for weekly availability windows."""
        from .availability_repository import AvailabilityRepository

        return AvailabilityRepository(db)

    @staticmethod
    def create_reposition_task_repository(db: Session) -> "RepositionTaskRepository":
        """Create repository for the reposition task queue."""
        from .reposition_task_repository import RepositionTaskRepository

        return RepositionTaskRepository(db)

    @staticmethod
    def create_payment_repository(db: Session) -> "PaymentRepository":
        """Create repository for appointment charge attempts."""
        from .payment_repository import PaymentRepository

        return PaymentRepository(db)

    @staticmethod
    def create_payment_profile_repository(db: Session) -> "PaymentProfileRepository":
        from .payment_repository import PaymentProfileRepository

        return PaymentProfileRepository(db)

    @staticmethod
    def create_resource_repository(db: Session) -> "ResourceRepository":
        from .resource_repository import ResourceRepository

        return ResourceRepository(db)

    @staticmethod
    def create_slot_hold_repository(db: Session) -> "SlotHoldRepository":
        from .resource_repository import SlotHoldRepository

        return SlotHoldRepository(db)

    @staticmethod
    def create_company_settings_repository(db: Session) -> "CompanySettingsRepository":
        from .company_settings_repository import CompanySettingsRepository

        return CompanySettingsRepository(db)

# backend/autoscuola/api/dependencies.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected.
"""

from functools import lru_cache
import logging

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from ..core.clock import Clock, SystemClock
from ..core.config import settings
from ..core.exceptions import ValidationException
from ..database import get_db
from ..integrations.payment_gateway import PaymentGateway, StripePaymentGateway
from ..services.appointment_service import AppointmentService
from ..services.directory_service import DirectoryService, SqlDirectoryService
from ..services.notification_service import NotificationService
from ..services.payment_service import PaymentService
from ..services.reposition_service import RepositionService

logger = logging.getLogger(__name__)

__all__ = [
    "get_appointment_service",
    "get_clock",
    "get_company_id",
    "get_db",
    "get_directory_service",
    "get_notification_service",
    "get_payment_gateway",
    "get_payment_service",
    "get_reposition_service",
]


def get_company_id(x_company_id: str = Header(..., alias="X-Company-Id")) -> str:
    """Tenant scope for every autoscuola request."""
    company_id = x_company_id.strip()
    if not company_id:
        raise ValidationException("X-Company-Id header is required", code="MISSING_COMPANY")
    return company_id


@lru_cache(maxsize=1)
def get_clock() -> Clock:
    return SystemClock()


@lru_cache(maxsize=1)
def get_notification_service() -> NotificationService:
    """Process-wide notification service using the default dispatcher."""
    return NotificationService()


def get_directory_service(db: Session = Depends(get_db)) -> DirectoryService:
    return SqlDirectoryService(db)


def get_reposition_service(
    db: Session = Depends(get_db),
    directory: DirectoryService = Depends(get_directory_service),
    notifications: NotificationService = Depends(get_notification_service),
    clock: Clock = Depends(get_clock),
) -> RepositionService:
    return RepositionService(db, directory=directory, notifications=notifications, clock=clock)


def get_appointment_service(
    db: Session = Depends(get_db),
    directory: DirectoryService = Depends(get_directory_service),
    notifications: NotificationService = Depends(get_notification_service),
    reposition_service: RepositionService = Depends(get_reposition_service),
    clock: Clock = Depends(get_clock),
) -> AppointmentService:
    """
    Get appointment service instance with all dependencies.

    Args:
        db: Database session
        directory: Resource directory lookups
        notifications: Student notices
        reposition_service: Reposition queue sharing the same session
        clock: Time source

    Returns:
        AppointmentService instance
    """
    return AppointmentService(
        db,
        directory=directory,
        notifications=notifications,
        reposition_service=reposition_service,
        clock=clock,
    )


@lru_cache(maxsize=1)
def get_payment_gateway() -> PaymentGateway:
    return StripePaymentGateway(
        api_key=settings.stripe_secret_key,
        timeout=settings.payment_gateway_timeout_seconds,
    )


def get_payment_service(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifications: NotificationService = Depends(get_notification_service),
    clock: Clock = Depends(get_clock),
) -> PaymentService:
    return PaymentService(db, gateway=gateway, notifications=notifications, clock=clock)

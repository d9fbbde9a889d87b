# backend/tests/factories/school_builders.py
"""
Builders for driving-school test data.

Every builder commits, so the rows are visible to services that open their
own transactions. Times are built in the school's zone (Europe/Rome) and
stored as UTC.
"""

from datetime import datetime, timedelta
from types import SimpleNamespace
from typing import Any, Iterable, Optional

import pytz
from sqlalchemy.orm import Session

from autoscuola.core.timezone_utils import get_timezone
from autoscuola.models import (
    Appointment,
    AppointmentStatus,
    CompanyAutoscuolaSettings,
    CompanyResource,
    OwnerType,
    PaymentStatus,
    StudentPaymentProfile,
)
from autoscuola.repositories.factory import RepositoryFactory

COMPANY_ID = "company-1"
STUDENT_ID = "student-1"
OTHER_STUDENT_ID = "student-2"
INSTRUCTOR_ID = "instructor-1"
VEHICLE_ID = "vehicle-1"
OTHER_VEHICLE_ID = "vehicle-2"

ROME = get_timezone("Europe/Rome")
WEEKDAYS = (1, 2, 3, 4, 5)
WEEKDAYS_AND_SATURDAY = (1, 2, 3, 4, 5, 6)


def rome(year: int, month: int, day: int, hour: int, minute: int = 0) -> datetime:
    """UTC instant of a Rome wall-clock time."""
    return ROME.localize(datetime(year, month, day, hour, minute)).astimezone(pytz.UTC)


def seed_settings(db: Session, company_id: str = COMPANY_ID, **overrides: Any):
    row = db.query(CompanyAutoscuolaSettings).filter_by(company_id=company_id).first()
    if row is None:
        row = CompanyAutoscuolaSettings(company_id=company_id, timezone="Europe/Rome")
        db.add(row)
    for key, value in overrides.items():
        setattr(row, key, value)
    db.commit()
    return row


def add_resource(
    db: Session,
    owner_type: str,
    owner_id: str,
    *,
    company_id: str = COMPANY_ID,
    is_active: bool = True,
    display_name: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
) -> CompanyResource:
    resource = CompanyResource(
        company_id=company_id,
        owner_type=owner_type,
        owner_id=owner_id,
        display_name=display_name,
        email=email,
        phone=phone,
        is_active=is_active,
    )
    db.add(resource)
    db.commit()
    return resource


def set_active(db: Session, owner_id: str, is_active: bool, company_id: str = COMPANY_ID) -> None:
    resource = db.query(CompanyResource).filter_by(company_id=company_id, owner_id=owner_id).one()
    resource.is_active = is_active
    db.commit()


def set_window(
    db: Session,
    owner_type: str,
    owner_id: str,
    *,
    days: Iterable[int] = WEEKDAYS,
    start_minutes: int = 9 * 60,
    end_minutes: int = 18 * 60,
    company_id: str = COMPANY_ID,
):
    window = RepositoryFactory.create_availability_repository(db).upsert_window(
        company_id,
        owner_type,
        owner_id,
        days_of_week=days,
        start_minutes=start_minutes,
        end_minutes=end_minutes,
    )
    db.commit()
    return window


def add_payment_profile(
    db: Session,
    student_id: str = STUDENT_ID,
    *,
    payment_method_id: Optional[str] = "pm_card_visa",
    company_id: str = COMPANY_ID,
) -> StudentPaymentProfile:
    profile = StudentPaymentProfile(
        company_id=company_id,
        student_id=student_id,
        gateway_customer_id=f"cus_{student_id}",
        default_payment_method_id=payment_method_id,
        status="active",
    )
    db.add(profile)
    db.commit()
    return profile


def add_appointment(
    db: Session,
    starts_at: datetime,
    *,
    duration_minutes: int = 60,
    student_id: str = STUDENT_ID,
    instructor_id: str = INSTRUCTOR_ID,
    vehicle_id: str = VEHICLE_ID,
    status: str = AppointmentStatus.SCHEDULED.value,
    company_id: str = COMPANY_ID,
    **fields: Any,
) -> Appointment:
    """Insert an appointment directly, bypassing booking validation."""
    values = {
        "lesson_type": "guida",
        "payment_required": False,
        "payment_status": PaymentStatus.NOT_REQUIRED.value,
        "payment_status_locked": False,
        "price_amount_cents": 0,
        "penalty_amount_cents": 0,
        "paid_amount_cents": 0,
        "currency": "EUR",
    }
    values.update(fields)
    appointment = Appointment(
        company_id=company_id,
        student_id=student_id,
        instructor_id=instructor_id,
        vehicle_id=vehicle_id,
        starts_at=starts_at,
        ends_at=starts_at + timedelta(minutes=duration_minutes),
        status=status,
        **values,
    )
    db.add(appointment)
    db.commit()
    return appointment


def add_paid_lesson(
    db: Session,
    starts_at: datetime,
    *,
    price_cents: int = 2500,
    penalty_percent: int = 50,
    cutoff_hours: int = 24,
    **fields: Any,
) -> Appointment:
    """A lesson booked with payments enabled, before any charge."""
    values = {
        "payment_required": True,
        "payment_status": PaymentStatus.PENDING_PENALTY.value,
        "price_amount_cents": price_cents,
        "penalty_amount_cents": price_cents * penalty_percent // 100,
        "penalty_cutoff_at": starts_at - timedelta(hours=cutoff_hours),
    }
    values.update(fields)
    return add_appointment(db, starts_at, **values)


def seed_school(db: Session, *, payments_enabled: bool = False, **settings: Any) -> SimpleNamespace:
    """
    A small school: two students, one instructor and two vehicles.

    Students are available on weekdays 09:00-18:00; the instructor and the
    vehicles Monday to Saturday 08:00-19:00.
    """
    seed_settings(db, payments_enabled=payments_enabled, **settings)
    add_resource(
        db,
        OwnerType.STUDENT.value,
        STUDENT_ID,
        display_name="Mario Rossi",
        email="mario.rossi@example.com",
        phone="+39 333 1234567",
    )
    add_resource(db, OwnerType.STUDENT.value, OTHER_STUDENT_ID, display_name="Giulia Bianchi")
    add_resource(db, OwnerType.INSTRUCTOR.value, INSTRUCTOR_ID, display_name="Luca Verdi")
    add_resource(db, OwnerType.VEHICLE.value, VEHICLE_ID, display_name="Fiat Panda")
    add_resource(db, OwnerType.VEHICLE.value, OTHER_VEHICLE_ID, display_name="Lancia Ypsilon")

    for student_id in (STUDENT_ID, OTHER_STUDENT_ID):
        set_window(db, OwnerType.STUDENT.value, student_id)
    set_window(
        db,
        OwnerType.INSTRUCTOR.value,
        INSTRUCTOR_ID,
        days=WEEKDAYS_AND_SATURDAY,
        start_minutes=8 * 60,
        end_minutes=19 * 60,
    )
    for vehicle_id in (VEHICLE_ID, OTHER_VEHICLE_ID):
        set_window(
            db,
            OwnerType.VEHICLE.value,
            vehicle_id,
            days=WEEKDAYS_AND_SATURDAY,
            start_minutes=8 * 60,
            end_minutes=19 * 60,
        )

    if payments_enabled:
        add_payment_profile(db, STUDENT_ID)
        add_payment_profile(db, OTHER_STUDENT_ID)

    return SimpleNamespace(
        company_id=COMPANY_ID,
        student_id=STUDENT_ID,
        other_student_id=OTHER_STUDENT_ID,
        instructor_id=INSTRUCTOR_ID,
        vehicle_id=VEHICLE_ID,
        other_vehicle_id=OTHER_VEHICLE_ID,
    )

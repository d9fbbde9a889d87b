# backend/autoscuola/services/appointment_service.py
"""
Appointment Lifecycle Manager for the autoscuola engine.

Handles:
- Booking with conflict detection across student, instructor and vehicle
- Operational cancellation feeding the reposition queue
- Status transitions, including student and admin cancellations
- Bulk cancellation when a resource leaves the fleet
- Replacement linking and read models for payment and reposition state
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.clock import Clock
from ..core.constants import SLOT_MINUTES
from ..core.exceptions import (
    BusinessRuleException,
    ForbiddenException,
    InvalidResourceException,
    InvalidStatusTransitionException,
    LessonPolicyViolationException,
    NotFoundException,
    NotRepositionableException,
    SlotConflictException,
    StudentPaymentBlockedException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, get_timezone, is_slot_aligned
from ..events.appointment_events import AppointmentCreated, OperationalCancellationPending
from ..models.appointment import (
    REPOSITIONABLE_STATUSES,
    Appointment,
    AppointmentStatus,
    CancellationKind,
    InvoiceStatus,
    LessonType,
)
from ..models.reposition_task import RepositionReason, RepositionTask
from ..models.resource import OwnerType
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .directory_service import DirectoryService, SqlDirectoryService
from .lesson_policy import ALLOWED_LESSON_TYPES, LessonPolicy, normalize_lesson_type
from .notification_service import NotificationService
from .payment_ledger import (
    apply_waiver,
    final_amount,
    prepare_payment_snapshot,
    recompute_payment_status,
)
from .reposition_service import RepositionOutcome, RepositionService

ALLOWED_TRANSITIONS = {
    AppointmentStatus.SCHEDULED.value: {
        AppointmentStatus.CONFIRMED.value,
        AppointmentStatus.CHECKED_IN.value,
        AppointmentStatus.COMPLETED.value,
        AppointmentStatus.NO_SHOW.value,
        AppointmentStatus.CANCELLED.value,
    },
    AppointmentStatus.PROPOSAL.value: {
        AppointmentStatus.CONFIRMED.value,
        AppointmentStatus.CANCELLED.value,
    },
    AppointmentStatus.CONFIRMED.value: {
        AppointmentStatus.CHECKED_IN.value,
        AppointmentStatus.COMPLETED.value,
        AppointmentStatus.NO_SHOW.value,
        AppointmentStatus.CANCELLED.value,
    },
    AppointmentStatus.CHECKED_IN.value: {
        AppointmentStatus.COMPLETED.value,
        AppointmentStatus.NO_SHOW.value,
    },
}

ACTOR_ROLES = ("owner", "instructor", "student")
BULK_CANCEL_OWNER_TYPES = (OwnerType.INSTRUCTOR.value, OwnerType.VEHICLE.value)


@dataclass
class OperationalCancellation:
    appointment: Appointment
    task: RepositionTask
    outcome: Optional[RepositionOutcome] = None


class AppointmentService(BaseService):
    """Service layer for appointment booking and lifecycle."""

    def __init__(
        self,
        db: Session,
        directory: Optional[DirectoryService] = None,
        notifications: Optional[NotificationService] = None,
        reposition_service: Optional[RepositionService] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(db, clock)
        self.directory = directory or SqlDirectoryService(db)
        self.notifications = notifications or NotificationService()
        self.reposition_service = reposition_service or RepositionService(
            db,
            directory=self.directory,
            notifications=self.notifications,
            clock=self.clock,
        )
        self.appointment_repository = RepositoryFactory.create_appointment_repository(db)
        self.slot_hold_repository = RepositoryFactory.create_slot_hold_repository(db)
        self.settings_repository = RepositoryFactory.create_company_settings_repository(db)
        self.payment_profile_repository = RepositoryFactory.create_payment_profile_repository(db)
        self.task_repository = RepositoryFactory.create_reposition_task_repository(db)

    @BaseService.measure_operation("create_appointment")
    def create_appointment(
        self,
        company_id: str,
        student_id: str,
        instructor_id: str,
        vehicle_id: str,
        starts_at: datetime,
        duration_minutes: int,
        lesson_type: str = LessonType.GUIDA.value,
        case_id: Optional[str] = None,
    ) -> Appointment:
        """
        Book a lesson after validating resources, policy and conflicts.

        Raises:
            ValidationException: Bad duration, alignment or lesson type
            LessonPolicyViolationException: Lesson type not allowed at that time
            InvalidResourceException: A resource is inactive or foreign
            StudentPaymentBlockedException: The student has insoluto lessons
            PaymentMethodRequiredException: Payments enabled, no usable method
            SlotConflictException: Any of the three resources is busy
        """
        starts_at = ensure_utc(starts_at)
        config = self.settings_repository.get_config(company_id)
        tz = get_timezone(config.timezone)

        self._validate_duration(duration_minutes, config.booking_slot_durations)
        if not is_slot_aligned(starts_at):
            raise ValidationException(
                f"Lessons must start on a {SLOT_MINUTES}-minute boundary",
                code="SLOT_NOT_ALIGNED",
                details={"starts_at": starts_at.isoformat()},
            )
        lesson_type = normalize_lesson_type(lesson_type)
        if lesson_type not in ALLOWED_LESSON_TYPES:
            raise ValidationException(
                f"Unknown lesson type: {lesson_type}",
                code="INVALID_LESSON_TYPE",
                details={"lesson_type": lesson_type},
            )
        ends_at = starts_at + timedelta(minutes=duration_minutes)
        if not LessonPolicy.from_config(config.lesson_policy).is_allowed(
            lesson_type, starts_at, ends_at, tz
        ):
            raise LessonPolicyViolationException(lesson_type)

        for owner_type, owner_id in (
            (OwnerType.STUDENT.value, student_id),
            (OwnerType.INSTRUCTOR.value, instructor_id),
            (OwnerType.VEHICLE.value, vehicle_id),
        ):
            if not self.directory.is_active_resource(company_id, owner_type, owner_id):
                raise InvalidResourceException(owner_type, owner_id)

        profile = None
        if config.payments_enabled:
            blocked = self.appointment_repository.find_insoluto_for_student(company_id, student_id)
            if blocked:
                raise StudentPaymentBlockedException(student_id, [item.id for item in blocked])
            profile = self.payment_profile_repository.get_for_student(company_id, student_id)
        snapshot = prepare_payment_snapshot(
            config, profile, starts_at, duration_minutes, student_id=student_id
        )

        with self.transaction():
            conflicts = self.appointment_repository.find_conflicts(
                company_id,
                student_id=student_id,
                instructor_id=instructor_id,
                vehicle_id=vehicle_id,
                starts_at=starts_at,
                ends_at=ends_at,
            )
            if conflicts:
                raise SlotConflictException(
                    self._conflict_dimensions(conflicts, student_id, instructor_id, vehicle_id),
                    details={"appointment_ids": [item.id for item in conflicts]},
                )

            appointment = Appointment(
                company_id=company_id,
                student_id=student_id,
                case_id=case_id,
                instructor_id=instructor_id,
                vehicle_id=vehicle_id,
                lesson_type=lesson_type,
                starts_at=starts_at,
                ends_at=ends_at,
                status=AppointmentStatus.SCHEDULED.value,
            )
            snapshot.apply_to(appointment)
            self.db.add(appointment)
            self.appointment_repository.flush()
            self.slot_hold_repository.hold_for_appointment(
                appointment_id=appointment.id,
                company_id=company_id,
                resources=[
                    (OwnerType.STUDENT.value, student_id),
                    (OwnerType.INSTRUCTOR.value, instructor_id),
                    (OwnerType.VEHICLE.value, vehicle_id),
                ],
                starts_at=starts_at,
                ends_at=ends_at,
            )

        self.logger.info(
            f"Created appointment {appointment.id} for student {student_id} "
            f"at {starts_at.isoformat()} ({duration_minutes} min)"
        )
        self.notifications.publish(
            AppointmentCreated(
                company_id=company_id,
                appointment_id=appointment.id,
                student_id=student_id,
                instructor_id=instructor_id,
                vehicle_id=vehicle_id,
                starts_at=starts_at,
            )
        )
        return appointment

    @staticmethod
    def _validate_duration(duration_minutes: int, allowed: tuple) -> None:
        if duration_minutes < SLOT_MINUTES or duration_minutes % SLOT_MINUTES:
            raise ValidationException(
                f"Duration must be a positive multiple of {SLOT_MINUTES} minutes",
                code="INVALID_DURATION",
                details={"duration_minutes": duration_minutes},
            )
        if allowed and duration_minutes not in allowed:
            raise ValidationException(
                f"Duration of {duration_minutes} minutes is not bookable",
                code="INVALID_DURATION",
                details={"duration_minutes": duration_minutes, "allowed": list(allowed)},
            )

    @staticmethod
    def _conflict_dimensions(
        conflicts: List[Appointment], student_id: str, instructor_id: str, vehicle_id: str
    ) -> List[str]:
        dimensions = []
        if any(item.student_id == student_id for item in conflicts):
            dimensions.append(OwnerType.STUDENT.value)
        if any(item.instructor_id == instructor_id for item in conflicts):
            dimensions.append(OwnerType.INSTRUCTOR.value)
        if any(item.vehicle_id == vehicle_id for item in conflicts):
            dimensions.append(OwnerType.VEHICLE.value)
        return dimensions

    @BaseService.measure_operation("cancel_operational")
    def cancel_operational(
        self,
        company_id: str,
        appointment_id: str,
        reason: RepositionReason,
        attempt_now: bool = True,
    ) -> OperationalCancellation:
        """
        Cancel an appointment for an operational reason and queue its reposition.

        The immediate reposition attempt never fails the cancellation.
        """
        try:
            reason = RepositionReason(reason)
        except ValueError:
            raise ValidationException(
                f"Unknown reposition reason: {reason}",
                code="INVALID_REASON",
                details={"reason": str(reason)},
            )

        with self.transaction():
            appointment = self._get_owned(company_id, appointment_id, for_update=True)
            now = self.now()
            if appointment.status not in REPOSITIONABLE_STATUSES:
                raise NotRepositionableException(
                    appointment_id, f"status is {appointment.status}"
                )
            if appointment.starts_at <= now:
                raise NotRepositionableException(appointment_id, "the lesson has already started")

            appointment.mark_cancelled(CancellationKind.OPERATIONAL, reason.value, now)
            self.slot_hold_repository.release_for_appointment(appointment.id, now)
            if appointment.payment_required:
                apply_waiver(appointment)
                appointment.invoice_status = InvoiceStatus.NOT_REQUIRED.value
            self.appointment_repository.flush()
            task = self.reposition_service.enqueue(appointment, reason)

        self.logger.info(
            f"Appointment {appointment.id} cancelled operationally ({reason.value}); task {task.id}"
        )
        self.notifications.publish(
            OperationalCancellationPending(
                company_id=company_id,
                appointment_id=appointment.id,
                student_id=appointment.student_id,
                starts_at=appointment.starts_at,
                reason=reason.value,
            )
        )

        result = OperationalCancellation(appointment=appointment, task=task)
        if attempt_now:
            try:
                result.outcome = self.reposition_service.attempt_task(task.id, force=True)
            except Exception as exc:
                self.logger.error(
                    f"Immediate reposition attempt for task {task.id} failed: {exc}", exc_info=True
                )
                self.db.rollback()
        return result

    @BaseService.measure_operation("cancel_for_resource")
    def cancel_for_resource(
        self,
        company_id: str,
        owner_type: str,
        owner_id: str,
        reason: RepositionReason,
    ) -> int:
        """Operationally cancel every future appointment of an instructor or vehicle."""
        if owner_type not in BULK_CANCEL_OWNER_TYPES:
            raise ValidationException(
                f"Bulk cancellation is not supported for {owner_type}",
                code="INVALID_OWNER_TYPE",
                details={"owner_type": owner_type},
            )
        reason = RepositionReason(reason)
        appointments = self.appointment_repository.find_future_repositionable_for_owner(
            company_id, owner_type, owner_id, self.now()
        )
        cancelled = 0
        for appointment_id in [item.id for item in appointments]:
            try:
                self.cancel_operational(company_id, appointment_id, reason, attempt_now=False)
                cancelled += 1
            except NotRepositionableException as exc:
                self.logger.warning(f"Skipping appointment {appointment_id}: {exc.message}")
        self.logger.info(
            f"Cancelled {cancelled} future appointment(s) of {owner_type} {owner_id} ({reason.value})"
        )
        return cancelled

    def link_replacement(self, source_id: str, replacement_id: str) -> bool:
        """Set the source's forward link once; later calls are no-ops."""
        with self.transaction():
            source = self.appointment_repository.get_by_id(source_id, for_update=True)
            if source is None:
                raise NotFoundException(f"Appointment {source_id} not found")
            linked = source.link_replacement(replacement_id)
        if not linked and source.replaced_by_appointment_id != replacement_id:
            self.logger.warning(
                f"Appointment {source_id} already replaced by {source.replaced_by_appointment_id}; "
                f"ignoring {replacement_id}"
            )
        return linked

    @BaseService.measure_operation("update_appointment_status")
    def update_status(
        self,
        company_id: str,
        appointment_id: str,
        new_status: str,
        actor_role: str = "owner",
        reason: Optional[str] = None,
    ) -> Appointment:
        if actor_role not in ACTOR_ROLES:
            raise ValidationException(
                f"Unknown actor role: {actor_role}", code="INVALID_ROLE", details={"role": actor_role}
            )
        if actor_role == "student" and new_status != AppointmentStatus.CANCELLED.value:
            raise ForbiddenException("Students may only cancel their lessons", code="FORBIDDEN")

        with self.transaction():
            appointment = self._get_owned(company_id, appointment_id, for_update=True)
            current = appointment.status
            if new_status not in ALLOWED_TRANSITIONS.get(current, set()):
                raise InvalidStatusTransitionException(current, new_status)

            now = self.now()
            if (
                new_status in (AppointmentStatus.COMPLETED.value, AppointmentStatus.NO_SHOW.value)
                and appointment.starts_at > now
            ):
                raise BusinessRuleException(
                    "The lesson has not started yet",
                    code="LESSON_NOT_STARTED",
                    details={"starts_at": appointment.starts_at.isoformat()},
                )

            if new_status == AppointmentStatus.CANCELLED.value:
                kind = (
                    CancellationKind.STUDENT_CANCEL
                    if actor_role == "student"
                    else CancellationKind.ADMIN_CANCEL
                )
                appointment.mark_cancelled(kind, reason, now)
                self.slot_hold_repository.release_for_appointment(appointment.id, now)
                if (
                    appointment.payment_required
                    and not appointment.payment_status_locked
                    and final_amount(appointment) == 0
                ):
                    apply_waiver(appointment)
                else:
                    recompute_payment_status(appointment)
            else:
                appointment.status = new_status
                recompute_payment_status(appointment)

        self.logger.info(
            f"Appointment {appointment_id} moved {current} -> {new_status} by {actor_role}"
        )
        return appointment

    def get_appointment(self, company_id: str, appointment_id: str) -> Appointment:
        return self._get_owned(company_id, appointment_id)

    def get_payment_summary(self, company_id: str, appointment_id: str) -> Dict[str, Any]:
        from .payment_service import PaymentService

        appointment = self._get_owned(company_id, appointment_id)
        return PaymentService(self.db, clock=self.clock).get_payment_summary(appointment)

    def get_reposition_status(self, company_id: str, appointment_id: str) -> RepositionTask:
        self._get_owned(company_id, appointment_id)
        task = self.task_repository.get_by_source(appointment_id)
        if task is None:
            raise NotFoundException(
                f"No reposition task for appointment {appointment_id}",
                code="REPOSITION_TASK_NOT_FOUND",
            )
        return task

    def _get_owned(
        self, company_id: str, appointment_id: str, *, for_update: bool = False
    ) -> Appointment:
        appointment = self.appointment_repository.get_for_company(
            company_id, appointment_id, for_update=for_update
        )
        if appointment is None:
            raise NotFoundException(
                f"Appointment {appointment_id} not found",
                code="APPOINTMENT_NOT_FOUND",
                details={"appointment_id": appointment_id},
            )
        return appointment

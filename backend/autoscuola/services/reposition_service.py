# backend/autoscuola/services/reposition_service.py
"""
Reposition Task Queue for the autoscuola engine.

One durable task per operationally cancelled appointment. Each attempt
either resolves the task (matched, or cancelled once the source has started)
or leaves it pending with a short fixed delay; the search space changes as
other bookings come and go, so the queue keeps trying rather than backing off.

Attempts are safe to run concurrently from the cancellation request and the
periodic sweep: the success path re-reads the source under a row lock and
gives up cleanly if another worker already linked a replacement.
"""

from datetime import datetime, timedelta
from enum import Enum
import logging
from typing import NamedTuple, Optional, TypedDict

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.clock import Clock
from ..core.constants import (
    REPOSITION_HORIZON_DAYS,
    REPOSITION_SWEEP_DEFAULT_LIMIT,
    REPOSITION_SWEEP_MAX_LIMIT,
    RETRY_DELAY_MINUTES,
)
from ..events.appointment_events import ReplacementProposed
from ..models.appointment import Appointment, AppointmentStatus, CancellationKind
from ..models.reposition_task import RepositionReason, RepositionTask, RepositionTaskStatus
from ..models.resource import OwnerType
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .directory_service import DirectoryService, SqlDirectoryService
from .notification_service import NotificationService
from .payment_ledger import transfer_ledger
from .slot_matcher import MatchResult, SlotMatcher

logger = logging.getLogger(__name__)


class RepositionOutcome(str, Enum):
    MATCHED = "matched"
    DEFERRED = "deferred"
    NO_CANDIDATE = "no_candidate"
    EXPIRED = "expired"
    ALREADY_RESOLVED = "already_resolved"
    SKIPPED = "skipped"


class RepositionSweepResult(TypedDict):
    processed: int
    matched: int
    deferred: int
    no_candidate: int
    expired: int
    already_resolved: int
    skipped: int
    errors: int


class ResourceExclusions(NamedTuple):
    instructor_id: Optional[str]
    vehicle_id: Optional[str]


# Which resource caused the cancellation, and so must not be offered again
_EXCLUDED_DIMENSION = {
    RepositionReason.INSTRUCTOR_CANCEL: OwnerType.INSTRUCTOR,
    RepositionReason.INSTRUCTOR_INACTIVE: OwnerType.INSTRUCTOR,
    RepositionReason.DIRECTORY_INSTRUCTOR_REMOVED: OwnerType.INSTRUCTOR,
    RepositionReason.VEHICLE_INACTIVE: OwnerType.VEHICLE,
    RepositionReason.AVAILABILITY_CHANGED: None,
    RepositionReason.OWNER_DELETE: None,
}


def exclusions_for(reason: RepositionReason, appointment: Appointment) -> ResourceExclusions:
    dimension = _EXCLUDED_DIMENSION[RepositionReason(reason)]
    if dimension is OwnerType.INSTRUCTOR:
        return ResourceExclusions(instructor_id=appointment.instructor_id, vehicle_id=None)
    if dimension is OwnerType.VEHICLE:
        return ResourceExclusions(instructor_id=None, vehicle_id=appointment.vehicle_id)
    return ResourceExclusions(instructor_id=None, vehicle_id=None)


def clamp_sweep_limit(limit: Optional[int]) -> int:
    if limit is None:
        return REPOSITION_SWEEP_DEFAULT_LIMIT
    return max(1, min(int(limit), REPOSITION_SWEEP_MAX_LIMIT))


class RepositionService(BaseService):
    """Durable, retrying search for replacement slots."""

    def __init__(
        self,
        db: Session,
        directory: Optional[DirectoryService] = None,
        notifications: Optional[NotificationService] = None,
        matcher: Optional[SlotMatcher] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(db, clock)
        self.directory = directory or SqlDirectoryService(db)
        self.notifications = notifications or NotificationService()
        self.matcher = matcher or SlotMatcher(db, self.directory)
        self.task_repository = RepositoryFactory.create_reposition_task_repository(db)
        self.appointment_repository = RepositoryFactory.create_appointment_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.slot_hold_repository = RepositoryFactory.create_slot_hold_repository(db)
        self.settings_repository = RepositoryFactory.create_company_settings_repository(db)

    def enqueue(self, appointment: Appointment, reason: RepositionReason) -> RepositionTask:
        """
        Upsert the task for ``appointment``.

        Runs inside the caller's transaction and does not commit. A pending
        task only has its next attempt pulled forward; a terminal task is left
        untouched.
        """
        reason = RepositionReason(reason)
        now = self.now()
        task = self.task_repository.get_by_source(appointment.id, for_update=True)
        if task is None:
            exclusions = exclusions_for(reason, appointment)
            try:
                with self.db.begin_nested():
                    task = self.task_repository.create(
                        company_id=appointment.company_id,
                        source_appointment_id=appointment.id,
                        student_id=appointment.student_id,
                        status=RepositionTaskStatus.PENDING.value,
                        reason=reason.value,
                        excluded_instructor_id=exclusions.instructor_id,
                        excluded_vehicle_id=exclusions.vehicle_id,
                        attempt_count=0,
                        next_attempt_at=now,
                    )
                self.logger.info(
                    f"Queued reposition task {task.id} for appointment {appointment.id} ({reason.value})"
                )
                return task
            except IntegrityError:
                self.logger.warning(
                    f"Reposition task for appointment {appointment.id} created concurrently"
                )
                task = self.task_repository.get_by_source(appointment.id, for_update=True)
                if task is None:
                    raise

        if task.is_pending:
            task.next_attempt_at = now
            self.task_repository.flush()
        else:
            self.logger.debug(
                f"Reposition task {task.id} is already {task.status}; leaving it untouched"
            )
        return task

    def get_task_for_source(self, source_appointment_id: str) -> Optional[RepositionTask]:
        return self.task_repository.get_by_source(source_appointment_id)

    @BaseService.measure_operation("attempt_reposition_task")
    def attempt_task(self, task_id: str, *, force: bool = False) -> RepositionOutcome:
        """
        Run one attempt for a pending task.

        ``force`` ignores ``next_attempt_at``; the cancellation path uses it to
        try immediately.
        """
        outcome = self._attempt(task_id, force=force)
        prometheus_metrics.record_reposition_outcome(outcome.value)
        return outcome

    def _attempt(self, task_id: str, *, force: bool) -> RepositionOutcome:
        task = self.task_repository.get_by_id(task_id)
        if task is None or not task.is_pending:
            return RepositionOutcome.SKIPPED

        now = self.now()
        if not force and task.next_attempt_at is not None and task.next_attempt_at > now:
            return RepositionOutcome.SKIPPED

        source = self.appointment_repository.get_by_id(task.source_appointment_id)
        with self.transaction():
            guard = self._resolve_if_settled(task, source, now)
        if guard is not None:
            return guard

        if self.appointment_repository.find_open_proposals_for_student(
            task.company_id, task.student_id, now
        ):
            with self.transaction():
                self._defer(task, now, "open_proposal")
            self.logger.info(f"Reposition task {task.id} deferred: student has an open proposal")
            return RepositionOutcome.DEFERRED

        config = self.settings_repository.get_config(task.company_id)
        # With a resource excluded the same interval on other resources is a valid replacement.
        excludes_resource = bool(task.excluded_instructor_id or task.excluded_vehicle_id)
        match = self.matcher.find_best_slot(
            task.company_id,
            task.student_id,
            source.duration_minutes,
            source.lesson_type,
            earliest=now,
            horizon_days=REPOSITION_HORIZON_DAYS,
            excluded_instructor_ids=[task.excluded_instructor_id]
            if task.excluded_instructor_id
            else [],
            excluded_vehicle_ids=[task.excluded_vehicle_id] if task.excluded_vehicle_id else [],
            excluded_interval=None if excludes_resource else (source.starts_at, source.ends_at),
            config=config,
        )
        if match is None:
            with self.transaction():
                self._defer(task, now, RepositionOutcome.NO_CANDIDATE.value)
            self.logger.info(
                f"No replacement slot for appointment {source.id}; "
                f"retrying at {task.next_attempt_at.isoformat()}"
            )
            return RepositionOutcome.NO_CANDIDATE

        replacement: Optional[Appointment] = None
        with self.transaction():
            fresh_source = self.appointment_repository.get_by_id(source.id, for_update=True)
            task = self.task_repository.get_by_id(task.id, for_update=True)
            if task is None or not task.is_pending:
                return RepositionOutcome.SKIPPED
            guard = self._resolve_if_settled(task, fresh_source, now)
            if guard is not None:
                return guard
            if self.appointment_repository.find_conflicts(
                task.company_id,
                student_id=task.student_id,
                instructor_id=match.instructor_id,
                vehicle_id=match.vehicle_id,
                starts_at=match.starts_at,
                ends_at=match.ends_at,
            ):
                self._defer(task, now, "slot_taken")
                self.logger.info(
                    f"Matched slot {match.starts_at.isoformat()} for task {task.id} was taken; retrying"
                )
                return RepositionOutcome.DEFERRED

            replacement = self._create_replacement(task, fresh_source, match, now, config)

        self.logger.info(
            f"Reposition task {task.id} matched: {source.id} -> {replacement.id} "
            f"at {replacement.starts_at.isoformat()} (score {match.score})"
        )
        self.notifications.publish(
            ReplacementProposed(
                company_id=replacement.company_id,
                source_appointment_id=source.id,
                appointment_id=replacement.id,
                student_id=replacement.student_id,
                starts_at=replacement.starts_at,
                lesson_type=replacement.lesson_type,
            )
        )
        return RepositionOutcome.MATCHED

    def _resolve_if_settled(
        self, task: RepositionTask, source: Optional[Appointment], now: datetime
    ) -> Optional[RepositionOutcome]:
        """Terminate the task when there is nothing left to search for."""
        if source is None or source.starts_at <= now:
            task.status = RepositionTaskStatus.CANCELLED.value
            task.last_attempt_at = now
            task.next_attempt_at = None
            task.last_error = "source_expired"
            self.logger.info(f"Reposition task {task.id} expired")
            return RepositionOutcome.EXPIRED
        if source.replaced_by_appointment_id:
            task.status = RepositionTaskStatus.MATCHED.value
            task.matched_appointment_id = source.replaced_by_appointment_id
            task.last_attempt_at = now
            task.next_attempt_at = None
            return RepositionOutcome.ALREADY_RESOLVED
        return None

    def _defer(self, task: RepositionTask, now: datetime, error: str) -> None:
        task.attempt_count = (task.attempt_count or 0) + 1
        task.last_attempt_at = now
        task.next_attempt_at = now + timedelta(minutes=RETRY_DELAY_MINUTES)
        task.last_error = error

    def _create_replacement(
        self,
        task: RepositionTask,
        source: Appointment,
        match: MatchResult,
        now: datetime,
        config,
    ) -> Appointment:
        expires_at = None
        if config.proposal_ttl_hours:
            expires_at = min(now + timedelta(hours=config.proposal_ttl_hours), match.starts_at)

        replacement = self.appointment_repository.create(
            company_id=source.company_id,
            student_id=source.student_id,
            case_id=source.case_id,
            instructor_id=match.instructor_id,
            vehicle_id=match.vehicle_id,
            lesson_type=source.lesson_type,
            starts_at=match.starts_at,
            ends_at=match.ends_at,
            status=AppointmentStatus.PROPOSAL.value,
            proposal_expires_at=expires_at,
        )
        transfer_ledger(source, replacement)
        moved = self.payment_repository.reassign_appointment(source.id, replacement.id)

        source.cancellation_kind = CancellationKind.REPLACED.value
        source.link_replacement(replacement.id)

        task.status = RepositionTaskStatus.MATCHED.value
        task.matched_appointment_id = replacement.id
        task.attempt_count = (task.attempt_count or 0) + 1
        task.last_attempt_at = now
        task.next_attempt_at = None
        task.last_error = None

        self.slot_hold_repository.hold_for_appointment(
            appointment_id=replacement.id,
            company_id=replacement.company_id,
            resources=[
                (OwnerType.STUDENT.value, replacement.student_id),
                (OwnerType.INSTRUCTOR.value, replacement.instructor_id),
                (OwnerType.VEHICLE.value, replacement.vehicle_id),
            ],
            starts_at=replacement.starts_at,
            ends_at=replacement.ends_at,
        )
        self.appointment_repository.flush()
        if moved:
            self.logger.info(f"Moved {moved} payment record(s) from {source.id} to {replacement.id}")
        return replacement

    @BaseService.measure_operation("process_reposition_tasks")
    def process_pending(self, limit: Optional[int] = None) -> RepositionSweepResult:
        """Attempt every due task, isolating failures per task."""
        limit = clamp_sweep_limit(limit)
        now = self.now()
        result: RepositionSweepResult = {
            "processed": 0,
            "matched": 0,
            "deferred": 0,
            "no_candidate": 0,
            "expired": 0,
            "already_resolved": 0,
            "skipped": 0,
            "errors": 0,
        }
        task_ids = [task.id for task in self.task_repository.find_due(now, limit)]
        for task_id in task_ids:
            result["processed"] += 1
            try:
                outcome = self.attempt_task(task_id)
            except Exception as exc:
                self.logger.error(f"Reposition task {task_id} failed: {exc}", exc_info=True)
                self.db.rollback()
                result["errors"] += 1
                continue
            result[outcome.value] += 1  # type: ignore[literal-required]

        prometheus_metrics.record_sweep("reposition", result["processed"])
        if task_ids:
            self.logger.info(f"Reposition sweep finished: {result}")
        return result

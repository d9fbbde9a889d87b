# backend/autoscuola/repositories/payment_repository.py
"""Persistence for appointment charge attempts and student payment profiles."""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.appointment_payment import AppointmentPayment, PaymentRecordStatus
from ..models.payment_profile import StudentPaymentProfile
from .base_repository import BaseRepository


class PaymentRepository(BaseRepository[AppointmentPayment]):
    def __init__(self, db: Session):
        super().__init__(db, AppointmentPayment)

    def list_for_appointment(self, appointment_id: str) -> List[AppointmentPayment]:
        query = (
            self._build_query()
            .filter(AppointmentPayment.appointment_id == appointment_id)
            .order_by(AppointmentPayment.created_at, AppointmentPayment.id)
        )
        return self._execute_query(query)

    def find_reusable(
        self, appointment_id: str, phase: str, amount_cents: int
    ) -> Optional[AppointmentPayment]:
        """A non-succeeded record for the same phase and amount, newest first."""
        query = (
            self._build_query()
            .filter(
                AppointmentPayment.appointment_id == appointment_id,
                AppointmentPayment.phase == phase,
                AppointmentPayment.amount_cents == amount_cents,
                AppointmentPayment.status != PaymentRecordStatus.SUCCEEDED.value,
            )
            .order_by(AppointmentPayment.created_at.desc(), AppointmentPayment.id.desc())
        )
        return self._execute_first(query)

    def find_open_for_appointment(self, appointment_id: str) -> List[AppointmentPayment]:
        query = self._build_query().filter(
            AppointmentPayment.appointment_id == appointment_id,
            AppointmentPayment.status.in_(
                [
                    PaymentRecordStatus.PENDING.value,
                    PaymentRecordStatus.PROCESSING.value,
                    PaymentRecordStatus.FAILED.value,
                ]
            ),
        )
        return self._execute_query(query)

    def find_retry_due(
        self, now: datetime, stale_before: datetime, limit: int
    ) -> List[AppointmentPayment]:
        """Failed records due for retry plus processing records left behind by a crash."""
        query = (
            self._build_query()
            .filter(
                AppointmentPayment.phase != "manual_recovery",
                or_(
                    and_(
                        AppointmentPayment.status == PaymentRecordStatus.FAILED.value,
                        AppointmentPayment.next_attempt_at.isnot(None),
                        AppointmentPayment.next_attempt_at <= now,
                    ),
                    and_(
                        AppointmentPayment.status == PaymentRecordStatus.PROCESSING.value,
                        AppointmentPayment.last_attempt_at.isnot(None),
                        AppointmentPayment.last_attempt_at <= stale_before,
                    ),
                ),
            )
            .order_by(AppointmentPayment.next_attempt_at)
            .limit(limit)
        )
        return self._execute_query(query)

    def total_attempts(
        self, appointment_id: str, phase: str, *, exclude_id: Optional[str] = None
    ) -> int:
        """Attempts made across every record of one phase; numbers the idempotency keys."""
        query = self.db.query(func.coalesce(func.sum(AppointmentPayment.attempt_count), 0)).filter(
            AppointmentPayment.appointment_id == appointment_id,
            AppointmentPayment.phase == phase,
        )
        if exclude_id is not None:
            query = query.filter(AppointmentPayment.id != exclude_id)
        try:
            return int(query.scalar() or 0)
        except SQLAlchemyError as e:
            self.logger.error(f"Error summing attempts for {appointment_id}: {str(e)}")
            raise RepositoryException(f"Failed to sum attempts: {str(e)}")

    def reassign_appointment(self, source_appointment_id: str, target_appointment_id: str) -> int:
        records = self.find_by(appointment_id=source_appointment_id)
        for record in records:
            record.appointment_id = target_appointment_id
        if records:
            self.flush()
        return len(records)

    def list_for_company(
        self, company_id: str, *, status: Optional[str] = None, limit: int = 100
    ) -> List[AppointmentPayment]:
        query = self._build_query().filter(AppointmentPayment.company_id == company_id)
        if status:
            query = query.filter(AppointmentPayment.status == status)
        return self._execute_query(
            query.order_by(AppointmentPayment.created_at.desc()).limit(limit)
        )


class PaymentProfileRepository(BaseRepository[StudentPaymentProfile]):
    def __init__(self, db: Session):
        super().__init__(db, StudentPaymentProfile)

    def get_for_student(self, company_id: str, student_id: str) -> Optional[StudentPaymentProfile]:
        return self.find_one_by(company_id=company_id, student_id=student_id)

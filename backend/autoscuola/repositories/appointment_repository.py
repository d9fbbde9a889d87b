# backend/autoscuola/repositories/appointment_repository.py
"""
Appointment Repository for the autoscuola engine.

Owns every appointment query the engine needs: busy-interval scans for the
availability index, conflict checks at creation time, and the candidate
selections that feed the penalty, settlement and invoice sweeps.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from ..models.appointment import (
    REPOSITIONABLE_STATUSES,
    Appointment,
    AppointmentStatus,
    PaymentStatus,
)
from ..models.resource import OwnerType
from .base_repository import BaseRepository

_OWNER_COLUMNS = {
    OwnerType.STUDENT.value: Appointment.student_id,
    OwnerType.INSTRUCTOR.value: Appointment.instructor_id,
    OwnerType.VEHICLE.value: Appointment.vehicle_id,
}

OPEN_LEDGER_STATUSES = (
    PaymentStatus.PENDING_PENALTY.value,
    PaymentStatus.PARTIAL_PAID.value,
)

PENALTY_PHASE_STATUSES = (
    AppointmentStatus.SCHEDULED.value,
    AppointmentStatus.CONFIRMED.value,
    AppointmentStatus.CHECKED_IN.value,
    AppointmentStatus.NO_SHOW.value,
    AppointmentStatus.CANCELLED.value,
)


class AppointmentRepository(BaseRepository[Appointment]):
    def __init__(self, db: Session):
        super().__init__(db, Appointment)

    @staticmethod
    def owner_column(owner_type: str):
        return _OWNER_COLUMNS[OwnerType(owner_type).value]

    def get_for_company(
        self, company_id: str, appointment_id: str, *, for_update: bool = False
    ) -> Optional[Appointment]:
        query = self._build_query().filter(
            Appointment.id == appointment_id,
            Appointment.company_id == company_id,
        )
        if for_update:
            query = self._lock(query)
        return self._execute_first(query)

    def find_busy_for_owners(
        self,
        company_id: str,
        owner_type: str,
        owner_ids: Iterable[str],
        range_start: datetime,
        range_end: datetime,
        exclude_ids: Sequence[str] = (),
    ) -> List[Appointment]:
        """Non-cancelled appointments of the given owners overlapping the range."""
        ids = list(owner_ids)
        if not ids:
            return []
        column = self.owner_column(owner_type)
        query = self._build_query().filter(
            Appointment.company_id == company_id,
            column.in_(ids),
            Appointment.status != AppointmentStatus.CANCELLED.value,
            Appointment.starts_at < range_end,
            Appointment.ends_at > range_start,
        )
        if exclude_ids:
            query = query.filter(~Appointment.id.in_(list(exclude_ids)))
        return self._execute_query(query.order_by(Appointment.starts_at))

    def find_conflicts(
        self,
        company_id: str,
        *,
        student_id: str,
        instructor_id: str,
        vehicle_id: str,
        starts_at: datetime,
        ends_at: datetime,
        exclude_id: Optional[str] = None,
    ) -> List[Appointment]:
        """Appointments sharing any of the three resources and overlapping [start, end)."""
        query = self._build_query().filter(
            Appointment.company_id == company_id,
            Appointment.status != AppointmentStatus.CANCELLED.value,
            Appointment.starts_at < ends_at,
            Appointment.ends_at > starts_at,
            or_(
                Appointment.student_id == student_id,
                Appointment.instructor_id == instructor_id,
                Appointment.vehicle_id == vehicle_id,
            ),
        )
        if exclude_id:
            query = query.filter(Appointment.id != exclude_id)
        return self._execute_query(query)

    def find_open_proposals_for_student(
        self, company_id: str, student_id: str, now: datetime
    ) -> List[Appointment]:
        query = self._build_query().filter(
            Appointment.company_id == company_id,
            Appointment.student_id == student_id,
            Appointment.status == AppointmentStatus.PROPOSAL.value,
            Appointment.starts_at > now,
            or_(
                Appointment.proposal_expires_at.is_(None),
                Appointment.proposal_expires_at > now,
            ),
        )
        return self._execute_query(query.order_by(Appointment.starts_at))

    def find_insoluto_for_student(self, company_id: str, student_id: str) -> List[Appointment]:
        query = self._build_query().filter(
            Appointment.company_id == company_id,
            Appointment.student_id == student_id,
            Appointment.payment_status == PaymentStatus.INSOLUTO.value,
        )
        return self._execute_query(query)

    def find_future_repositionable_for_owner(
        self, company_id: str, owner_type: str, owner_id: str, now: datetime
    ) -> List[Appointment]:
        column = self.owner_column(owner_type)
        query = self._build_query().filter(
            Appointment.company_id == company_id,
            column == owner_id,
            Appointment.status.in_(list(REPOSITIONABLE_STATUSES)),
            Appointment.starts_at > now,
        )
        return self._execute_query(query.order_by(Appointment.starts_at))

    # Sweep selections

    def find_penalty_candidates(self, now: datetime, limit: int) -> List[Appointment]:
        """Accepted appointments past their penalty cutoff with an open ledger."""
        query = self._build_query().filter(
            Appointment.payment_required.is_(True),
            Appointment.payment_status_locked.is_(False),
            Appointment.payment_status.in_(OPEN_LEDGER_STATUSES),
            Appointment.penalty_cutoff_at.isnot(None),
            Appointment.penalty_cutoff_at <= now,
            Appointment.status.in_(list(PENALTY_PHASE_STATUSES)),
        )
        return self._execute_query(query.order_by(Appointment.penalty_cutoff_at).limit(limit))

    def find_settlement_candidates(self, now: datetime, limit: int) -> List[Appointment]:
        """
        Finalizable appointments whose ledger is still open.

        Insoluto ledgers are included: a settlement phase gets its own attempt
        budget even when an earlier penalty record was abandoned.
        """
        query = self._build_query().filter(
            Appointment.payment_required.is_(True),
            Appointment.payment_status.in_(
                [*OPEN_LEDGER_STATUSES, PaymentStatus.INSOLUTO.value]
            ),
            Appointment.status != AppointmentStatus.PROPOSAL.value,
            or_(
                Appointment.status.in_(
                    [AppointmentStatus.CANCELLED.value, AppointmentStatus.NO_SHOW.value]
                ),
                Appointment.ends_at <= now,
            ),
        )
        return self._execute_query(query.order_by(Appointment.ends_at).limit(limit))

    def find_invoice_candidates(self, now: datetime, limit: int) -> List[Appointment]:
        query = self._build_query().filter(
            Appointment.payment_required.is_(True),
            Appointment.invoice_id.is_(None),
            or_(
                Appointment.invoice_status.is_(None),
                Appointment.invoice_status.in_(["pending_fic", "failed"]),
            ),
            Appointment.payment_status.in_(
                [PaymentStatus.PAID.value, PaymentStatus.WAIVED.value]
            ),
            or_(
                Appointment.status.in_(
                    [AppointmentStatus.CANCELLED.value, AppointmentStatus.NO_SHOW.value]
                ),
                and_(
                    Appointment.ends_at <= now,
                    Appointment.status != AppointmentStatus.PROPOSAL.value,
                ),
            ),
        )
        return self._execute_query(query.order_by(Appointment.ends_at).limit(limit))

    def count_by_payment_status(self, company_id: str) -> Dict[str, int]:
        query = (
            self.db.query(Appointment.payment_status, func.count(Appointment.id))
            .filter(Appointment.company_id == company_id)
            .group_by(Appointment.payment_status)
        )
        return {status: count for status, count in self._execute_query(query)}

    def list_insoluto(self, company_id: str) -> List[Appointment]:
        query = self._build_query().filter(
            Appointment.company_id == company_id,
            Appointment.payment_status == PaymentStatus.INSOLUTO.value,
        )
        return self._execute_query(query.order_by(Appointment.starts_at))

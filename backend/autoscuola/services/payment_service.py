# backend/autoscuola/services/payment_service.py
"""
Payment Settlement State Machine for the autoscuola engine.

Drives each appointment ledger through off-session gateway charges:

- The penalty sweep pre-collects the penalty once the cutoff has passed
- The settlement sweep charges the remaining balance once the lesson is final
- The retry sweep re-attempts failed charges on a fixed backoff and picks up
  charges left in ``processing`` by a crashed worker, replaying the original
  request so the provider answers with what it already captured

An insoluto balance is recovered through a payment intent the student
confirms in the app; it is credited only once the provider reports it as
succeeded.

A record is attempted at most ``MAX_PAYMENT_ATTEMPTS`` times. Each attempt
carries an idempotency key derived from (appointment, phase, attempt number)
so a repeated network call can never produce a second charge.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, NamedTuple, Optional, TypedDict

from sqlalchemy.orm import Session

from ..core.clock import Clock
from ..core.config import settings
from ..core.constants import (
    MAX_PAYMENT_ATTEMPTS,
    PAYMENT_IDEMPOTENCY_PREFIX,
    PAYMENT_RETRY_DELAYS_MINUTES,
    PAYMENT_RETRY_SWEEP_LIMIT,
    STALE_PROCESSING_MINUTES,
)
from ..core.exceptions import (
    BusinessRuleException,
    NotFoundException,
    PaymentMethodRequiredException,
)
from ..events.appointment_events import PaymentInsoluto
from ..integrations.payment_gateway import (
    ChargeResult,
    GatewayDeclinedError,
    GatewayError,
    PaymentGateway,
    PaymentIntentState,
    StripePaymentGateway,
)
from ..models.appointment import Appointment, AppointmentStatus, PaymentStatus
from ..models.appointment_payment import AppointmentPayment, PaymentPhase, PaymentRecordStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .notification_service import NotificationService
from .payment_ledger import (
    apply_insoluto,
    apply_waiver,
    cancelled_before_cutoff,
    final_amount,
    is_finalizable,
    outstanding_amount,
    penalty_due,
    recompute_payment_status,
    record_payment,
    unlock_and_recompute,
)


class PaymentSweepResult(TypedDict):
    processed: int
    succeeded: int
    failed: int
    abandoned: int
    waived: int
    settled: int
    skipped: int
    errors: int


OPEN_MANUAL_STATUSES = frozenset(
    {PaymentRecordStatus.PENDING.value, PaymentRecordStatus.PROCESSING.value}
)


class ManualRecovery(NamedTuple):
    """A manual recovery record plus the secret the student's app pays it with."""

    payment: AppointmentPayment
    client_secret: Optional[str]


def build_idempotency_key(appointment_id: str, phase: str, attempt_number: int) -> str:
    return f"{PAYMENT_IDEMPOTENCY_PREFIX}:{appointment_id}:{phase}:{attempt_number}"


def retry_delay_for(attempt_number: int) -> timedelta:
    index = min(max(attempt_number, 1), len(PAYMENT_RETRY_DELAYS_MINUTES)) - 1
    return timedelta(minutes=PAYMENT_RETRY_DELAYS_MINUTES[index])


def _intent_has_failed(intent: PaymentIntentState) -> bool:
    """Cancelled, or declined and waiting for another payment method."""
    if intent.status == "canceled":
        return True
    return intent.status == "requires_payment_method" and bool(
        intent.failure_code or intent.failure_message
    )


def _empty_result() -> PaymentSweepResult:
    return {
        "processed": 0,
        "succeeded": 0,
        "failed": 0,
        "abandoned": 0,
        "waived": 0,
        "settled": 0,
        "skipped": 0,
        "errors": 0,
    }


class PaymentService(BaseService):
    """Ledger-driven charging with capped, idempotent retries."""

    def __init__(
        self,
        db: Session,
        gateway: Optional[PaymentGateway] = None,
        notifications: Optional[NotificationService] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(db, clock)
        self._gateway = gateway
        self.notifications = notifications or NotificationService()
        self.appointment_repository = RepositoryFactory.create_appointment_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.payment_profile_repository = RepositoryFactory.create_payment_profile_repository(db)
        self.settings_repository = RepositoryFactory.create_company_settings_repository(db)

    @property
    def gateway(self) -> PaymentGateway:
        if self._gateway is None:
            self._gateway = StripePaymentGateway(
                api_key=settings.stripe_secret_key,
                timeout=settings.payment_gateway_timeout_seconds,
            )
        return self._gateway

    # ------------------------------------------------------------------
    # Attempt lifecycle
    # ------------------------------------------------------------------

    def queue_phase_payment(
        self, appointment: Appointment, phase: PaymentPhase, amount_cents: int
    ) -> AppointmentPayment:
        """
        Reuse the phase's record for this exact amount, or create a pending one.

        Runs inside the caller's transaction.
        """
        phase = PaymentPhase(phase)
        existing = self.payment_repository.find_reusable(appointment.id, phase.value, amount_cents)
        if existing is not None:
            return existing
        payment = self.payment_repository.create(
            appointment_id=appointment.id,
            company_id=appointment.company_id,
            student_id=appointment.student_id,
            phase=phase.value,
            amount_cents=amount_cents,
            currency=appointment.currency,
            status=PaymentRecordStatus.PENDING.value,
            attempt_count=0,
        )
        self.logger.info(
            f"Queued {phase.value} charge {payment.id} of {amount_cents} for appointment {appointment.id}"
        )
        return payment

    def is_attemptable(self, payment: AppointmentPayment, now: datetime) -> bool:
        if payment.phase == PaymentPhase.MANUAL_RECOVERY.value:
            return False
        if payment.status == PaymentRecordStatus.PENDING.value:
            return True
        if payment.status == PaymentRecordStatus.FAILED.value:
            return payment.next_attempt_at is None or payment.next_attempt_at <= now
        if payment.status == PaymentRecordStatus.PROCESSING.value:
            return self._is_stale(payment, now)
        return False

    @staticmethod
    def _is_stale(payment: AppointmentPayment, now: datetime) -> bool:
        return payment.last_attempt_at is None or payment.last_attempt_at <= now - timedelta(
            minutes=STALE_PROCESSING_MINUTES
        )

    @staticmethod
    def _due_for_phase(appointment: Appointment, phase: str) -> int:
        if phase == PaymentPhase.PENALTY.value:
            return penalty_due(appointment)
        return outstanding_amount(appointment)

    def _next_idempotency_key(self, payment: AppointmentPayment) -> str:
        """
        Key for the attempt just counted on ``payment``.

        Attempts are numbered across every record of the phase, so a later
        record for the same phase never replays an earlier capture.
        """
        earlier = self.payment_repository.total_attempts(
            payment.appointment_id, payment.phase, exclude_id=payment.id
        )
        return build_idempotency_key(
            payment.appointment_id, payment.phase, earlier + payment.attempt_count
        )

    @BaseService.measure_operation("attempt_payment")
    def attempt_payment(self, payment_id: str) -> str:
        """
        Run one gateway attempt for a charge record.

        Returns the record status after the attempt. Gateway failures are
        recorded on the record and never raised.
        """
        now = self.now()
        with self.transaction():
            payment = self.payment_repository.get_by_id(payment_id, for_update=True)
            if payment is None:
                raise NotFoundException(f"Payment {payment_id} not found")
            if payment.is_terminal or payment.phase == PaymentPhase.MANUAL_RECOVERY.value:
                return payment.status
            if payment.status == PaymentRecordStatus.PROCESSING.value and not self._is_stale(
                payment, now
            ):
                return payment.status

            appointment = self.appointment_repository.get_by_id(
                payment.appointment_id, for_update=True
            )
            # A crashed attempt may already have been captured: it is replayed
            # under the same key with the same amount, whatever is due now
            resumed = payment.status == PaymentRecordStatus.PROCESSING.value
            if not resumed:
                due = self._due_for_phase(appointment, payment.phase) if appointment else 0
                if due <= 0:
                    payment.status = PaymentRecordStatus.ABANDONED.value
                    payment.failure_code = "superseded"
                    payment.failure_message = "Nothing left to collect for this phase"
                    payment.next_attempt_at = None
                    self.logger.info(f"Charge {payment.id} superseded; nothing due")
                    return payment.status

                if payment.amount_cents > due:
                    self.logger.info(
                        f"Capping charge {payment.id} from {payment.amount_cents} to {due}"
                    )
                    payment.amount_cents = due
                payment.attempt_count = (payment.attempt_count or 0) + 1
                payment.idempotency_key = self._next_idempotency_key(payment)
            else:
                self.logger.warning(
                    f"Resuming charge {payment.id} left in processing under key "
                    f"{payment.idempotency_key}"
                )
            payment.status = PaymentRecordStatus.PROCESSING.value
            payment.last_attempt_at = now
            payment.next_attempt_at = None
            if payment.idempotency_key is None:
                payment.idempotency_key = self._next_idempotency_key(payment)
            profile = self.payment_profile_repository.get_for_student(
                payment.company_id, payment.student_id
            )
            config = self.settings_repository.get_config(payment.company_id)

        result: Optional[ChargeResult] = None
        error: Optional[GatewayError] = None
        if profile is None or not profile.is_chargeable:
            error = GatewayDeclinedError(
                "Student has no usable payment method", code="missing_payment_method"
            )
        else:
            try:
                result = self.gateway.charge_off_session(
                    customer_id=profile.gateway_customer_id,
                    payment_method_id=profile.default_payment_method_id,
                    amount_cents=payment.amount_cents,
                    currency=payment.currency,
                    idempotency_key=payment.idempotency_key,
                    destination_account=config.gateway_destination_account,
                    metadata={
                        "company_id": payment.company_id,
                        "appointment_id": payment.appointment_id,
                        "phase": payment.phase,
                    },
                )
            except GatewayError as exc:
                error = exc

        if result is not None:
            status = self._record_success(payment.id, result)
        else:
            status = self._record_failure(payment.id, error)
        prometheus_metrics.record_payment_attempt(payment.phase, status)
        return status

    def _record_success(self, payment_id: str, result: ChargeResult) -> str:
        now = self.now()
        with self.transaction():
            payment = self.payment_repository.get_by_id(payment_id, for_update=True)
            appointment = self.appointment_repository.get_by_id(
                payment.appointment_id, for_update=True
            )
            if result.amount_cents is not None and result.amount_cents != payment.amount_cents:
                self.logger.warning(
                    f"Gateway captured {result.amount_cents} for charge {payment.id}, "
                    f"which asked for {payment.amount_cents}"
                )
                payment.amount_cents = result.amount_cents
            payment.status = PaymentRecordStatus.SUCCEEDED.value
            payment.gateway_payment_intent_id = result.payment_intent_id
            payment.gateway_charge_id = result.charge_id
            payment.paid_at = now
            payment.failure_code = None
            payment.failure_message = None
            payment.next_attempt_at = None
            ledger_status = record_payment(appointment, payment.amount_cents)
        self.logger.info(
            f"Charge {payment.id} succeeded ({payment.amount_cents} {payment.currency}); "
            f"appointment {appointment.id} is {ledger_status}"
        )
        return payment.status

    def _record_failure(self, payment_id: str, error: GatewayError) -> str:
        now = self.now()
        insoluto_event: Optional[PaymentInsoluto] = None
        with self.transaction():
            payment = self.payment_repository.get_by_id(payment_id, for_update=True)
            appointment = self.appointment_repository.get_by_id(
                payment.appointment_id, for_update=True
            )
            payment.failure_code = error.code
            payment.failure_message = error.message
            if payment.attempt_count < MAX_PAYMENT_ATTEMPTS:
                payment.status = PaymentRecordStatus.FAILED.value
                payment.next_attempt_at = now + retry_delay_for(payment.attempt_count)
                self.logger.warning(
                    f"Charge {payment.id} attempt {payment.attempt_count} failed ({error.code}); "
                    f"retrying at {payment.next_attempt_at.isoformat()}"
                )
            else:
                payment.status = PaymentRecordStatus.ABANDONED.value
                payment.next_attempt_at = None
                if appointment is not None:
                    apply_insoluto(appointment)
                    insoluto_event = PaymentInsoluto(
                        company_id=appointment.company_id,
                        appointment_id=appointment.id,
                        student_id=appointment.student_id,
                        amount_cents=payment.amount_cents,
                        failure_code=error.code,
                    )
                self.logger.error(
                    f"Charge {payment.id} abandoned after {payment.attempt_count} attempts "
                    f"({error.code}); appointment {payment.appointment_id} is insoluto"
                )
        if insoluto_event is not None:
            self.notifications.publish(insoluto_event)
        return payment.status

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    def _uncovered(self, appointment: Appointment, phase: PaymentPhase, due: int) -> int:
        """Part of ``due`` not already claimed by an open record of another phase."""
        covered = sum(
            record.amount_cents
            for record in self.payment_repository.find_open_for_appointment(appointment.id)
            if record.phase != phase.value
        )
        return max(due - covered, 0)

    def _charge(
        self, appointment: Appointment, phase: PaymentPhase, amount_cents: int, now: datetime
    ) -> Optional[str]:
        """Queue (or reuse) the phase record inside the open transaction; return its id if due now."""
        payment = self.queue_phase_payment(appointment, phase, amount_cents)
        if not self.is_attemptable(payment, now):
            return None
        return payment.id

    def _sweep(self, name: str, appointment_ids: List[str], handler) -> PaymentSweepResult:
        result = _empty_result()
        for appointment_id in appointment_ids:
            result["processed"] += 1
            try:
                outcome = handler(appointment_id)
            except Exception as exc:
                self.logger.error(
                    f"{name} sweep failed for appointment {appointment_id}: {exc}", exc_info=True
                )
                self.db.rollback()
                result["errors"] += 1
                continue
            key = outcome if outcome in result else "skipped"
            result[key] += 1  # type: ignore[literal-required]
        prometheus_metrics.record_sweep(name, result["processed"])
        if appointment_ids:
            self.logger.info(f"{name} sweep finished: {result}")
        return result

    @BaseService.measure_operation("process_penalty_charges")
    def process_penalty_charges(
        self, now: Optional[datetime] = None, limit: Optional[int] = None
    ) -> PaymentSweepResult:
        now = now or self.now()
        candidates = self.appointment_repository.find_penalty_candidates(
            now, limit or PAYMENT_RETRY_SWEEP_LIMIT
        )
        return self._sweep(
            "penalty",
            [item.id for item in candidates],
            lambda appointment_id: self._process_penalty(appointment_id, now),
        )

    def _process_penalty(self, appointment_id: str, now: datetime) -> str:
        with self.transaction():
            appointment = self.appointment_repository.get_by_id(appointment_id, for_update=True)
            if appointment is None or appointment.payment_status_locked:
                return "skipped"
            due = penalty_due(appointment)
            if due == 0:
                if cancelled_before_cutoff(appointment):
                    apply_waiver(appointment)
                    self.logger.info(f"Waived appointment {appointment.id}: cancelled before cutoff")
                    return "waived"
                recompute_payment_status(appointment)
                return "settled"
            amount = self._uncovered(appointment, PaymentPhase.PENALTY, due)
            if amount == 0:
                return "skipped"
            payment_id = self._charge(appointment, PaymentPhase.PENALTY, amount, now)
        if payment_id is None:
            return "skipped"
        return self.attempt_payment(payment_id)

    @BaseService.measure_operation("process_lesson_settlement")
    def process_lesson_settlement(
        self, now: Optional[datetime] = None, limit: Optional[int] = None
    ) -> PaymentSweepResult:
        now = now or self.now()
        candidates = self.appointment_repository.find_settlement_candidates(
            now, limit or PAYMENT_RETRY_SWEEP_LIMIT
        )
        return self._sweep(
            "settlement",
            [item.id for item in candidates],
            lambda appointment_id: self._process_settlement(appointment_id, now),
        )

    def _process_settlement(self, appointment_id: str, now: datetime) -> str:
        with self.transaction():
            appointment = self.appointment_repository.get_by_id(appointment_id, for_update=True)
            if (
                appointment is None
                or appointment.status == AppointmentStatus.PROPOSAL.value
                or not is_finalizable(appointment, now)
            ):
                return "skipped"
            if final_amount(appointment) == 0:
                apply_waiver(appointment)
                return "waived"
            outstanding = outstanding_amount(appointment)
            if outstanding == 0:
                if appointment.payment_status_locked:
                    unlock_and_recompute(appointment)
                else:
                    recompute_payment_status(appointment)
                return "settled"
            amount = self._uncovered(appointment, PaymentPhase.SETTLEMENT, outstanding)
            if amount == 0:
                return "skipped"
            payment_id = self._charge(appointment, PaymentPhase.SETTLEMENT, amount, now)
        if payment_id is None:
            return "skipped"
        return self.attempt_payment(payment_id)

    @BaseService.measure_operation("process_payment_retries")
    def process_payment_retries(
        self, now: Optional[datetime] = None, limit: Optional[int] = None
    ) -> PaymentSweepResult:
        now = now or self.now()
        stale_before = now - timedelta(minutes=STALE_PROCESSING_MINUTES)
        limit = min(limit or PAYMENT_RETRY_SWEEP_LIMIT, PAYMENT_RETRY_SWEEP_LIMIT)
        due = self.payment_repository.find_retry_due(now, stale_before, limit)

        result = _empty_result()
        for payment_id in [item.id for item in due]:
            result["processed"] += 1
            try:
                status = self.attempt_payment(payment_id)
            except Exception as exc:
                self.logger.error(f"Retry of charge {payment_id} failed: {exc}", exc_info=True)
                self.db.rollback()
                result["errors"] += 1
                continue
            key = status if status in result else "skipped"
            result[key] += 1  # type: ignore[literal-required]
        prometheus_metrics.record_sweep("payment_retry", result["processed"])
        if due:
            self.logger.info(f"Payment retry sweep finished: {result}")
        return result

    # ------------------------------------------------------------------
    # Manual recovery
    # ------------------------------------------------------------------

    @BaseService.measure_operation("create_manual_recovery")
    def create_manual_recovery(self, company_id: str, appointment_id: str) -> ManualRecovery:
        """
        Open a payment intent for an insoluto balance, to be paid by the student.

        Outstanding automatic records are abandoned so they cannot charge
        the same balance again. Calling this again for the same balance
        returns the intent already open instead of creating a second one.
        """
        now = self.now()
        with self.transaction():
            appointment = self.appointment_repository.get_for_company(
                company_id, appointment_id, for_update=True
            )
            if appointment is None:
                raise NotFoundException(
                    f"Appointment {appointment_id} not found", code="APPOINTMENT_NOT_FOUND"
                )
            if appointment.payment_status != PaymentStatus.INSOLUTO.value:
                raise BusinessRuleException(
                    "Manual recovery is only available for insoluto appointments",
                    code="NOT_INSOLUTO",
                    details={"payment_status": appointment.payment_status},
                )
            outstanding = outstanding_amount(appointment)
            if outstanding == 0:
                raise BusinessRuleException(
                    "Nothing is outstanding for this appointment", code="NOTHING_OUTSTANDING"
                )
            profile = self.payment_profile_repository.get_for_student(
                company_id, appointment.student_id
            )
            if profile is None:
                raise PaymentMethodRequiredException(appointment.student_id)
            config = self.settings_repository.get_config(company_id)

            for record in self.payment_repository.find_open_for_appointment(appointment.id):
                if record.phase == PaymentPhase.MANUAL_RECOVERY.value:
                    continue
                record.status = PaymentRecordStatus.ABANDONED.value
                record.failure_code = "manual_recovery"
                record.failure_message = "Superseded by manual recovery"
                record.next_attempt_at = None

            payment = self.payment_repository.find_reusable(
                appointment.id, PaymentPhase.MANUAL_RECOVERY.value, outstanding
            )
            if payment is None or payment.status not in OPEN_MANUAL_STATUSES:
                # One key per record; a refused request is never replayed for a new one
                sequence = (
                    self.payment_repository.total_attempts(
                        appointment.id, PaymentPhase.MANUAL_RECOVERY.value
                    )
                    + 1
                )
                payment = self.payment_repository.create(
                    appointment_id=appointment.id,
                    company_id=appointment.company_id,
                    student_id=appointment.student_id,
                    phase=PaymentPhase.MANUAL_RECOVERY.value,
                    amount_cents=outstanding,
                    currency=appointment.currency,
                    status=PaymentRecordStatus.PENDING.value,
                    attempt_count=1,
                    last_attempt_at=now,
                    idempotency_key=build_idempotency_key(
                        appointment.id, PaymentPhase.MANUAL_RECOVERY.value, sequence
                    ),
                )
            payment_id = payment.id
            request = {
                "customer_id": profile.gateway_customer_id,
                "amount_cents": payment.amount_cents,
                "currency": payment.currency,
                "idempotency_key": payment.idempotency_key,
                "destination_account": config.gateway_destination_account,
                "metadata": {
                    "company_id": appointment.company_id,
                    "appointment_id": appointment.id,
                    "payment_id": payment.id,
                    "phase": PaymentPhase.MANUAL_RECOVERY.value,
                },
            }

        try:
            intent = self.gateway.create_payment_intent(**request)
        except GatewayError as exc:
            with self.transaction():
                payment = self.payment_repository.get_by_id(payment_id, for_update=True)
                payment.status = PaymentRecordStatus.FAILED.value
                payment.failure_code = exc.code
                payment.failure_message = exc.message
                payment.next_attempt_at = None
            prometheus_metrics.record_payment_attempt(payment.phase, payment.status)
            self.logger.error(f"Manual recovery {payment_id} could not be opened: {exc.code}")
            raise BusinessRuleException(
                "The payment provider did not accept the recovery payment",
                code="MANUAL_RECOVERY_FAILED",
                details={"failure_code": exc.code},
            )

        with self.transaction():
            payment = self.payment_repository.get_by_id(payment_id, for_update=True)
            if payment.status == PaymentRecordStatus.PENDING.value:
                payment.status = PaymentRecordStatus.PROCESSING.value
                payment.gateway_payment_intent_id = intent.payment_intent_id
        self.logger.info(
            f"Manual recovery {payment.id} opened for appointment {appointment_id} "
            f"({payment.amount_cents}), intent {intent.payment_intent_id}"
        )
        return ManualRecovery(payment=payment, client_secret=intent.client_secret)

    @BaseService.measure_operation("finalize_manual_recovery")
    def finalize_manual_recovery(self, company_id: str, payment_id: str) -> AppointmentPayment:
        """
        Settle a manual recovery from the provider's view of its intent.

        Only a succeeded intent is credited, for the amount the provider
        reports, and the insoluto lock is released. An intent still being
        paid leaves the record in ``processing``; a declined or cancelled
        one closes it as ``failed``.
        """
        with self.transaction():
            payment = self.payment_repository.get_by_id(payment_id)
            if payment is None or payment.company_id != company_id:
                raise NotFoundException(f"Payment {payment_id} not found", code="PAYMENT_NOT_FOUND")
            if payment.phase != PaymentPhase.MANUAL_RECOVERY.value:
                raise BusinessRuleException(
                    "Only manual recovery charges can be finalized by hand",
                    code="NOT_MANUAL_RECOVERY",
                )
            if payment.status == PaymentRecordStatus.SUCCEEDED.value:
                return payment
            if payment.status != PaymentRecordStatus.PROCESSING.value or not (
                payment.gateway_payment_intent_id
            ):
                raise BusinessRuleException(
                    f"Manual recovery is {payment.status}",
                    code="MANUAL_RECOVERY_CLOSED",
                    details={"status": payment.status},
                )
            intent_id = payment.gateway_payment_intent_id

        try:
            intent = self.gateway.retrieve_payment_intent(intent_id)
        except GatewayError as exc:
            self.logger.warning(f"Could not read intent {intent_id}: {exc.code}")
            raise BusinessRuleException(
                "The payment provider could not confirm the recovery payment",
                code="PAYMENT_PROVIDER_UNAVAILABLE",
                details={"failure_code": exc.code},
            )

        now = self.now()
        with self.transaction():
            payment = self.payment_repository.get_by_id(payment_id, for_update=True)
            if payment.status != PaymentRecordStatus.PROCESSING.value:
                return payment
            appointment = self.appointment_repository.get_by_id(
                payment.appointment_id, for_update=True
            )
            if intent.succeeded:
                payment.amount_cents = intent.amount_cents
                payment.status = PaymentRecordStatus.SUCCEEDED.value
                payment.gateway_charge_id = intent.charge_id
                payment.paid_at = now
                payment.failure_code = None
                payment.failure_message = None
                appointment.paid_amount_cents = (
                    appointment.paid_amount_cents or 0
                ) + intent.amount_cents
                unlock_and_recompute(appointment)
            elif not _intent_has_failed(intent):
                self.logger.info(f"Manual recovery {payment.id} still {intent.status}")
                return payment
            else:
                payment.status = PaymentRecordStatus.FAILED.value
                payment.failure_code = intent.failure_code or "manual_payment_failed"
                payment.failure_message = intent.failure_message or "The payment did not go through"
                payment.next_attempt_at = None

        prometheus_metrics.record_payment_attempt(payment.phase, payment.status)
        self.logger.info(
            f"Manual recovery {payment.id} is {payment.status} ({payment.amount_cents}); "
            f"appointment {appointment.id} is {appointment.payment_status}"
        )
        return payment

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_payment_summary(self, appointment: Appointment) -> Dict[str, Any]:
        records = self.payment_repository.list_for_appointment(appointment.id)
        return {
            "appointment_id": appointment.id,
            "payment_required": appointment.payment_required,
            "payment_status": appointment.payment_status,
            "payment_status_locked": appointment.payment_status_locked,
            "currency": appointment.currency,
            "price_amount_cents": appointment.price_amount_cents,
            "penalty_amount_cents": appointment.penalty_amount_cents,
            "penalty_cutoff_at": appointment.penalty_cutoff_at,
            "final_amount_cents": final_amount(appointment),
            "paid_amount_cents": appointment.paid_amount_cents,
            "outstanding_amount_cents": outstanding_amount(appointment),
            "invoice_id": appointment.invoice_id,
            "invoice_status": appointment.invoice_status,
            "records": [record.to_dict() for record in records],
        }

    def list_payments(
        self, company_id: str, status: Optional[str] = None, limit: int = 100
    ) -> List[AppointmentPayment]:
        return self.payment_repository.list_for_company(company_id, status=status, limit=limit)

    def payments_overview(self, company_id: str) -> Dict[str, Any]:
        counts = self.appointment_repository.count_by_payment_status(company_id)
        insoluto = self.appointment_repository.list_insoluto(company_id)
        return {
            "company_id": company_id,
            "counts": {status.value: counts.get(status.value, 0) for status in PaymentStatus},
            "insoluto_count": len(insoluto),
            "insoluto_outstanding_cents": sum(outstanding_amount(item) for item in insoluto),
            "insoluto_student_ids": sorted({item.student_id for item in insoluto}),
        }

# backend/autoscuola/services/payment_ledger.py
"""
Appointment ledger rules.

Every function here is pure over the appointment's ledger fields. The
payment status is recomputed after each ledger mutation; only the two locked
overrides (``waived`` and ``insoluto``) bypass the computation, and a lock is
cleared only by a payment that settles the balance or by manual recovery.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from ..core.constants import HOURLY_PRICE_THRESHOLD_MINUTES
from ..core.exceptions import PaymentMethodRequiredException
from ..models.appointment import Appointment, AppointmentStatus, PaymentStatus
from ..models.payment_profile import StudentPaymentProfile
from ..repositories.company_settings_repository import CompanyConfig

FINALIZED_STATUSES = frozenset(
    {AppointmentStatus.NO_SHOW.value, AppointmentStatus.CANCELLED.value}
)


def _round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def price_for_duration(minutes: int, config: CompanyConfig) -> int:
    """Lesson price in cents: the hourly rate from an hour up, else the half-hour rate."""
    if minutes >= HOURLY_PRICE_THRESHOLD_MINUTES:
        return config.lesson_price_60_cents
    return config.lesson_price_30_cents


def penalty_for_price(price_cents: int, percent: int) -> int:
    return _round_cents(Decimal(price_cents) * percent / 100)


def cancelled_before_cutoff(appointment: Appointment) -> bool:
    return (
        appointment.status == AppointmentStatus.CANCELLED.value
        and appointment.cancelled_at is not None
        and appointment.penalty_cutoff_at is not None
        and appointment.cancelled_at < appointment.penalty_cutoff_at
    )


def final_amount(appointment: Appointment) -> int:
    """What the student owes for this appointment as things stand."""
    if cancelled_before_cutoff(appointment):
        return 0
    if appointment.status in FINALIZED_STATUSES:
        return appointment.penalty_amount_cents or 0
    return appointment.price_amount_cents or 0


def outstanding_amount(appointment: Appointment) -> int:
    return max(final_amount(appointment) - (appointment.paid_amount_cents or 0), 0)


def penalty_due(appointment: Appointment) -> int:
    """Unpaid part of the penalty, which is collected once the cutoff passes."""
    penalty = min(appointment.penalty_amount_cents or 0, final_amount(appointment))
    return max(penalty - (appointment.paid_amount_cents or 0), 0)


def compute_payment_status(appointment: Appointment) -> str:
    if not appointment.payment_required:
        return PaymentStatus.NOT_REQUIRED.value
    if appointment.payment_status_locked:
        return appointment.payment_status
    final = final_amount(appointment)
    paid = appointment.paid_amount_cents or 0
    if final == 0:
        return PaymentStatus.WAIVED.value
    if paid >= final:
        return PaymentStatus.PAID.value
    if paid > 0:
        return PaymentStatus.PARTIAL_PAID.value
    return PaymentStatus.PENDING_PENALTY.value


def recompute_payment_status(appointment: Appointment) -> str:
    appointment.payment_status = compute_payment_status(appointment)
    return appointment.payment_status


def apply_waiver(appointment: Appointment) -> None:
    appointment.payment_status = PaymentStatus.WAIVED.value
    appointment.payment_status_locked = True


def apply_insoluto(appointment: Appointment) -> None:
    appointment.payment_status = PaymentStatus.INSOLUTO.value
    appointment.payment_status_locked = True


def unlock_and_recompute(appointment: Appointment) -> str:
    appointment.payment_status_locked = False
    return recompute_payment_status(appointment)


def record_payment(appointment: Appointment, amount_cents: int) -> str:
    """
    Add a succeeded charge to the ledger.

    A lock survives unless the charge settles the balance.
    """
    appointment.paid_amount_cents = (appointment.paid_amount_cents or 0) + amount_cents
    if appointment.payment_status_locked and outstanding_amount(appointment) == 0:
        return unlock_and_recompute(appointment)
    return recompute_payment_status(appointment)


def is_finalizable(appointment: Appointment, now: datetime) -> bool:
    return appointment.status in FINALIZED_STATUSES or appointment.ends_at <= now


@dataclass(frozen=True)
class PaymentSnapshot:
    payment_required: bool
    payment_status: str
    price_amount_cents: int = 0
    penalty_amount_cents: int = 0
    penalty_cutoff_at: Optional[datetime] = None
    currency: str = "EUR"

    def apply_to(self, appointment: Appointment) -> None:
        appointment.payment_required = self.payment_required
        appointment.payment_status = self.payment_status
        appointment.payment_status_locked = False
        appointment.price_amount_cents = self.price_amount_cents
        appointment.penalty_amount_cents = self.penalty_amount_cents
        appointment.penalty_cutoff_at = self.penalty_cutoff_at
        appointment.paid_amount_cents = 0
        appointment.currency = self.currency


def prepare_payment_snapshot(
    config: CompanyConfig,
    profile: Optional[StudentPaymentProfile],
    starts_at: datetime,
    duration_minutes: int,
    *,
    student_id: str,
) -> PaymentSnapshot:
    """Initial ledger for a new booking."""
    if not config.payments_enabled:
        return PaymentSnapshot(
            payment_required=False,
            payment_status=PaymentStatus.NOT_REQUIRED.value,
            currency=config.currency,
        )
    if profile is None or not profile.is_chargeable:
        raise PaymentMethodRequiredException(student_id)

    price = price_for_duration(duration_minutes, config)
    return PaymentSnapshot(
        payment_required=True,
        payment_status=PaymentStatus.PENDING_PENALTY.value,
        price_amount_cents=price,
        penalty_amount_cents=penalty_for_price(price, config.penalty_percent),
        penalty_cutoff_at=starts_at - timedelta(hours=config.penalty_cutoff_hours),
        currency=config.currency,
    )


def transfer_ledger(source: Appointment, replacement: Appointment) -> None:
    """
    Move the financial snapshot from a repositioned source to its replacement.

    The cutoff keeps the same distance from the start; the status is
    recomputed from the moved amounts and the source keeps nothing.
    """
    replacement.payment_required = source.payment_required
    replacement.price_amount_cents = source.price_amount_cents
    replacement.penalty_amount_cents = source.penalty_amount_cents
    replacement.paid_amount_cents = source.paid_amount_cents or 0
    replacement.currency = source.currency
    if source.penalty_cutoff_at is not None:
        lead = source.starts_at - source.penalty_cutoff_at
        replacement.penalty_cutoff_at = replacement.starts_at - lead
    else:
        replacement.penalty_cutoff_at = None
    replacement.payment_status_locked = False
    recompute_payment_status(replacement)

    source.paid_amount_cents = 0
    if source.payment_required:
        apply_waiver(source)

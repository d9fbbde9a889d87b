# backend/tests/unit/services/test_payment_ledger.py
"""
Unit tests for the appointment ledger rules.

The ledger functions are pure over appointment fields, so these tests build
unsaved ``Appointment`` instances and never touch the database.
"""

from datetime import datetime, timedelta, timezone

import pytest

from autoscuola.core.exceptions import PaymentMethodRequiredException
from autoscuola.models import Appointment, StudentPaymentProfile
from autoscuola.repositories.company_settings_repository import CompanyConfig
from autoscuola.services import payment_ledger as ledger

START = datetime(2026, 3, 4, 9, 0, tzinfo=timezone.utc)
CUTOFF = START - timedelta(hours=24)


def _lesson(**overrides) -> Appointment:
    values = dict(
        company_id="company-1",
        student_id="student-1",
        instructor_id="instructor-1",
        vehicle_id="vehicle-1",
        starts_at=START,
        ends_at=START + timedelta(minutes=30),
        status="scheduled",
        payment_required=True,
        payment_status="pending_penalty",
        payment_status_locked=False,
        price_amount_cents=2500,
        penalty_amount_cents=1250,
        penalty_cutoff_at=CUTOFF,
        paid_amount_cents=0,
        currency="EUR",
    )
    values.update(overrides)
    return Appointment(**values)


def _profile(payment_method_id="pm_card_visa", status="active") -> StudentPaymentProfile:
    return StudentPaymentProfile(
        company_id="company-1",
        student_id="student-1",
        gateway_customer_id="cus_1",
        default_payment_method_id=payment_method_id,
        status=status,
    )


class TestPricing:
    @pytest.mark.parametrize(
        "minutes,expected",
        [(30, 2500), (45, 2500), (59, 2500), (60, 5000), (90, 5000), (120, 5000)],
    )
    def test_price_for_duration(self, minutes, expected):
        config = CompanyConfig(
            company_id="company-1", lesson_price_30_cents=2500, lesson_price_60_cents=5000
        )
        assert ledger.price_for_duration(minutes, config) == expected

    def test_penalty_rounds_half_up(self):
        assert ledger.penalty_for_price(2500, 50) == 1250
        assert ledger.penalty_for_price(2501, 50) == 1251
        assert ledger.penalty_for_price(2500, 25) == 625


class TestFinalAmount:
    def test_cancelled_after_cutoff_owes_the_penalty(self):
        """Price 25.00, 50% preset, cancelled two hours after the cutoff: 12.50 is owed."""
        appointment = _lesson(status="cancelled", cancelled_at=CUTOFF + timedelta(hours=2))

        assert ledger.final_amount(appointment) == 1250
        assert ledger.outstanding_amount(appointment) == 1250
        assert ledger.compute_payment_status(appointment) == "pending_penalty"

    def test_cancelled_before_cutoff_owes_nothing(self):
        appointment = _lesson(status="cancelled", cancelled_at=CUTOFF - timedelta(minutes=1))

        assert ledger.cancelled_before_cutoff(appointment)
        assert ledger.final_amount(appointment) == 0
        assert ledger.compute_payment_status(appointment) == "waived"

    def test_no_show_owes_the_penalty(self):
        assert ledger.final_amount(_lesson(status="no_show")) == 1250

    @pytest.mark.parametrize("status", ["scheduled", "confirmed", "completed", "proposal"])
    def test_other_statuses_owe_the_full_price(self, status):
        assert ledger.final_amount(_lesson(status=status)) == 2500

    def test_penalty_due_never_exceeds_final_amount(self):
        appointment = _lesson(status="cancelled", cancelled_at=CUTOFF - timedelta(hours=1))
        assert ledger.penalty_due(appointment) == 0

        appointment = _lesson(paid_amount_cents=1000)
        assert ledger.penalty_due(appointment) == 250


class TestPaymentStatus:
    def test_not_required(self):
        appointment = _lesson(payment_required=False, payment_status="not_required")
        assert ledger.compute_payment_status(appointment) == "not_required"

    def test_partial_and_paid(self):
        assert ledger.compute_payment_status(_lesson(paid_amount_cents=1250)) == "partial_paid"
        assert ledger.compute_payment_status(_lesson(paid_amount_cents=2500)) == "paid"

    def test_locked_status_is_not_recomputed(self):
        appointment = _lesson(payment_status="insoluto", payment_status_locked=True)
        assert ledger.recompute_payment_status(appointment) == "insoluto"

    def test_partial_payment_keeps_insoluto_lock(self):
        appointment = _lesson()
        ledger.apply_insoluto(appointment)

        status = ledger.record_payment(appointment, 1000)

        assert status == "insoluto"
        assert appointment.payment_status_locked is True
        assert appointment.paid_amount_cents == 1000

    def test_settling_payment_releases_insoluto_lock(self):
        appointment = _lesson()
        ledger.apply_insoluto(appointment)

        status = ledger.record_payment(appointment, 2500)

        assert status == "paid"
        assert appointment.payment_status_locked is False


class TestPaymentSnapshot:
    def test_payments_disabled(self):
        config = CompanyConfig(company_id="company-1", payments_enabled=False)
        snapshot = ledger.prepare_payment_snapshot(
            config, None, START, 60, student_id="student-1"
        )
        assert snapshot.payment_required is False
        assert snapshot.payment_status == "not_required"

    @pytest.mark.parametrize(
        "profile",
        [None, _profile(payment_method_id=None), _profile(status="detached")],
    )
    def test_payments_enabled_requires_a_usable_method(self, profile):
        config = CompanyConfig(company_id="company-1", payments_enabled=True)
        with pytest.raises(PaymentMethodRequiredException):
            ledger.prepare_payment_snapshot(config, profile, START, 60, student_id="student-1")

    def test_payments_enabled_snapshot(self):
        config = CompanyConfig(
            company_id="company-1",
            payments_enabled=True,
            lesson_price_60_cents=5000,
            penalty_percent=50,
            penalty_cutoff_hours=24,
        )
        snapshot = ledger.prepare_payment_snapshot(
            config, _profile(), START, 60, student_id="student-1"
        )
        assert snapshot.payment_required is True
        assert snapshot.payment_status == "pending_penalty"
        assert snapshot.price_amount_cents == 5000
        assert snapshot.penalty_amount_cents == 2500
        assert snapshot.penalty_cutoff_at == START - timedelta(hours=24)

        appointment = _lesson(payment_required=False, paid_amount_cents=999)
        snapshot.apply_to(appointment)
        assert appointment.paid_amount_cents == 0
        assert appointment.price_amount_cents == 5000


class TestTransferLedger:
    def test_moves_amounts_and_keeps_cutoff_lead(self):
        source = _lesson(paid_amount_cents=1000, payment_status="partial_paid")
        new_start = START + timedelta(days=7)
        replacement = _lesson(
            starts_at=new_start,
            ends_at=new_start + timedelta(minutes=30),
            status="proposal",
            payment_required=False,
            price_amount_cents=0,
            penalty_amount_cents=0,
            penalty_cutoff_at=None,
        )

        ledger.transfer_ledger(source, replacement)

        assert replacement.payment_required is True
        assert replacement.price_amount_cents == 2500
        assert replacement.paid_amount_cents == 1000
        assert replacement.penalty_cutoff_at == new_start - timedelta(hours=24)
        assert replacement.payment_status == "partial_paid"
        assert source.paid_amount_cents == 0
        assert source.payment_status == "waived"
        assert source.payment_status_locked is True

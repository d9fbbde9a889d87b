# backend/tests/integration/services/test_payment_service.py
"""
Payment settlement scenarios.

The lesson under test is 30 minutes on Wednesday 2026-03-04 at 10:00 in Rome
(09:00 UTC), priced 25.00 with a 50% penalty and a 24 hour cutoff, so the
penalty window opens on Tuesday at 09:00 UTC.
"""

from datetime import datetime, timedelta, timezone

import pytest

from autoscuola.core.exceptions import (
    BusinessRuleException,
    PaymentMethodRequiredException,
    StudentPaymentBlockedException,
)
from autoscuola.integrations.payment_gateway import (
    GatewayDeclinedError,
    GatewayTransientError,
)
from autoscuola.models import Appointment, AppointmentPayment, StudentPaymentProfile
from autoscuola.services.payment_ledger import final_amount
from autoscuola.services.payment_service import build_idempotency_key, retry_delay_for
from tests.factories.school_builders import (
    COMPANY_ID,
    INSTRUCTOR_ID,
    STUDENT_ID,
    VEHICLE_ID,
    add_paid_lesson,
    rome,
)

LESSON_START = rome(2026, 3, 4, 10)
CUTOFF = datetime(2026, 3, 3, 9, 0, tzinfo=timezone.utc)


def _declined():
    return GatewayDeclinedError("Your card was declined.", code="card_declined")


@pytest.fixture
def lesson(db, paid_school) -> Appointment:
    return add_paid_lesson(db, LESSON_START, duration_minutes=30)


def _reload(db, model, pk):
    db.expire_all()
    return db.get(model, pk)


def _records(db, appointment_id):
    db.expire_all()
    return (
        db.query(AppointmentPayment)
        .filter_by(appointment_id=appointment_id)
        .order_by(AppointmentPayment.created_at)
        .all()
    )


def _assert_within_final(db, appointment_id):
    appointment = _reload(db, Appointment, appointment_id)
    succeeded = sum(
        record.amount_cents
        for record in _records(db, appointment_id)
        if record.status == "succeeded"
    )
    assert appointment.paid_amount_cents <= final_amount(appointment)
    assert succeeded <= final_amount(appointment)


class TestHelpers:
    def test_idempotency_key_format(self):
        assert build_idempotency_key("apt-1", "penalty", 2) == "autoscuola:apt-1:penalty:2"

    def test_retry_delays(self):
        assert retry_delay_for(1) == timedelta(hours=4)
        assert retry_delay_for(2) == timedelta(hours=8)
        assert retry_delay_for(5) == timedelta(hours=8)


class TestPenaltyCharges:
    def test_late_student_cancellation_charges_the_penalty(
        self, db, lesson, appointment_service, payment_service, gateway, clock
    ):
        clock.set(CUTOFF + timedelta(hours=2))
        appointment_service.update_status(COMPANY_ID, lesson.id, "cancelled", actor_role="student")

        summary = payment_service.process_penalty_charges()

        assert summary["processed"] == 1
        assert summary["succeeded"] == 1
        assert gateway.keys == [f"autoscuola:{lesson.id}:penalty:1"]
        assert gateway.charged_cents == 1250
        appointment = _reload(db, Appointment, lesson.id)
        assert appointment.paid_amount_cents == 1250
        assert appointment.payment_status == "paid"

    def test_nothing_is_charged_before_the_cutoff(self, lesson, payment_service, gateway):
        assert payment_service.process_penalty_charges()["processed"] == 0
        assert gateway.calls == []

    def test_scheduled_lesson_pre_collects_the_penalty(
        self, db, lesson, payment_service, gateway, clock
    ):
        clock.set(CUTOFF)

        payment_service.process_penalty_charges()

        appointment = _reload(db, Appointment, lesson.id)
        assert appointment.paid_amount_cents == 1250
        assert appointment.payment_status == "partial_paid"
        assert payment_service.process_penalty_charges()["processed"] == 1
        assert gateway.charged_cents == 1250

    def test_cancelled_before_cutoff_is_waived(self, db, paid_school, payment_service, clock):
        lesson = add_paid_lesson(
            db,
            LESSON_START,
            duration_minutes=30,
            status="cancelled",
            cancelled_at=CUTOFF - timedelta(hours=1),
        )
        clock.set(CUTOFF + timedelta(hours=1))

        summary = payment_service.process_penalty_charges()

        assert summary["waived"] == 1
        appointment = _reload(db, Appointment, lesson.id)
        assert appointment.payment_status == "waived"
        assert appointment.payment_status_locked is True

    def test_missing_payment_method_fails_without_calling_the_gateway(
        self, db, lesson, payment_service, gateway, clock
    ):
        profile = db.query(StudentPaymentProfile).filter_by(student_id=STUDENT_ID).one()
        profile.default_payment_method_id = None
        db.commit()
        clock.set(CUTOFF)

        summary = payment_service.process_penalty_charges()

        assert summary["failed"] == 1
        assert gateway.calls == []
        (record,) = _records(db, lesson.id)
        assert record.failure_code == "missing_payment_method"
        assert record.next_attempt_at == CUTOFF + timedelta(hours=4)


class TestRetries:
    def test_three_declines_make_the_lesson_insoluto(
        self, db, lesson, appointment_service, payment_service, gateway, dispatcher, clock
    ):
        gateway.script(_declined(), _declined(), _declined())
        clock.set(CUTOFF + timedelta(hours=1))

        assert payment_service.process_penalty_charges()["failed"] == 1
        assert payment_service.process_payment_retries()["processed"] == 0

        clock.advance(hours=4)
        assert payment_service.process_payment_retries()["failed"] == 1
        clock.advance(hours=8)
        assert payment_service.process_payment_retries()["abandoned"] == 1

        assert gateway.keys == [
            f"autoscuola:{lesson.id}:penalty:1",
            f"autoscuola:{lesson.id}:penalty:2",
            f"autoscuola:{lesson.id}:penalty:3",
        ]
        (record,) = _records(db, lesson.id)
        assert record.status == "abandoned"
        assert record.attempt_count == 3
        appointment = _reload(db, Appointment, lesson.id)
        assert appointment.payment_status == "insoluto"
        assert appointment.payment_status_locked is True
        assert "payment_insoluto" in dispatcher.kinds()

        # No more automatic attempts
        clock.advance(days=1)
        assert payment_service.process_payment_retries()["processed"] == 0
        assert payment_service.process_penalty_charges()["processed"] == 0

        with pytest.raises(StudentPaymentBlockedException):
            appointment_service.create_appointment(
                COMPANY_ID, STUDENT_ID, INSTRUCTOR_ID, VEHICLE_ID, rome(2026, 3, 6, 10), 60
            )

        recovery = payment_service.create_manual_recovery(COMPANY_ID, lesson.id).payment
        assert recovery.amount_cents == 2500
        assert recovery.phase == "manual_recovery"
        assert payment_service.process_payment_retries()["processed"] == 0

        gateway.complete_intent(recovery.gateway_payment_intent_id)
        payment_service.finalize_manual_recovery(COMPANY_ID, recovery.id)

        appointment = _reload(db, Appointment, lesson.id)
        assert appointment.payment_status == "paid"
        assert appointment.payment_status_locked is False
        booked = appointment_service.create_appointment(
            COMPANY_ID, STUDENT_ID, INSTRUCTOR_ID, VEHICLE_ID, rome(2026, 3, 6, 10), 60
        )
        assert booked.status == "scheduled"

    def test_transient_failure_then_success(self, db, lesson, payment_service, gateway, clock):
        gateway.script(GatewayTransientError("timeout", code="network_error"))
        clock.set(CUTOFF)

        payment_service.process_penalty_charges()
        clock.advance(hours=4)
        summary = payment_service.process_payment_retries()

        assert summary["succeeded"] == 1
        assert gateway.keys[-1] == f"autoscuola:{lesson.id}:penalty:2"
        assert _reload(db, Appointment, lesson.id).paid_amount_cents == 1250

    def test_stale_processing_is_retried_under_the_same_key(
        self, db, lesson, payment_service, gateway, clock
    ):
        """A worker died after the provider charged; the retry must not charge again."""
        clock.set(CUTOFF + timedelta(hours=1))
        key = build_idempotency_key(lesson.id, "penalty", 1)
        record = AppointmentPayment(
            appointment_id=lesson.id,
            company_id=COMPANY_ID,
            student_id=STUDENT_ID,
            phase="penalty",
            amount_cents=1250,
            status="processing",
            attempt_count=1,
            last_attempt_at=clock.now() - timedelta(minutes=20),
            idempotency_key=key,
        )
        db.add(record)
        db.commit()
        gateway.record_charge(key, 1250, "pi_before_crash", "ch_before_crash")

        summary = payment_service.process_payment_retries()

        assert summary["succeeded"] == 1
        assert gateway.keys == [key]
        assert gateway.charged_cents == 1250
        record = _reload(db, AppointmentPayment, record.id)
        assert record.attempt_count == 1
        assert record.gateway_payment_intent_id == "pi_before_crash"
        assert _reload(db, Appointment, lesson.id).paid_amount_cents == 1250

    def test_stale_retry_replays_the_original_amount(
        self, db, paid_school, payment_service, gateway, clock
    ):
        """Money landed from elsewhere after the crash; the replay books what was captured."""
        lesson = add_paid_lesson(
            db,
            LESSON_START,
            duration_minutes=30,
            paid_amount_cents=1000,
            payment_status="partial_paid",
        )
        clock.set(CUTOFF + timedelta(hours=1))
        key = build_idempotency_key(lesson.id, "penalty", 1)
        record = AppointmentPayment(
            appointment_id=lesson.id,
            company_id=COMPANY_ID,
            student_id=STUDENT_ID,
            phase="penalty",
            amount_cents=1250,
            status="processing",
            attempt_count=1,
            last_attempt_at=clock.now() - timedelta(minutes=20),
            idempotency_key=key,
        )
        db.add(record)
        db.commit()
        gateway.record_charge(key, 1250, "pi_before_crash", "ch_before_crash")

        assert payment_service.process_payment_retries()["succeeded"] == 1

        assert [call["amount_cents"] for call in gateway.calls] == [1250]
        assert _reload(db, AppointmentPayment, record.id).amount_cents == 1250
        assert _reload(db, Appointment, lesson.id).paid_amount_cents == 2250

        clock.set(LESSON_START + timedelta(hours=1))
        payment_service.process_lesson_settlement()

        assert gateway.keys[-1] == f"autoscuola:{lesson.id}:settlement:1"
        assert gateway.calls[-1]["amount_cents"] == 250
        appointment = _reload(db, Appointment, lesson.id)
        assert appointment.paid_amount_cents == 2500
        assert appointment.payment_status == "paid"
        _assert_within_final(db, lesson.id)

    def test_recent_processing_is_left_alone(self, db, lesson, payment_service, clock):
        clock.set(CUTOFF + timedelta(hours=1))
        db.add(
            AppointmentPayment(
                appointment_id=lesson.id,
                company_id=COMPANY_ID,
                student_id=STUDENT_ID,
                phase="penalty",
                amount_cents=1250,
                status="processing",
                attempt_count=1,
                last_attempt_at=clock.now() - timedelta(minutes=5),
            )
        )
        db.commit()

        assert payment_service.process_payment_retries()["processed"] == 0

    def test_record_with_nothing_due_is_superseded(
        self, db, paid_school, payment_service, gateway, clock
    ):
        lesson = add_paid_lesson(
            db,
            LESSON_START,
            duration_minutes=30,
            paid_amount_cents=1250,
            payment_status="partial_paid",
        )
        record = AppointmentPayment(
            appointment_id=lesson.id,
            company_id=COMPANY_ID,
            student_id=STUDENT_ID,
            phase="penalty",
            amount_cents=1250,
            status="pending",
            attempt_count=0,
        )
        db.add(record)
        db.commit()

        assert payment_service.attempt_payment(record.id) == "abandoned"
        assert _reload(db, AppointmentPayment, record.id).failure_code == "superseded"
        assert gateway.calls == []


class TestLedgerNeverExceedsFinal:
    def test_penalty_retry_after_settlement_paid_is_superseded(
        self, db, lesson, payment_service, gateway, clock
    ):
        gateway.script(GatewayTransientError("timeout", code="network_error"))
        clock.set(CUTOFF)
        assert payment_service.process_penalty_charges()["failed"] == 1

        # No sweep ran until the lesson was over
        clock.set(LESSON_START + timedelta(hours=1))
        assert payment_service.process_lesson_settlement()["succeeded"] == 1
        assert _reload(db, Appointment, lesson.id).paid_amount_cents == 1250

        assert payment_service.process_payment_retries()["abandoned"] == 1
        _assert_within_final(db, lesson.id)

        assert payment_service.process_lesson_settlement()["succeeded"] == 1

        assert gateway.keys == [
            f"autoscuola:{lesson.id}:penalty:1",
            f"autoscuola:{lesson.id}:settlement:1",
            f"autoscuola:{lesson.id}:settlement:2",
        ]
        assert gateway.charged_cents == 2500
        appointment = _reload(db, Appointment, lesson.id)
        assert appointment.paid_amount_cents == 2500
        assert appointment.payment_status == "paid"
        _assert_within_final(db, lesson.id)

        calls = len(gateway.calls)
        clock.advance(days=1)
        payment_service.process_penalty_charges()
        payment_service.process_payment_retries()
        payment_service.process_lesson_settlement()
        assert len(gateway.calls) == calls

    def test_settlement_waits_for_an_open_penalty_charge(
        self, db, lesson, payment_service, gateway, clock
    ):
        clock.set(LESSON_START + timedelta(hours=1))
        db.add(
            AppointmentPayment(
                appointment_id=lesson.id,
                company_id=COMPANY_ID,
                student_id=STUDENT_ID,
                phase="penalty",
                amount_cents=1250,
                status="processing",
                attempt_count=1,
                last_attempt_at=clock.now() - timedelta(minutes=1),
                idempotency_key=build_idempotency_key(lesson.id, "penalty", 1),
            )
        )
        db.commit()

        payment_service.process_lesson_settlement()

        assert gateway.calls[-1]["amount_cents"] == 1250
        assert gateway.keys == [f"autoscuola:{lesson.id}:settlement:1"]

        # The penalty worker comes back after the settlement charge
        clock.advance(minutes=30)
        gateway.record_charge(
            build_idempotency_key(lesson.id, "penalty", 1), 1250, "pi_late", "ch_late"
        )
        assert payment_service.process_payment_retries()["succeeded"] == 1

        appointment = _reload(db, Appointment, lesson.id)
        assert appointment.paid_amount_cents == 2500
        assert appointment.payment_status == "paid"
        _assert_within_final(db, lesson.id)
        assert payment_service.process_lesson_settlement()["processed"] == 0
        assert gateway.charged_cents == 2500


class TestSettlement:
    def test_completed_lesson_settles_the_balance(
        self, db, paid_school, payment_service, gateway, clock
    ):
        lesson = add_paid_lesson(
            db,
            LESSON_START,
            duration_minutes=30,
            status="completed",
            paid_amount_cents=1250,
            payment_status="partial_paid",
        )
        clock.set(LESSON_START + timedelta(minutes=30))

        summary = payment_service.process_lesson_settlement()

        assert summary["succeeded"] == 1
        assert gateway.keys == [f"autoscuola:{lesson.id}:settlement:1"]
        assert gateway.charged_cents == 1250
        appointment = _reload(db, Appointment, lesson.id)
        assert appointment.paid_amount_cents == 2500
        assert appointment.payment_status == "paid"

    def test_lesson_in_progress_is_not_settled(self, db, lesson, payment_service, clock):
        clock.set(LESSON_START + timedelta(minutes=10))
        assert payment_service.process_lesson_settlement()["processed"] == 0

    def test_proposals_are_never_settled(self, db, paid_school, payment_service, clock):
        add_paid_lesson(db, LESSON_START, duration_minutes=30, status="proposal")
        clock.set(LESSON_START + timedelta(hours=1))

        assert payment_service.process_lesson_settlement()["processed"] == 0


class TestManualRecovery:
    @pytest.fixture
    def insoluto_lesson(self, db, paid_school) -> Appointment:
        return add_paid_lesson(
            db,
            LESSON_START,
            duration_minutes=30,
            payment_status="insoluto",
            payment_status_locked=True,
        )

    def test_only_insoluto_lessons_can_be_recovered(self, lesson, payment_service):
        with pytest.raises(BusinessRuleException) as excinfo:
            payment_service.create_manual_recovery(COMPANY_ID, lesson.id)
        assert excinfo.value.code == "NOT_INSOLUTO"

    def test_recovery_opens_an_intent_and_abandons_automatic_records(
        self, db, insoluto_lesson, payment_service, gateway
    ):
        failed = AppointmentPayment(
            appointment_id=insoluto_lesson.id,
            company_id=COMPANY_ID,
            student_id=STUDENT_ID,
            phase="settlement",
            amount_cents=2500,
            status="failed",
            attempt_count=1,
        )
        db.add(failed)
        db.commit()

        recovery = payment_service.create_manual_recovery(COMPANY_ID, insoluto_lesson.id)

        assert _reload(db, AppointmentPayment, failed.id).status == "abandoned"
        assert recovery.client_secret == "pi_manual_1_secret"
        assert recovery.payment.status == "processing"
        assert recovery.payment.gateway_payment_intent_id == "pi_manual_1"
        assert gateway.keys == [f"autoscuola:{insoluto_lesson.id}:manual_recovery:1"]
        assert gateway.calls[0]["amount_cents"] == 2500
        assert payment_service.attempt_payment(recovery.payment.id) == "processing"
        assert len(gateway.calls) == 1

    def test_reopening_returns_the_open_intent(self, insoluto_lesson, payment_service, gateway):
        first = payment_service.create_manual_recovery(COMPANY_ID, insoluto_lesson.id)
        second = payment_service.create_manual_recovery(COMPANY_ID, insoluto_lesson.id)

        assert second.payment.id == first.payment.id
        assert second.client_secret == first.client_secret
        assert list(gateway.intents) == ["pi_manual_1"]

    def test_nothing_is_credited_until_the_provider_confirms(
        self, db, insoluto_lesson, payment_service, gateway
    ):
        recovery = payment_service.create_manual_recovery(COMPANY_ID, insoluto_lesson.id).payment

        pending = payment_service.finalize_manual_recovery(COMPANY_ID, recovery.id)

        assert pending.status == "processing"
        appointment = _reload(db, Appointment, insoluto_lesson.id)
        assert appointment.paid_amount_cents == 0
        assert appointment.payment_status == "insoluto"
        assert appointment.payment_status_locked is True

        gateway.complete_intent(recovery.gateway_payment_intent_id)
        paid = payment_service.finalize_manual_recovery(COMPANY_ID, recovery.id)
        again = payment_service.finalize_manual_recovery(COMPANY_ID, recovery.id)

        assert paid.status == "succeeded"
        assert again.gateway_charge_id == "ch_pi_manual_1"
        appointment = _reload(db, Appointment, insoluto_lesson.id)
        assert appointment.paid_amount_cents == 2500
        assert appointment.payment_status == "paid"
        assert appointment.payment_status_locked is False

    def test_declined_intent_closes_the_recovery(
        self, db, insoluto_lesson, payment_service, gateway
    ):
        recovery = payment_service.create_manual_recovery(COMPANY_ID, insoluto_lesson.id).payment
        gateway.complete_intent(
            recovery.gateway_payment_intent_id,
            status="requires_payment_method",
            failure_code="card_declined",
            failure_message="Your card was declined.",
        )

        closed = payment_service.finalize_manual_recovery(COMPANY_ID, recovery.id)

        assert closed.status == "failed"
        assert closed.failure_code == "card_declined"
        assert _reload(db, Appointment, insoluto_lesson.id).payment_status == "insoluto"
        with pytest.raises(BusinessRuleException) as excinfo:
            payment_service.finalize_manual_recovery(COMPANY_ID, recovery.id)
        assert excinfo.value.code == "MANUAL_RECOVERY_CLOSED"

        retry = payment_service.create_manual_recovery(COMPANY_ID, insoluto_lesson.id).payment
        assert retry.id != recovery.id
        assert retry.idempotency_key == f"autoscuola:{insoluto_lesson.id}:manual_recovery:2"
        assert retry.gateway_payment_intent_id == "pi_manual_2"

    def test_credits_the_amount_the_provider_reports(
        self, db, insoluto_lesson, payment_service, gateway
    ):
        recovery = payment_service.create_manual_recovery(COMPANY_ID, insoluto_lesson.id).payment
        gateway.complete_intent(recovery.gateway_payment_intent_id, amount_cents=2000)

        payment = payment_service.finalize_manual_recovery(COMPANY_ID, recovery.id)

        assert payment.amount_cents == 2000
        appointment = _reload(db, Appointment, insoluto_lesson.id)
        assert appointment.paid_amount_cents == 2000
        assert appointment.payment_status == "partial_paid"

    def test_student_without_profile_cannot_be_recovered(
        self, db, insoluto_lesson, payment_service, gateway
    ):
        db.query(StudentPaymentProfile).filter_by(student_id=STUDENT_ID).delete()
        db.commit()

        with pytest.raises(PaymentMethodRequiredException):
            payment_service.create_manual_recovery(COMPANY_ID, insoluto_lesson.id)
        assert gateway.calls == []


class TestReads:
    def test_payment_summary_and_overview(self, db, lesson, payment_service, clock):
        clock.set(CUTOFF)
        payment_service.process_penalty_charges()

        summary = payment_service.get_payment_summary(_reload(db, Appointment, lesson.id))

        assert summary["final_amount_cents"] == 2500
        assert summary["outstanding_amount_cents"] == 1250
        assert [record["phase"] for record in summary["records"]] == ["penalty"]

        overview = payment_service.payments_overview(COMPANY_ID)
        assert overview["counts"]["partial_paid"] == 1
        assert overview["insoluto_count"] == 0

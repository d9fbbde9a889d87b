# backend/tests/integration/services/test_reposition_service.py
"""
Reposition queue scenarios.

Most tests narrow the student's window to Tuesdays 10:00-11:00 so the only
candidates are the cancelled slot itself and the same slot one week later.
"""

from datetime import timedelta

import pytest

from autoscuola.models import (
    Appointment,
    AppointmentPayment,
    RepositionReason,
    RepositionTask,
)
from autoscuola.services.reposition_service import (
    RepositionOutcome,
    RepositionService,
    clamp_sweep_limit,
    exclusions_for,
)
from autoscuola.services.slot_matcher import MatchResult
from tests.factories.school_builders import (
    COMPANY_ID,
    INSTRUCTOR_ID,
    OTHER_STUDENT_ID,
    OTHER_VEHICLE_ID,
    STUDENT_ID,
    VEHICLE_ID,
    add_appointment,
    add_paid_lesson,
    rome,
    seed_settings,
    set_active,
    set_window,
)

TUESDAY_10 = rome(2026, 3, 3, 10)


class _FixedMatcher:
    def __init__(self, result):
        self.result = result

    def find_best_slot(self, *args, **kwargs):
        return self.result


class _BrokenMatcher:
    def find_best_slot(self, *args, **kwargs):
        raise RuntimeError("availability store unreachable")


@pytest.fixture
def tuesday_only(db, school):
    set_window(db, "student", STUDENT_ID, days=[2], start_minutes=600, end_minutes=660)
    return school


def _cancel(appointment_service, appointment, reason):
    return appointment_service.cancel_operational(
        COMPANY_ID, appointment.id, reason, attempt_now=False
    )


def _replacement_of(db, source_id):
    db.expire_all()
    source = db.get(Appointment, source_id)
    return source, db.get(Appointment, source.replaced_by_appointment_id)


class TestHelpers:
    def test_sweep_limit_is_clamped(self):
        assert clamp_sweep_limit(None) == 50
        assert clamp_sweep_limit(0) == 1
        assert clamp_sweep_limit(-5) == 1
        assert clamp_sweep_limit(75) == 75
        assert clamp_sweep_limit(1000) == 200

    @pytest.mark.parametrize(
        "reason,expected",
        [
            ("instructor_cancel", (INSTRUCTOR_ID, None)),
            ("instructor_inactive", (INSTRUCTOR_ID, None)),
            ("directory_instructor_removed", (INSTRUCTOR_ID, None)),
            ("vehicle_inactive", (None, VEHICLE_ID)),
            ("availability_changed", (None, None)),
            ("owner_delete", (None, None)),
        ],
    )
    def test_exclusions_by_reason(self, reason, expected):
        appointment = Appointment(instructor_id=INSTRUCTOR_ID, vehicle_id=VEHICLE_ID)
        assert tuple(exclusions_for(RepositionReason(reason), appointment)) == expected


class TestRepositionScenarios:
    def test_vehicle_inactive_moves_the_lesson_to_the_other_vehicle(
        self, db, tuesday_only, appointment_service, reposition_service, dispatcher
    ):
        source = add_appointment(db, TUESDAY_10)
        result = _cancel(appointment_service, source, "vehicle_inactive")

        summary = reposition_service.process_pending()

        assert summary["processed"] == 1
        assert summary["matched"] == 1
        source, replacement = _replacement_of(db, source.id)
        assert replacement.status == "proposal"
        assert replacement.starts_at == TUESDAY_10
        assert replacement.instructor_id == INSTRUCTOR_ID
        assert replacement.vehicle_id == OTHER_VEHICLE_ID
        assert source.cancellation_kind == "replaced"
        task = db.get(RepositionTask, result.task.id)
        assert task.status == "matched"
        assert task.matched_appointment_id == replacement.id
        assert task.next_attempt_at is None
        assert "appointment_proposal" in dispatcher.kinds()

    def test_no_candidate_keeps_the_task_pending(
        self, db, tuesday_only, appointment_service, reposition_service, clock
    ):
        set_active(db, OTHER_VEHICLE_ID, False)
        source = add_appointment(db, TUESDAY_10)
        result = _cancel(appointment_service, source, "vehicle_inactive")

        summary = reposition_service.process_pending()

        assert summary["no_candidate"] == 1
        task = db.get(RepositionTask, result.task.id)
        assert task.status == "pending"
        assert task.attempt_count == 1
        assert task.last_error == "no_candidate"
        assert task.next_attempt_at == clock.now() + timedelta(minutes=1)

        assert reposition_service.process_pending()["processed"] == 0
        clock.advance(minutes=1)
        assert reposition_service.process_pending()["processed"] == 1

    def test_availability_change_skips_the_cancelled_interval(
        self, db, tuesday_only, appointment_service, reposition_service
    ):
        source = add_appointment(db, TUESDAY_10)
        _cancel(appointment_service, source, "availability_changed")

        assert reposition_service.process_pending()["matched"] == 1

        _, replacement = _replacement_of(db, source.id)
        assert replacement.starts_at == rome(2026, 3, 10, 10)
        assert (replacement.instructor_id, replacement.vehicle_id) == (INSTRUCTOR_ID, VEHICLE_ID)

    def test_open_proposal_defers_the_search(
        self, db, school, appointment_service, reposition_service
    ):
        add_appointment(
            db,
            rome(2026, 3, 5, 10),
            status="proposal",
            instructor_id="instructor-x",
            vehicle_id="vehicle-x",
        )
        source = add_appointment(db, TUESDAY_10)
        result = _cancel(appointment_service, source, "owner_delete")

        outcome = reposition_service.attempt_task(result.task.id)

        assert outcome == RepositionOutcome.DEFERRED
        task = db.get(RepositionTask, result.task.id)
        assert task.status == "pending"
        assert task.last_error == "open_proposal"

    def test_expired_proposal_does_not_block(
        self, db, tuesday_only, appointment_service, reposition_service, clock
    ):
        add_appointment(
            db,
            rome(2026, 3, 5, 10),
            status="proposal",
            instructor_id="instructor-x",
            vehicle_id="vehicle-x",
            proposal_expires_at=clock.now() - timedelta(minutes=5),
        )
        source = add_appointment(db, TUESDAY_10)
        result = _cancel(appointment_service, source, "vehicle_inactive")

        assert reposition_service.attempt_task(result.task.id) == RepositionOutcome.MATCHED

    def test_source_in_the_past_expires_the_task(
        self, db, school, appointment_service, reposition_service, clock
    ):
        source = add_appointment(db, TUESDAY_10)
        result = _cancel(appointment_service, source, "owner_delete")
        clock.set(TUESDAY_10 + timedelta(minutes=1))

        summary = reposition_service.process_pending()

        assert summary["expired"] == 1
        task = db.get(RepositionTask, result.task.id)
        assert task.status == "cancelled"
        assert task.last_error == "source_expired"
        assert task.next_attempt_at is None

    def test_already_linked_source_resolves_the_task(
        self, db, school, appointment_service, reposition_service
    ):
        source = add_appointment(db, TUESDAY_10)
        result = _cancel(appointment_service, source, "owner_delete")
        appointment_service.link_replacement(source.id, "manual-replacement")

        outcome = reposition_service.attempt_task(result.task.id)

        assert outcome == RepositionOutcome.ALREADY_RESOLVED
        task = db.get(RepositionTask, result.task.id)
        assert task.status == "matched"
        assert task.matched_appointment_id == "manual-replacement"
        assert reposition_service.attempt_task(result.task.id) == RepositionOutcome.SKIPPED

    def test_slot_taken_between_search_and_commit(
        self, db, school, appointment_service, notifications, clock
    ):
        taken = rome(2026, 3, 4, 10)
        add_appointment(db, taken, student_id=OTHER_STUDENT_ID)
        stale_match = MatchResult(
            starts_at=taken,
            ends_at=taken + timedelta(hours=1),
            instructor_id=INSTRUCTOR_ID,
            vehicle_id=VEHICLE_ID,
            score=0,
        )
        service = RepositionService(
            db, notifications=notifications, matcher=_FixedMatcher(stale_match), clock=clock
        )
        source = add_appointment(db, TUESDAY_10)
        result = _cancel(appointment_service, source, "owner_delete")

        assert service.attempt_task(result.task.id) == RepositionOutcome.DEFERRED
        task = db.get(RepositionTask, result.task.id)
        assert task.last_error == "slot_taken"
        assert db.query(Appointment).filter_by(status="proposal").count() == 0

    def test_not_yet_due_task_is_skipped_unless_forced(
        self, db, tuesday_only, appointment_service, reposition_service
    ):
        set_active(db, OTHER_VEHICLE_ID, False)
        source = add_appointment(db, TUESDAY_10)
        result = _cancel(appointment_service, source, "vehicle_inactive")
        reposition_service.attempt_task(result.task.id)

        assert reposition_service.attempt_task(result.task.id) == RepositionOutcome.SKIPPED
        assert (
            reposition_service.attempt_task(result.task.id, force=True)
            == RepositionOutcome.NO_CANDIDATE
        )

    def test_unknown_task_is_skipped(self, school, reposition_service):
        assert reposition_service.attempt_task("missing-task") == RepositionOutcome.SKIPPED

    def test_proposal_ttl_sets_the_expiry(
        self, db, tuesday_only, appointment_service, reposition_service, clock
    ):
        seed_settings(db, proposal_ttl_hours=6)
        source = add_appointment(db, TUESDAY_10)
        _cancel(appointment_service, source, "vehicle_inactive")

        reposition_service.process_pending()

        _, replacement = _replacement_of(db, source.id)
        assert replacement.proposal_expires_at == clock.now() + timedelta(hours=6)

    def test_sweep_isolates_failures(
        self, db, school, appointment_service, notifications, clock
    ):
        service = RepositionService(
            db, notifications=notifications, matcher=_BrokenMatcher(), clock=clock
        )
        for day in (3, 4):
            source = add_appointment(db, rome(2026, 3, day, 10))
            _cancel(appointment_service, source, "owner_delete")

        summary = service.process_pending()

        assert summary["processed"] == 2
        assert summary["errors"] == 2
        assert db.query(RepositionTask).filter_by(status="pending").count() == 2


class TestLedgerTransfer:
    def test_paid_amount_and_records_follow_the_replacement(
        self, db, paid_school, appointment_service, reposition_service
    ):
        set_window(db, "student", STUDENT_ID, days=[2], start_minutes=600, end_minutes=660)
        source = add_paid_lesson(
            db, TUESDAY_10, paid_amount_cents=1250, payment_status="partial_paid"
        )
        db.add(
            AppointmentPayment(
                appointment_id=source.id,
                company_id=COMPANY_ID,
                student_id=STUDENT_ID,
                phase="penalty",
                amount_cents=1250,
                status="succeeded",
                attempt_count=1,
            )
        )
        db.commit()
        _cancel(appointment_service, source, "vehicle_inactive")

        assert reposition_service.process_pending()["matched"] == 1

        source, replacement = _replacement_of(db, source.id)
        assert replacement.payment_required is True
        assert replacement.price_amount_cents == 2500
        assert replacement.paid_amount_cents == 1250
        assert replacement.payment_status == "partial_paid"
        assert replacement.penalty_cutoff_at == replacement.starts_at - timedelta(hours=24)
        assert source.paid_amount_cents == 0
        assert source.payment_status == "waived"
        records = db.query(AppointmentPayment).all()
        assert [record.appointment_id for record in records] == [replacement.id]

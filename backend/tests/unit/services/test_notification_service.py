# backend/tests/unit/services/test_notification_service.py
from datetime import datetime, timezone

from autoscuola.events.appointment_events import (
    AppointmentCreated,
    OperationalCancellationPending,
    PaymentInsoluto,
    ReplacementProposed,
)
from autoscuola.services.notification_service import NotificationService
from tests.helpers.fakes import RecordingDispatcher

STARTS_AT = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)  # 10:00 in Rome


class _BrokenDispatcher:
    def notify(self, *args, **kwargs):
        raise ConnectionError("push gateway unreachable")


def _service():
    dispatcher = RecordingDispatcher()
    return NotificationService(dispatcher, timezone="Europe/Rome"), dispatcher


def test_replacement_proposal_notice_uses_local_time():
    service, dispatcher = _service()

    delivered = service.publish(
        ReplacementProposed(
            company_id="company-1",
            source_appointment_id="apt-1",
            appointment_id="apt-2",
            student_id="student-1",
            starts_at=STARTS_AT,
            lesson_type="guida",
        )
    )

    assert delivered is True
    notice = dispatcher.notices[0]
    assert notice["kind"] == "appointment_proposal"
    assert notice["user_id"] == "student-1"
    assert "10/03 10:00" in notice["body"]
    assert notice["metadata"]["starts_at"] == STARTS_AT.isoformat()
    assert notice["metadata"]["source_appointment_id"] == "apt-1"


def test_operational_cancellation_notice_names_the_reason():
    service, dispatcher = _service()

    service.publish(
        OperationalCancellationPending(
            company_id="company-1",
            appointment_id="apt-1",
            student_id="student-1",
            starts_at=STARTS_AT,
            reason="vehicle_inactive",
        )
    )

    assert dispatcher.kinds() == ["appointment_cancelled"]
    assert "veicolo" in dispatcher.notices[0]["body"]


def test_insoluto_notice_formats_the_amount():
    service, dispatcher = _service()

    service.publish(
        PaymentInsoluto(
            company_id="company-1",
            appointment_id="apt-1",
            student_id="student-1",
            amount_cents=1250,
            failure_code="card_declined",
        )
    )

    assert dispatcher.kinds() == ["payment_insoluto"]
    assert "12.50" in dispatcher.notices[0]["body"]


def test_appointment_created_notice():
    service, dispatcher = _service()

    service.publish(
        AppointmentCreated(
            company_id="company-1",
            appointment_id="apt-1",
            student_id="student-1",
            instructor_id="instructor-1",
            vehicle_id="vehicle-1",
            starts_at=STARTS_AT,
        )
    )

    assert dispatcher.kinds() == ["appointment_created"]


def test_dispatcher_failure_is_swallowed():
    service = NotificationService(_BrokenDispatcher(), timezone="Europe/Rome")

    delivered = service.publish(
        PaymentInsoluto(
            company_id="company-1", appointment_id="apt-1", student_id="student-1", amount_cents=100
        )
    )

    assert delivered is False


def test_unknown_event_is_not_delivered():
    service, dispatcher = _service()

    assert service.publish(object()) is False
    assert dispatcher.notices == []

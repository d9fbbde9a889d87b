# backend/tests/tasks/test_payment_tasks.py
from datetime import datetime, timezone
from functools import partial
from unittest.mock import MagicMock, patch

import pytest

from autoscuola.core.config import settings
from autoscuola.models import Appointment
from autoscuola.services.invoice_service import InvoiceService
from autoscuola.services.payment_service import PaymentService, build_idempotency_key
from autoscuola.tasks import payment_tasks
from tests.factories.school_builders import add_paid_lesson, rome, seed_settings


@pytest.fixture
def task_sessions(session_factory):
    with patch("autoscuola.database.SessionLocal", session_factory):
        yield session_factory


@pytest.fixture
def wired_services(gateway, invoicing_client, notifications, clock):
    with patch.object(
        payment_tasks,
        "PaymentService",
        partial(PaymentService, gateway=gateway, notifications=notifications, clock=clock),
    ), patch.object(
        payment_tasks,
        "InvoiceService",
        partial(InvoiceService, client=invoicing_client, clock=clock),
    ):
        yield


def test_penalty_job_charges_past_cutoff(task_sessions, wired_services, db, paid_school, gateway, clock):
    lesson = add_paid_lesson(db, rome(2026, 3, 4, 10), duration_minutes=30)
    clock.set(datetime(2026, 3, 3, 10, 0, tzinfo=timezone.utc))

    summary = payment_tasks.process_penalty_charges()

    assert summary["succeeded"] == 1
    assert "processed_at" in summary
    assert gateway.keys == [build_idempotency_key(lesson.id, "penalty", 1)]
    db.expire_all()
    assert db.get(Appointment, lesson.id).paid_amount_cents == 1250


def test_settlement_job_charges_the_balance(task_sessions, wired_services, db, paid_school, gateway, clock):
    lesson = add_paid_lesson(
        db,
        rome(2026, 3, 4, 10),
        duration_minutes=30,
        status="completed",
        paid_amount_cents=1250,
        payment_status="partial_paid",
    )
    clock.set(rome(2026, 3, 4, 12))

    summary = payment_tasks.process_lesson_settlement()

    assert summary["succeeded"] == 1
    assert gateway.keys == [build_idempotency_key(lesson.id, "settlement", 1)]


def test_invoice_job_issues_invoice(task_sessions, wired_services, db, paid_school, invoicing_client, clock):
    seed_settings(db, invoicing_enabled=True, invoice_vat_rule_ref="vat-22")
    add_paid_lesson(
        db,
        rome(2026, 3, 4, 10),
        duration_minutes=30,
        status="completed",
        paid_amount_cents=2500,
        payment_status="paid",
    )
    clock.set(rome(2026, 3, 4, 12))

    summary = payment_tasks.process_invoice_finalization()

    assert summary["issued"] == 1
    assert len(invoicing_client.calls) == 1


def test_jobs_default_to_configured_limits(task_sessions):
    service = MagicMock()
    service.process_payment_retries.return_value = {
        "processed": 0,
        "succeeded": 0,
        "failed": 0,
        "abandoned": 0,
        "waived": 0,
        "settled": 0,
        "skipped": 0,
        "errors": 0,
    }
    with patch.object(payment_tasks, "PaymentService", return_value=service):
        payment_tasks.process_payment_retries()

    service.process_payment_retries.assert_called_once_with(limit=settings.payment_sweep_limit)


def test_job_failure_is_raised_when_called_directly(task_sessions):
    service = MagicMock()
    service.process_penalty_charges.side_effect = RuntimeError("gateway outage")
    with patch.object(payment_tasks, "PaymentService", return_value=service):
        with pytest.raises(RuntimeError, match="gateway outage"):
            payment_tasks.process_penalty_charges()

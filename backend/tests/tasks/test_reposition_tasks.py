# backend/tests/tasks/test_reposition_tasks.py
"""Reposition Celery tasks run against the test database with wall-clock time frozen."""

from unittest.mock import patch

from freezegun import freeze_time
import pytest

from autoscuola.models import Appointment, RepositionTask
from autoscuola.tasks.reposition_tasks import attempt_reposition, process_reposition_queue
from tests.factories.school_builders import COMPANY_ID, add_appointment, rome

FROZEN_NOW = "2026-03-02 08:00:00"


@pytest.fixture
def task_sessions(session_factory):
    with patch("autoscuola.database.SessionLocal", session_factory):
        yield session_factory


@pytest.fixture
def queued_task(db, school, appointment_service):
    source = add_appointment(db, rome(2026, 3, 3, 10))
    result = appointment_service.cancel_operational(
        COMPANY_ID, source.id, "vehicle_inactive", attempt_now=False
    )
    return result.task


@freeze_time(FROZEN_NOW)
def test_queue_sweep_matches_due_task(task_sessions, queued_task, db):
    summary = process_reposition_queue(limit=10)

    assert summary["processed"] == 1
    assert summary["matched"] == 1
    assert summary["errors"] == 0
    assert summary["processed_at"].startswith("2026-03-02T08:00:00")

    db.expire_all()
    task = db.get(RepositionTask, queued_task.id)
    assert task.status == "matched"
    assert db.get(Appointment, task.matched_appointment_id).status == "proposal"


@freeze_time(FROZEN_NOW)
def test_single_attempt_returns_outcome(task_sessions, queued_task):
    assert attempt_reposition(queued_task.id) == "matched"
    assert attempt_reposition(queued_task.id) == "skipped"


def test_sweep_failure_is_raised_when_called_directly(task_sessions):
    with patch(
        "autoscuola.tasks.reposition_tasks.RepositionService.process_pending",
        side_effect=RuntimeError("database unavailable"),
    ):
        with pytest.raises(RuntimeError, match="database unavailable"):
            process_reposition_queue()

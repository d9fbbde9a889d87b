"""
Celery Beat schedule configuration for the autoscuola engine.

The reposition queue runs every minute so operational cancellations are
retried promptly; the payment sweeps run every ten minutes and invoice
finalization every fifteen.
"""

from typing import Any, Dict

from celery.schedules import crontab

from autoscuola.core.config import settings

CELERYBEAT_SCHEDULE: Dict[str, Dict[str, Any]] = {
    "process-reposition-queue": {
        "task": "autoscuola.tasks.reposition_tasks.process_reposition_queue",
        "schedule": crontab(minute="*"),
        "kwargs": {"limit": settings.reposition_sweep_limit},
        "options": {"queue": "reposition", "expires": 55},
    },
    "process-penalty-charges": {
        "task": "autoscuola.tasks.payment_tasks.process_penalty_charges",
        "schedule": crontab(minute="*/10"),
        "options": {"queue": "payments", "expires": 540},
    },
    "process-lesson-settlement": {
        "task": "autoscuola.tasks.payment_tasks.process_lesson_settlement",
        "schedule": crontab(minute="*/10"),
        "options": {"queue": "payments", "expires": 540},
    },
    "process-payment-retries": {
        "task": "autoscuola.tasks.payment_tasks.process_payment_retries",
        "schedule": crontab(minute="*/10"),
        "options": {"queue": "payments", "expires": 540},
    },
    "process-invoice-finalization": {
        "task": "autoscuola.tasks.payment_tasks.process_invoice_finalization",
        "schedule": crontab(minute="*/15"),
        "options": {"queue": "payments", "expires": 840},
    },
}


def get_beat_schedule(environment: str = "production") -> Dict[str, Dict[str, Any]]:
    """
    Get the beat schedule for the given environment.

    Tests get an empty schedule.
    """
    if environment == "test":
        return {}
    return dict(CELERYBEAT_SCHEDULE)

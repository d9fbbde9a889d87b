"""
Celery tasks for payment processing.

Drives the penalty, settlement and retry sweeps of the payment state machine
and the invoice finalizer. Each sweep isolates failures per appointment, so a
task only retries when the sweep itself could not run.
"""

from datetime import datetime, timezone
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from autoscuola.core.config import settings
from autoscuola.services.invoice_service import InvoiceService, InvoiceSweepResult
from autoscuola.services.payment_service import PaymentService, PaymentSweepResult
from autoscuola.tasks.celery_app import typed_task

logger = logging.getLogger(__name__)


class PaymentJobResults(PaymentSweepResult):
    processed_at: str


class InvoiceJobResults(InvoiceSweepResult):
    processed_at: str


def _stamp(summary: Any) -> Any:
    return {**summary, "processed_at": datetime.now(timezone.utc).isoformat()}


@typed_task(bind=True, max_retries=3, name="autoscuola.tasks.payment_tasks.process_penalty_charges")
def process_penalty_charges(self: Any, limit: Optional[int] = None) -> PaymentJobResults:
    """
    Collect penalties for lessons past their cutoff.

    Runs every 10 minutes.
    """
    from autoscuola.database import SessionLocal

    db: Session = SessionLocal()
    try:
        summary = PaymentService(db).process_penalty_charges(
            limit=limit or settings.payment_sweep_limit
        )
        logger.info(
            f"Penalty job completed: {summary['succeeded']} succeeded, {summary['failed']} failed, "
            f"{summary['waived']} waived"
        )
        return _stamp(summary)
    except Exception as exc:
        logger.error(f"Penalty job failed: {exc}")
        raise self.retry(exc=exc, countdown=300)
    finally:
        db.close()


@typed_task(
    bind=True, max_retries=3, name="autoscuola.tasks.payment_tasks.process_lesson_settlement"
)
def process_lesson_settlement(self: Any, limit: Optional[int] = None) -> PaymentJobResults:
    """Charge the remaining balance of finished lessons."""
    from autoscuola.database import SessionLocal

    db: Session = SessionLocal()
    try:
        summary = PaymentService(db).process_lesson_settlement(
            limit=limit or settings.payment_sweep_limit
        )
        logger.info(
            f"Settlement job completed: {summary['succeeded']} succeeded, "
            f"{summary['settled']} settled, {summary['failed']} failed"
        )
        return _stamp(summary)
    except Exception as exc:
        logger.error(f"Settlement job failed: {exc}")
        raise self.retry(exc=exc, countdown=300)
    finally:
        db.close()


@typed_task(bind=True, max_retries=3, name="autoscuola.tasks.payment_tasks.process_payment_retries")
def process_payment_retries(self: Any, limit: Optional[int] = None) -> PaymentJobResults:
    from autoscuola.database import SessionLocal

    db: Session = SessionLocal()
    try:
        summary = PaymentService(db).process_payment_retries(
            limit=limit or settings.payment_sweep_limit
        )
        if summary["abandoned"]:
            logger.warning(f"Retry job abandoned {summary['abandoned']} charge(s)")
        return _stamp(summary)
    except Exception as exc:
        logger.error(f"Payment retry job failed: {exc}")
        raise self.retry(exc=exc, countdown=300)
    finally:
        db.close()


@typed_task(
    bind=True, max_retries=3, name="autoscuola.tasks.payment_tasks.process_invoice_finalization"
)
def process_invoice_finalization(self: Any, limit: Optional[int] = None) -> InvoiceJobResults:
    """
    Issue invoices for settled lessons.

    Runs every 15 minutes; pending and failed invoices are picked up again.
    """
    from autoscuola.database import SessionLocal

    db: Session = SessionLocal()
    try:
        summary = InvoiceService(db).process_invoice_finalization(
            limit=limit or settings.invoice_sweep_limit
        )
        if summary["failed"]:
            logger.warning(f"Invoice job completed with {summary['failed']} failed invoice(s)")
        return _stamp(summary)
    except Exception as exc:
        logger.error(f"Invoice job failed: {exc}")
        raise self.retry(exc=exc, countdown=300)
    finally:
        db.close()

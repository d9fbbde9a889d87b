"""
Celery tasks for the reposition queue.

Each run opens its own session; all queue state lives in the
``reposition_tasks`` table so workers stay interchangeable.
"""

from datetime import datetime, timezone
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from autoscuola.services.reposition_service import RepositionService, RepositionSweepResult
from autoscuola.tasks.celery_app import typed_task

logger = logging.getLogger(__name__)


class RepositionJobResults(RepositionSweepResult):
    processed_at: str


@typed_task(bind=True, max_retries=3, name="autoscuola.tasks.reposition_tasks.process_reposition_queue")
def process_reposition_queue(self: Any, limit: Optional[int] = None) -> RepositionJobResults:
    """
    Attempt every due reposition task.

    Runs every minute. Per-task failures are isolated by the service; only a
    failure of the sweep itself is retried.
    """
    from autoscuola.database import SessionLocal

    db: Session = SessionLocal()
    try:
        summary = RepositionService(db).process_pending(limit)
        results: RepositionJobResults = {
            **summary,
            "processed_at": datetime.now(timezone.utc).isoformat(),
        }
        if summary["errors"]:
            logger.warning(f"Reposition sweep completed with {summary['errors']} errors")
        return results
    except Exception as exc:
        logger.error(f"Reposition sweep failed: {exc}")
        raise self.retry(exc=exc, countdown=60)
    finally:
        db.close()


@typed_task(bind=True, max_retries=3, name="autoscuola.tasks.reposition_tasks.attempt_reposition")
def attempt_reposition(self: Any, task_id: str) -> str:
    """Attempt a single task now, regardless of its next_attempt_at."""
    from autoscuola.database import SessionLocal

    db: Session = SessionLocal()
    try:
        outcome = RepositionService(db).attempt_task(task_id, force=True)
        logger.info(f"Reposition task {task_id}: {outcome.value}")
        return outcome.value
    except Exception as exc:
        logger.error(f"Reposition attempt for task {task_id} failed: {exc}")
        raise self.retry(exc=exc, countdown=60)
    finally:
        db.close()

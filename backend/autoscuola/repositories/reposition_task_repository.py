# backend/autoscuola/repositories/reposition_task_repository.py
"""Persistence for the reposition task queue."""

from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from ..models.reposition_task import RepositionTask, RepositionTaskStatus
from .base_repository import BaseRepository


class RepositionTaskRepository(BaseRepository[RepositionTask]):
    def __init__(self, db: Session):
        super().__init__(db, RepositionTask)

    def get_by_source(
        self, source_appointment_id: str, *, for_update: bool = False
    ) -> Optional[RepositionTask]:
        query = self._build_query().filter(
            RepositionTask.source_appointment_id == source_appointment_id
        )
        if for_update:
            query = self._lock(query)
        return self._execute_first(query)

    def find_due(self, now: datetime, limit: int) -> List[RepositionTask]:
        """Pending tasks whose next attempt is due, oldest first."""
        query = (
            self._build_query()
            .filter(
                RepositionTask.status == RepositionTaskStatus.PENDING.value,
                (RepositionTask.next_attempt_at.is_(None))
                | (RepositionTask.next_attempt_at <= now),
            )
            .order_by(RepositionTask.next_attempt_at, RepositionTask.created_at)
            .limit(limit)
        )
        return self._execute_query(query)

    def count_pending(self, company_id: Optional[str] = None) -> int:
        criteria = {"status": RepositionTaskStatus.PENDING.value}
        if company_id:
            criteria["company_id"] = company_id
        return self.count(**criteria)

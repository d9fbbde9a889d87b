# backend/autoscuola/repositories/availability_repository.py
"""Read access to recurring weekly availability windows."""

from typing import Dict, Iterable, Optional

from sqlalchemy.orm import Session

from ..models.availability_window import AvailabilityWindow
from .base_repository import BaseRepository


class AvailabilityRepository(BaseRepository[AvailabilityWindow]):
    def __init__(self, db: Session):
        super().__init__(db, AvailabilityWindow)

    def get_window(
        self, company_id: str, owner_type: str, owner_id: str
    ) -> Optional[AvailabilityWindow]:
        return self.find_one_by(company_id=company_id, owner_type=owner_type, owner_id=owner_id)

    def get_windows(
        self, company_id: str, owner_type: str, owner_ids: Iterable[str]
    ) -> Dict[str, AvailabilityWindow]:
        """Windows keyed by owner id; owners without a window are absent."""
        ids = list(owner_ids)
        if not ids:
            return {}
        query = self._build_query().filter(
            AvailabilityWindow.company_id == company_id,
            AvailabilityWindow.owner_type == owner_type,
            AvailabilityWindow.owner_id.in_(ids),
        )
        return {window.owner_id: window for window in self._execute_query(query)}

    def upsert_window(
        self,
        company_id: str,
        owner_type: str,
        owner_id: str,
        *,
        days_of_week: Iterable[int],
        start_minutes: int,
        end_minutes: int,
    ) -> AvailabilityWindow:
        window = self.get_window(company_id, owner_type, owner_id)
        days = sorted({int(day) for day in days_of_week})
        if window is None:
            return self.create(
                company_id=company_id,
                owner_type=owner_type,
                owner_id=owner_id,
                days_of_week=days,
                start_minutes=start_minutes,
                end_minutes=end_minutes,
            )
        window.days_of_week = days
        window.start_minutes = start_minutes
        window.end_minutes = end_minutes
        self.flush()
        return window

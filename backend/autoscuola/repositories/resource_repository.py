# backend/autoscuola/repositories/resource_repository.py
"""Company resource directory rows and per-appointment slot holds."""

from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from ..models.resource import CompanyResource
from ..models.resource_slot import ResourceSlotHold, SlotHoldStatus
from .base_repository import BaseRepository


class ResourceRepository(BaseRepository[CompanyResource]):
    def __init__(self, db: Session):
        super().__init__(db, CompanyResource)

    def get_resource(
        self, company_id: str, owner_type: str, owner_id: str
    ) -> Optional[CompanyResource]:
        return self.find_one_by(company_id=company_id, owner_type=owner_type, owner_id=owner_id)

    def get_by_owner_id(self, company_id: str, owner_id: str) -> Optional[CompanyResource]:
        return self.find_one_by(company_id=company_id, owner_id=owner_id)

    def list_active_ids(self, company_id: str, owner_type: str) -> List[str]:
        query = (
            self.db.query(CompanyResource.owner_id)
            .filter(
                CompanyResource.company_id == company_id,
                CompanyResource.owner_type == owner_type,
                CompanyResource.is_active.is_(True),
            )
            .order_by(CompanyResource.owner_id)
        )
        return [row[0] for row in self._execute_query(query)]


class SlotHoldRepository(BaseRepository[ResourceSlotHold]):
    def __init__(self, db: Session):
        super().__init__(db, ResourceSlotHold)

    def hold_for_appointment(
        self,
        *,
        appointment_id: str,
        company_id: str,
        resources: List[tuple],
        starts_at: datetime,
        ends_at: datetime,
    ) -> List[ResourceSlotHold]:
        """Create one hold per ``(owner_type, owner_id)`` pair."""
        holds = [
            ResourceSlotHold(
                appointment_id=appointment_id,
                company_id=company_id,
                owner_type=owner_type,
                owner_id=owner_id,
                starts_at=starts_at,
                ends_at=ends_at,
                status=SlotHoldStatus.HELD.value,
            )
            for owner_type, owner_id in resources
        ]
        self.db.add_all(holds)
        self.flush()
        return holds

    def release_for_appointment(self, appointment_id: str, at: datetime) -> int:
        holds = self.find_by(appointment_id=appointment_id, status=SlotHoldStatus.HELD.value)
        for hold in holds:
            hold.status = SlotHoldStatus.RELEASED.value
            hold.released_at = at
        if holds:
            self.flush()
        return len(holds)

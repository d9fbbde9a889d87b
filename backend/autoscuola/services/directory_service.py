# backend/autoscuola/services/directory_service.py
"""
Directory lookups for resource owners.

The engine never manages users, instructors or vehicles itself; it only asks
whether an owner is active for a company and how to reach it.
"""

from dataclasses import dataclass
import logging
from typing import List, Optional, Protocol

from sqlalchemy.orm import Session

from ..repositories.factory import RepositoryFactory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OwnerContact:
    email: Optional[str]
    phone: Optional[str] = None
    display_name: Optional[str] = None


class DirectoryService(Protocol):
    def is_active_resource(self, company_id: str, owner_type: str, owner_id: str) -> bool:
        ...

    def list_active_resources(self, company_id: str, owner_type: str) -> List[str]:
        ...

    def get_owner_contact(self, company_id: str, owner_id: str) -> OwnerContact:
        ...


class SqlDirectoryService:
    """Directory backed by the ``company_resources`` table."""

    def __init__(self, db: Session):
        self.repository = RepositoryFactory.create_resource_repository(db)

    def is_active_resource(self, company_id: str, owner_type: str, owner_id: str) -> bool:
        if not owner_id:
            return False
        resource = self.repository.get_resource(company_id, owner_type, owner_id)
        return bool(resource and resource.is_active)

    def list_active_resources(self, company_id: str, owner_type: str) -> List[str]:
        return self.repository.list_active_ids(company_id, owner_type)

    def get_owner_contact(self, company_id: str, owner_id: str) -> OwnerContact:
        resource = self.repository.get_by_owner_id(company_id, owner_id)
        if resource is None:
            logger.debug(f"No directory entry for owner {owner_id} in company {company_id}")
            return OwnerContact(email=None)
        return OwnerContact(
            email=resource.email,
            phone=resource.phone,
            display_name=resource.display_name,
        )

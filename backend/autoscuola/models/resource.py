# backend/autoscuola/models/resource.py
"""
Resource owners known to a company's directory.

The engine only needs to know whether a student, instructor or vehicle is
active for a company and how to reach its owner. This table backs the default
SQL directory adapter; deployments with an external directory can ignore it.
"""

from enum import Enum

from sqlalchemy import Boolean, CheckConstraint, Column, String, UniqueConstraint
import ulid

from ..database import Base
from .types import TimestampMixin


class OwnerType(str, Enum):
    STUDENT = "student"
    INSTRUCTOR = "instructor"
    VEHICLE = "vehicle"


class CompanyResource(TimestampMixin, Base):
    __tablename__ = "company_resources"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    company_id = Column(String(26), nullable=False, index=True)
    owner_type = Column(String(20), nullable=False)
    owner_id = Column(String(26), nullable=False)
    display_name = Column(String(200), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("company_id", "owner_type", "owner_id", name="uq_company_resource_owner"),
        CheckConstraint(
            "owner_type IN ('student', 'instructor', 'vehicle')",
            name="ck_company_resources_owner_type",
        ),
    )

    def __repr__(self) -> str:
        return f"<CompanyResource {self.owner_type}:{self.owner_id} active={self.is_active}>"

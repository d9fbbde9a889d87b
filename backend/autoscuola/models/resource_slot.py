# backend/autoscuola/models/resource_slot.py
"""Per-resource slot holds mirroring an appointment's interval."""

from enum import Enum

from sqlalchemy import CheckConstraint, Column, Index, String
import ulid

from ..database import Base
from .types import TimestampMixin, UTCDateTime


class SlotHoldStatus(str, Enum):
    HELD = "held"
    RELEASED = "released"


class ResourceSlotHold(TimestampMixin, Base):
    __tablename__ = "resource_slot_holds"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    appointment_id = Column(String(26), nullable=False, index=True)
    company_id = Column(String(26), nullable=False)
    owner_type = Column(String(20), nullable=False)
    owner_id = Column(String(26), nullable=False)
    starts_at = Column(UTCDateTime(), nullable=False)
    ends_at = Column(UTCDateTime(), nullable=False)
    status = Column(String(20), nullable=False, default=SlotHoldStatus.HELD.value)
    released_at = Column(UTCDateTime(), nullable=True)

    __table_args__ = (
        Index("ix_slot_holds_owner_range", "company_id", "owner_type", "owner_id", "starts_at"),
        CheckConstraint("status IN ('held', 'released')", name="ck_slot_holds_status"),
    )

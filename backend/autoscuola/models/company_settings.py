# backend/autoscuola/models/company_settings.py
"""
Per-company autoscuola configuration: pricing, penalty rules, invoicing and
booking governance. Values are normalized by ``CompanySettingsRepository``
before the services read them, so out-of-range presets never reach the ledger.
"""

from sqlalchemy import JSON, Boolean, Column, Integer, String
import ulid

from ..core.constants import (
    DEFAULT_BOOKING_SLOT_DURATIONS,
    DEFAULT_CURRENCY,
    DEFAULT_LESSON_PRICE_30_CENTS,
    DEFAULT_LESSON_PRICE_60_CENTS,
    DEFAULT_PENALTY_CUTOFF_HOURS,
    DEFAULT_PENALTY_PERCENT,
    DEFAULT_TIMEZONE,
)
from ..database import Base
from .types import TimestampMixin


class CompanyAutoscuolaSettings(TimestampMixin, Base):
    __tablename__ = "company_autoscuola_settings"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    company_id = Column(String(26), nullable=False, unique=True)
    timezone = Column(String(64), nullable=False, default=DEFAULT_TIMEZONE)

    # Payments
    payments_enabled = Column(Boolean, nullable=False, default=False)
    lesson_price_30_cents = Column(Integer, nullable=False, default=DEFAULT_LESSON_PRICE_30_CENTS)
    lesson_price_60_cents = Column(Integer, nullable=False, default=DEFAULT_LESSON_PRICE_60_CENTS)
    penalty_cutoff_hours = Column(Integer, nullable=False, default=DEFAULT_PENALTY_CUTOFF_HOURS)
    penalty_percent = Column(Integer, nullable=False, default=DEFAULT_PENALTY_PERCENT)
    currency = Column(String(3), nullable=False, default=DEFAULT_CURRENCY)
    gateway_destination_account = Column(String(255), nullable=True)

    # Invoicing
    invoicing_enabled = Column(Boolean, nullable=False, default=False)
    invoice_vat_rule_ref = Column(String(100), nullable=True)
    invoice_payment_method_ref = Column(String(100), nullable=True)

    # Booking governance
    lesson_policy = Column(JSON, nullable=True)
    booking_slot_durations = Column(
        JSON, nullable=True, default=lambda: list(DEFAULT_BOOKING_SLOT_DURATIONS)
    )
    proposal_ttl_hours = Column(Integer, nullable=True)

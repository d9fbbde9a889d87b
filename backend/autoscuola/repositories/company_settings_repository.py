# backend/autoscuola/repositories/company_settings_repository.py
"""
Company configuration access.

Raw settings rows may carry values written by older clients; ``get_config``
normalizes them against the allowed presets and returns an immutable
``CompanyConfig`` that the services treat as authoritative.
"""

from dataclasses import dataclass, field
import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.constants import (
    ALLOWED_BOOKING_SLOT_DURATIONS,
    DEFAULT_BOOKING_SLOT_DURATIONS,
    DEFAULT_CURRENCY,
    DEFAULT_LESSON_PRICE_30_CENTS,
    DEFAULT_LESSON_PRICE_60_CENTS,
    DEFAULT_PENALTY_CUTOFF_HOURS,
    DEFAULT_PENALTY_PERCENT,
    PENALTY_CUTOFF_HOURS_PRESETS,
    PENALTY_PERCENT_PRESETS,
)
from ..core.config import settings
from ..models.company_settings import CompanyAutoscuolaSettings
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompanyConfig:
    company_id: str
    timezone: str = settings.default_timezone
    payments_enabled: bool = False
    lesson_price_30_cents: int = DEFAULT_LESSON_PRICE_30_CENTS
    lesson_price_60_cents: int = DEFAULT_LESSON_PRICE_60_CENTS
    penalty_cutoff_hours: int = DEFAULT_PENALTY_CUTOFF_HOURS
    penalty_percent: int = DEFAULT_PENALTY_PERCENT
    currency: str = DEFAULT_CURRENCY
    gateway_destination_account: Optional[str] = None
    invoicing_enabled: bool = False
    invoice_vat_rule_ref: Optional[str] = None
    invoice_payment_method_ref: Optional[str] = None
    lesson_policy: Dict[str, Any] = field(default_factory=dict)
    booking_slot_durations: Tuple[int, ...] = tuple(DEFAULT_BOOKING_SLOT_DURATIONS)
    proposal_ttl_hours: Optional[int] = None


def _preset(value: Any, presets: list, default: int, name: str, company_id: str) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        parsed = None
    if parsed in presets:
        return parsed
    if value is not None:
        logger.warning(f"Company {company_id}: {name}={value!r} is not a preset, using {default}")
    return default


def _non_negative_cents(value: Any, default: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= 0 else default


def _slot_durations(value: Any) -> Tuple[int, ...]:
    if not isinstance(value, (list, tuple)):
        return tuple(DEFAULT_BOOKING_SLOT_DURATIONS)
    durations = sorted(
        {int(v) for v in value if isinstance(v, int) and v in ALLOWED_BOOKING_SLOT_DURATIONS}
    )
    return tuple(durations) or tuple(DEFAULT_BOOKING_SLOT_DURATIONS)


class CompanySettingsRepository(BaseRepository[CompanyAutoscuolaSettings]):
    def __init__(self, db: Session):
        super().__init__(db, CompanyAutoscuolaSettings)

    def get_for_company(self, company_id: str) -> Optional[CompanyAutoscuolaSettings]:
        return self.find_one_by(company_id=company_id)

    def get_config(self, company_id: str) -> CompanyConfig:
        row = self.get_for_company(company_id)
        if row is None:
            return CompanyConfig(company_id=company_id)
        return CompanyConfig(
            company_id=company_id,
            timezone=row.timezone or settings.default_timezone,
            payments_enabled=bool(row.payments_enabled),
            lesson_price_30_cents=_non_negative_cents(
                row.lesson_price_30_cents, DEFAULT_LESSON_PRICE_30_CENTS
            ),
            lesson_price_60_cents=_non_negative_cents(
                row.lesson_price_60_cents, DEFAULT_LESSON_PRICE_60_CENTS
            ),
            penalty_cutoff_hours=_preset(
                row.penalty_cutoff_hours,
                PENALTY_CUTOFF_HOURS_PRESETS,
                DEFAULT_PENALTY_CUTOFF_HOURS,
                "penalty_cutoff_hours",
                company_id,
            ),
            penalty_percent=_preset(
                row.penalty_percent,
                PENALTY_PERCENT_PRESETS,
                DEFAULT_PENALTY_PERCENT,
                "penalty_percent",
                company_id,
            ),
            currency=(row.currency or DEFAULT_CURRENCY).upper(),
            gateway_destination_account=row.gateway_destination_account,
            invoicing_enabled=bool(row.invoicing_enabled),
            invoice_vat_rule_ref=row.invoice_vat_rule_ref,
            invoice_payment_method_ref=row.invoice_payment_method_ref,
            lesson_policy=dict(row.lesson_policy or {}),
            booking_slot_durations=_slot_durations(row.booking_slot_durations),
            proposal_ttl_hours=row.proposal_ttl_hours,
        )

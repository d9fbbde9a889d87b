"""Payment ledger and charge record schemas."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import Field

from .base import StandardizedModel


class PaymentRecordResponse(StandardizedModel):
    id: str
    appointment_id: str
    phase: str
    amount_cents: int
    currency: str
    status: str
    attempt_count: int
    next_attempt_at: Optional[datetime] = None
    failure_code: Optional[str] = None
    failure_message: Optional[str] = None
    gateway_payment_intent_id: Optional[str] = None
    gateway_charge_id: Optional[str] = None
    paid_at: Optional[datetime] = None


class PaymentSummaryResponse(StandardizedModel):
    appointment_id: str
    payment_required: bool
    payment_status: str
    payment_status_locked: bool
    currency: str
    price_amount_cents: int
    penalty_amount_cents: int
    penalty_cutoff_at: Optional[datetime] = None
    final_amount_cents: int
    paid_amount_cents: int
    outstanding_amount_cents: int
    invoice_id: Optional[str] = None
    invoice_status: Optional[str] = None
    records: List[PaymentRecordResponse] = Field(default_factory=list)


class ManualRecoveryResponse(PaymentRecordResponse):
    """The record plus the secret the student's app confirms the intent with."""

    client_secret: Optional[str] = None


class PaymentsOverviewResponse(StandardizedModel):
    company_id: str
    counts: Dict[str, int]
    insoluto_count: int
    insoluto_outstanding_cents: int
    insoluto_student_ids: List[str] = Field(default_factory=list)

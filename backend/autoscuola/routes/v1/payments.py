# backend/autoscuola/routes/v1/payments.py
"""
Payment routes - API v1

Endpoints:
    GET /payments - Charge records for the company
    GET /payments/overview - Ledger counts and insoluto totals
    POST /payments/{payment_id}/manual-recovery/finalize - Settle a manual recovery from its intent
"""

import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query

from ...api.dependencies import get_company_id, get_payment_service
from ...core.exceptions import DomainException
from ...models.appointment_payment import PaymentRecordStatus
from ...schemas.payment import (
    PaymentRecordResponse,
    PaymentsOverviewResponse,
)
from ...services.payment_service import PaymentService
from .appointments import ULID_PATH_PATTERN, handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["autoscuola-payments-v1"])


@router.get("/payments", response_model=List[PaymentRecordResponse])
async def list_payments(
    status: Optional[PaymentRecordStatus] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    company_id: str = Depends(get_company_id),
    payment_service: PaymentService = Depends(get_payment_service),
) -> List[PaymentRecordResponse]:
    payments = await asyncio.to_thread(
        payment_service.list_payments,
        company_id,
        status=status.value if status else None,
        limit=limit,
    )
    return [PaymentRecordResponse.model_validate(payment) for payment in payments]


@router.get("/payments/overview", response_model=PaymentsOverviewResponse)
async def payments_overview(
    company_id: str = Depends(get_company_id),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentsOverviewResponse:
    overview = await asyncio.to_thread(payment_service.payments_overview, company_id)
    return PaymentsOverviewResponse.model_validate(overview)


@router.post(
    "/payments/{payment_id}/manual-recovery/finalize",
    response_model=PaymentRecordResponse,
)
async def finalize_manual_recovery(
    payment_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    company_id: str = Depends(get_company_id),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentRecordResponse:
    """Credit the recovery if the provider reports its intent as paid."""
    try:
        payment = await asyncio.to_thread(
            payment_service.finalize_manual_recovery,
            company_id,
            payment_id,
        )
        return PaymentRecordResponse.model_validate(payment)
    except DomainException as e:
        handle_domain_exception(e)

# backend/autoscuola/routes/v1/appointments.py
"""
Appointment routes - API v1

Versioned appointment endpoints under /api/v1/autoscuola.
All business logic delegated to AppointmentService and PaymentService.
Every request is scoped to the company named in the X-Company-Id header.

Endpoints:
    POST /appointments - Book a lesson
    GET /appointments/{appointment_id} - Appointment details
    POST /appointments/{appointment_id}/cancel-operational - Cancel and queue reposition
    PATCH /appointments/{appointment_id}/status - Lifecycle transition
    GET /appointments/{appointment_id}/payment - Ledger and charge records
    GET /appointments/{appointment_id}/reposition - Reposition task state
    POST /appointments/{appointment_id}/manual-recovery - Open a manual recovery intent
    POST /resources/{owner_type}/{owner_id}/cancel-future - Bulk operational cancel
"""

import asyncio
import logging
from typing import NoReturn

from fastapi import APIRouter, Body, Depends, HTTPException, Path, status

from ...api.dependencies import (
    get_appointment_service,
    get_company_id,
    get_payment_service,
)
from ...core.exceptions import DomainException
from ...models.resource import OwnerType
from ...schemas.appointment import (
    AppointmentCreate,
    AppointmentResponse,
    OperationalCancelRequest,
    OperationalCancelResponse,
    RepositionTaskResponse,
    ResourceCancelRequest,
    ResourceCancelResponse,
    StatusUpdateRequest,
)
from ...schemas.payment import ManualRecoveryResponse, PaymentSummaryResponse
from ...services.appointment_service import AppointmentService
from ...services.payment_service import PaymentService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["autoscuola-appointments-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post(
    "/appointments",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_appointment(
    payload: AppointmentCreate = Body(...),
    company_id: str = Depends(get_company_id),
    appointment_service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentResponse:
    """Book a lesson for a student with an instructor and a vehicle."""
    try:
        appointment = await asyncio.to_thread(
            appointment_service.create_appointment,
            company_id=company_id,
            student_id=payload.student_id,
            instructor_id=payload.instructor_id,
            vehicle_id=payload.vehicle_id,
            starts_at=payload.starts_at,
            duration_minutes=payload.duration_minutes,
            lesson_type=payload.lesson_type,
            case_id=payload.case_id,
        )
        return AppointmentResponse.model_validate(appointment)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/appointments/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    company_id: str = Depends(get_company_id),
    appointment_service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentResponse:
    try:
        appointment = await asyncio.to_thread(
            appointment_service.get_appointment, company_id, appointment_id
        )
        return AppointmentResponse.model_validate(appointment)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/appointments/{appointment_id}/cancel-operational",
    response_model=OperationalCancelResponse,
)
async def cancel_operational(
    appointment_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    payload: OperationalCancelRequest = Body(...),
    company_id: str = Depends(get_company_id),
    appointment_service: AppointmentService = Depends(get_appointment_service),
) -> OperationalCancelResponse:
    """
    Cancel for an operational reason and try to reposition right away.

    The cancellation succeeds even when no replacement is found; the
    reposition queue keeps searching in the background.
    """
    try:
        result = await asyncio.to_thread(
            appointment_service.cancel_operational,
            company_id,
            appointment_id,
            payload.reason,
            payload.attempt_now,
        )
        replacement = None
        if result.task.matched_appointment_id:
            replacement = await asyncio.to_thread(
                appointment_service.get_appointment,
                company_id,
                result.task.matched_appointment_id,
            )
        return OperationalCancelResponse(
            appointment=AppointmentResponse.model_validate(result.appointment),
            task=RepositionTaskResponse.model_validate(result.task),
            outcome=result.outcome.value if result.outcome else None,
            replacement=AppointmentResponse.model_validate(replacement) if replacement else None,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.patch("/appointments/{appointment_id}/status", response_model=AppointmentResponse)
async def update_appointment_status(
    appointment_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    payload: StatusUpdateRequest = Body(...),
    company_id: str = Depends(get_company_id),
    appointment_service: AppointmentService = Depends(get_appointment_service),
) -> AppointmentResponse:
    try:
        appointment = await asyncio.to_thread(
            appointment_service.update_status,
            company_id,
            appointment_id,
            payload.status,
            actor_role=payload.actor_role,
            reason=payload.reason,
        )
        return AppointmentResponse.model_validate(appointment)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/appointments/{appointment_id}/payment", response_model=PaymentSummaryResponse)
async def get_appointment_payment(
    appointment_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    company_id: str = Depends(get_company_id),
    appointment_service: AppointmentService = Depends(get_appointment_service),
) -> PaymentSummaryResponse:
    try:
        summary = await asyncio.to_thread(
            appointment_service.get_payment_summary, company_id, appointment_id
        )
        return PaymentSummaryResponse.model_validate(summary)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/appointments/{appointment_id}/reposition", response_model=RepositionTaskResponse)
async def get_reposition_status(
    appointment_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    company_id: str = Depends(get_company_id),
    appointment_service: AppointmentService = Depends(get_appointment_service),
) -> RepositionTaskResponse:
    try:
        task = await asyncio.to_thread(
            appointment_service.get_reposition_status, company_id, appointment_id
        )
        return RepositionTaskResponse.model_validate(task)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/appointments/{appointment_id}/manual-recovery",
    response_model=ManualRecoveryResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_manual_recovery(
    appointment_id: str = Path(..., pattern=ULID_PATH_PATTERN),
    company_id: str = Depends(get_company_id),
    payment_service: PaymentService = Depends(get_payment_service),
) -> ManualRecoveryResponse:
    """Open a payment intent the student pays to clear an insoluto lesson."""
    try:
        recovery = await asyncio.to_thread(
            payment_service.create_manual_recovery, company_id, appointment_id
        )
        response = ManualRecoveryResponse.model_validate(recovery.payment)
        return response.model_copy(update={"client_secret": recovery.client_secret})
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/resources/{owner_type}/{owner_id}/cancel-future",
    response_model=ResourceCancelResponse,
)
async def cancel_future_for_resource(
    owner_type: OwnerType,
    owner_id: str,
    payload: ResourceCancelRequest = Body(...),
    company_id: str = Depends(get_company_id),
    appointment_service: AppointmentService = Depends(get_appointment_service),
) -> ResourceCancelResponse:
    """Operationally cancel every future lesson of an instructor or vehicle."""
    try:
        cancelled = await asyncio.to_thread(
            appointment_service.cancel_for_resource,
            company_id,
            owner_type.value,
            owner_id,
            payload.reason,
        )
        return ResourceCancelResponse(
            owner_type=owner_type.value, owner_id=owner_id, cancelled=cancelled
        )
    except DomainException as e:
        handle_domain_exception(e)

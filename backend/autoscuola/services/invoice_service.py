# backend/autoscuola/services/invoice_service.py
"""
Invoice Finalizer for the autoscuola engine.

Issues exactly one electronic invoice per settled appointment. The invoice id
is checked under the row lock before the provider is called, and the
appointment id is sent as the provider idempotency key.
"""

from datetime import datetime
from typing import Any, Dict, Optional, TypedDict

from sqlalchemy.orm import Session

from ..core.clock import Clock
from ..core.config import settings
from ..core.timezone_utils import get_timezone, to_local
from ..integrations.invoicing_client import (
    HttpInvoicingClient,
    InvoicingClient,
    InvoicingError,
    ProviderNotConfiguredError,
)
from ..models.appointment import Appointment, InvoiceStatus, PaymentStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .directory_service import DirectoryService, SqlDirectoryService
from .payment_ledger import final_amount, is_finalizable

INVOICEABLE_PAYMENT_STATUSES = frozenset({PaymentStatus.PAID.value, PaymentStatus.WAIVED.value})
RETRYABLE_INVOICE_STATUSES = frozenset(
    {None, InvoiceStatus.PENDING_FIC.value, InvoiceStatus.FAILED.value}
)


class InvoiceSweepResult(TypedDict):
    processed: int
    issued: int
    pending_fic: int
    failed: int
    not_required: int
    skipped: int
    errors: int


class InvoiceService(BaseService):
    def __init__(
        self,
        db: Session,
        client: Optional[InvoicingClient] = None,
        directory: Optional[DirectoryService] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(db, clock)
        self._client = client
        self.directory = directory or SqlDirectoryService(db)
        self.appointment_repository = RepositoryFactory.create_appointment_repository(db)
        self.settings_repository = RepositoryFactory.create_company_settings_repository(db)

    @property
    def client(self) -> InvoicingClient:
        if self._client is None:
            self._client = HttpInvoicingClient(
                api_key=settings.invoicing_api_key,
                company_ref=settings.invoicing_company_ref,
                base_url=settings.invoicing_base_url,
                timeout=settings.invoicing_timeout_seconds,
            )
        return self._client

    @BaseService.measure_operation("process_invoice_finalization")
    def process_invoice_finalization(
        self, now: Optional[datetime] = None, limit: Optional[int] = None
    ) -> InvoiceSweepResult:
        now = now or self.now()
        candidates = self.appointment_repository.find_invoice_candidates(
            now, limit or settings.invoice_sweep_limit
        )
        result: InvoiceSweepResult = {
            "processed": 0,
            "issued": 0,
            "pending_fic": 0,
            "failed": 0,
            "not_required": 0,
            "skipped": 0,
            "errors": 0,
        }
        for appointment_id in [item.id for item in candidates]:
            result["processed"] += 1
            try:
                outcome = self.finalize_invoice(appointment_id, now)
            except Exception as exc:
                self.logger.error(
                    f"Invoice finalization failed for appointment {appointment_id}: {exc}",
                    exc_info=True,
                )
                self.db.rollback()
                result["errors"] += 1
                continue
            result[outcome] += 1  # type: ignore[literal-required]
            if outcome != "skipped":
                prometheus_metrics.record_invoice_outcome(outcome)

        prometheus_metrics.record_sweep("invoice", result["processed"])
        if candidates:
            self.logger.info(f"Invoice sweep finished: {result}")
        return result

    def finalize_invoice(self, appointment_id: str, now: datetime) -> str:
        """Issue the invoice for one appointment and return the resulting outcome."""
        with self.transaction():
            appointment = self.appointment_repository.get_by_id(appointment_id, for_update=True)
            if appointment is None or not self._still_invoiceable(appointment, now):
                return "skipped"
            if final_amount(appointment) == 0:
                appointment.invoice_status = InvoiceStatus.NOT_REQUIRED.value
                return InvoiceStatus.NOT_REQUIRED.value
            config = self.settings_repository.get_config(appointment.company_id)
            if not config.invoicing_enabled:
                appointment.invoice_status = InvoiceStatus.PENDING_FIC.value
                return InvoiceStatus.PENDING_FIC.value
            request = self._build_request(appointment, config)

        try:
            invoice_id = self.client.create_invoice(**request)
        except ProviderNotConfiguredError as exc:
            self.logger.warning(
                f"Invoicing not configured for company {appointment.company_id}: {exc}"
            )
            return self._store_outcome(appointment_id, InvoiceStatus.PENDING_FIC.value)
        except InvoicingError as exc:
            self.logger.error(
                f"Invoice for appointment {appointment_id} failed "
                f"(status {exc.status_code}): {exc}"
            )
            return self._store_outcome(appointment_id, InvoiceStatus.FAILED.value)

        self.logger.info(f"Issued invoice {invoice_id} for appointment {appointment_id}")
        return self._store_outcome(appointment_id, InvoiceStatus.ISSUED.value, invoice_id)

    @staticmethod
    def _still_invoiceable(appointment: Appointment, now: datetime) -> bool:
        return (
            appointment.payment_required
            and appointment.invoice_id is None
            and appointment.invoice_status in RETRYABLE_INVOICE_STATUSES
            and appointment.payment_status in INVOICEABLE_PAYMENT_STATUSES
            and is_finalizable(appointment, now)
        )

    def _build_request(self, appointment: Appointment, config) -> Dict[str, Any]:
        contact = self.directory.get_owner_contact(appointment.company_id, appointment.student_id)
        local_start = to_local(appointment.starts_at, get_timezone(config.timezone))
        return {
            "client_ref": {
                "name": contact.display_name,
                "email": contact.email,
                "phone": contact.phone,
                "code": appointment.student_id,
            },
            "line_items": [
                {
                    "description": f"Guida {appointment.lesson_type} del {local_start:%d/%m/%Y %H:%M}",
                    "amount_cents": final_amount(appointment),
                    "quantity": 1,
                }
            ],
            "vat_rule_ref": config.invoice_vat_rule_ref,
            "payment_method_ref": config.invoice_payment_method_ref,
            "currency": appointment.currency,
            "idempotency_key": appointment.id,
        }

    def _store_outcome(
        self, appointment_id: str, status: str, invoice_id: Optional[str] = None
    ) -> str:
        with self.transaction():
            appointment = self.appointment_repository.get_by_id(appointment_id, for_update=True)
            if appointment.invoice_id is not None:
                return "skipped"
            appointment.invoice_status = status
            if invoice_id is not None:
                appointment.invoice_id = invoice_id
        return status

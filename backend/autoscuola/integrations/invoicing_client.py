"""Minimal client for the electronic invoicing provider (Fatture in Cloud)."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx
from pydantic import SecretStr

logger = logging.getLogger(__name__)


class InvoicingError(RuntimeError):
    """Raised when the invoicing provider responds with an error."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        *,
        error_body: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_body = error_body


class ProviderNotConfiguredError(InvoicingError):
    """The company has no usable invoicing connection yet."""


class InvoicingClient(Protocol):
    def create_invoice(
        self,
        *,
        client_ref: Dict[str, Any],
        line_items: List[Dict[str, Any]],
        vat_rule_ref: Optional[str],
        payment_method_ref: Optional[str],
        currency: str,
        idempotency_key: str,
    ) -> str:
        ...


class HttpInvoicingClient:
    """Thin client for the invoicing provider's REST API."""

    def __init__(
        self,
        *,
        api_key: str | SecretStr | None,
        company_ref: Optional[str],
        base_url: str = "https://api-v2.fattureincloud.it",
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        secret_value = api_key.get_secret_value() if isinstance(api_key, SecretStr) else api_key
        self._api_key = secret_value or None
        self._company_ref = company_ref
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._api_key and self._company_ref)

    def create_invoice(
        self,
        *,
        client_ref: Dict[str, Any],
        line_items: List[Dict[str, Any]],
        vat_rule_ref: Optional[str],
        payment_method_ref: Optional[str],
        currency: str,
        idempotency_key: str,
    ) -> str:
        """Create and issue an invoice, returning the provider's invoice id."""

        if not self.configured:
            raise ProviderNotConfiguredError("Invoicing provider is not configured")
        if not vat_rule_ref:
            raise ProviderNotConfiguredError("No VAT rule configured for invoices")

        items = [
            {
                "name": item["description"],
                "qty": item.get("quantity", 1),
                "net_price": round(item["amount_cents"] / 100, 2),
                "vat": {"id": vat_rule_ref},
            }
            for item in line_items
        ]
        body: Dict[str, Any] = {
            "data": {
                "type": "invoice",
                "entity": {
                    key: value for key, value in client_ref.items() if value is not None
                },
                "currency": {"id": currency.upper()},
                "items_list": items,
            }
        }
        if payment_method_ref:
            body["data"]["payment_method"] = {"id": payment_method_ref}

        payload = self.request(
            "POST",
            f"/c/{self._company_ref}/issued_documents",
            json_body=body,
            headers={"Idempotency-Key": idempotency_key},
        )
        data = payload.get("data") if isinstance(payload, dict) else None
        invoice_id = data.get("id") if isinstance(data, dict) else None
        if invoice_id is None:
            raise InvoicingError("Invoicing provider response did not include an id", 200)
        return str(invoice_id)

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Dict[str, Any] | None = None,
        headers: Dict[str, str] | None = None,
    ) -> Dict[str, Any]:
        """Perform a raw provider request and return the parsed JSON payload."""

        url = f"{self._base_url}{path}"
        with httpx.Client(
            timeout=self._timeout,
            transport=self._transport,
            headers={
                "Accept": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            },
        ) as client:
            try:
                response = client.request(method, url, json=json_body, headers=headers)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                try:
                    error_payload: Any = exc.response.json()
                except json.JSONDecodeError:
                    error_payload = exc.response.text
                logger.error(
                    "Invoicing API error %s for %s %s: %s",
                    status,
                    method,
                    path,
                    error_payload,
                )
                if status in (401, 403):
                    raise ProviderNotConfiguredError(
                        "Invoicing provider rejected the credentials",
                        status,
                        error_body=error_payload,
                    ) from exc
                raise InvoicingError(
                    f"Invoicing API request failed with status {status}",
                    status,
                    error_body=error_payload,
                ) from exc
            except httpx.HTTPError as exc:
                logger.error("Invoicing API transport error for %s %s: %s", method, path, exc)
                raise InvoicingError(f"Invoicing API request failed: {exc}") from exc

        try:
            return response.json()
        except json.JSONDecodeError as exc:
            raise InvoicingError(
                "Invoicing API returned invalid JSON", response.status_code
            ) from exc

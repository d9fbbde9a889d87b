"""
Payment gateway adapter for off-session lesson charges and for the
customer-confirmed intents used to recover unpaid balances.

``PaymentGateway`` is the contract the payment service depends on; the
Stripe implementation maps SDK errors onto two outcomes the ledger knows how
to record: transient (network, rate limit, provider outage) and declined
(card or permission failures). Both are retried up to the attempt cap.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Dict, Optional, Protocol

from pydantic import SecretStr
import stripe

logger = logging.getLogger(__name__)


class GatewayError(RuntimeError):
    """Base error raised by payment gateway adapters."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code or "gateway_error"
        self.message = message


class GatewayTransientError(GatewayError):
    """Network failure, timeout, rate limit or provider-side outage."""


class GatewayDeclinedError(GatewayError):
    """Card declined, authentication required or permission failure."""


@dataclass(frozen=True)
class ChargeResult:
    payment_intent_id: str
    charge_id: Optional[str]
    status: str
    # What the provider captured; a replayed key reports the original amount
    amount_cents: Optional[int] = None


@dataclass(frozen=True)
class PaymentIntentState:
    """Provider-side view of an intent the customer confirms themselves."""

    payment_intent_id: str
    status: str
    amount_cents: int
    charge_id: Optional[str] = None
    client_secret: Optional[str] = None
    failure_code: Optional[str] = None
    failure_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


class PaymentGateway(Protocol):
    def create_customer(
        self, *, email: Optional[str], name: Optional[str], metadata: Dict[str, str]
    ) -> str:
        ...

    def charge_off_session(
        self,
        *,
        customer_id: str,
        payment_method_id: str,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
        destination_account: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> ChargeResult:
        ...

    def create_payment_intent(
        self,
        *,
        customer_id: str,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
        destination_account: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> PaymentIntentState:
        ...

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntentState:
        ...


class StripePaymentGateway:
    """Stripe-backed gateway using PaymentIntents confirmed off-session."""

    def __init__(
        self,
        *,
        api_key: str | SecretStr | None,
        timeout: float = 10.0,
    ) -> None:
        secret_value = api_key.get_secret_value() if isinstance(api_key, SecretStr) else api_key
        self._api_key = secret_value
        self._timeout = timeout
        if secret_value:
            stripe.api_key = secret_value
        # Each call is time-bounded; retries are driven by the ledger, not the SDK
        stripe.max_network_retries = 0
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def create_customer(
        self, *, email: Optional[str], name: Optional[str], metadata: Dict[str, str]
    ) -> str:
        self._require_configured()
        try:
            customer = stripe.Customer.create(email=email, name=name, metadata=metadata)
        except stripe.StripeError as exc:
            raise self._translate(exc) from exc
        return customer["id"]

    def charge_off_session(
        self,
        *,
        customer_id: str,
        payment_method_id: str,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
        destination_account: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> ChargeResult:
        self._require_configured()
        params: Dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency.lower(),
            "customer": customer_id,
            "payment_method": payment_method_id,
            "confirm": True,
            "off_session": True,
            "metadata": metadata or {},
        }
        if destination_account:
            params["transfer_data"] = {"destination": destination_account}

        try:
            intent = stripe.PaymentIntent.create(**params, idempotency_key=idempotency_key)
        except stripe.StripeError as exc:
            logger.warning(
                f"Stripe charge failed for key {idempotency_key}: "
                f"{type(exc).__name__} {getattr(exc, 'code', None)}"
            )
            raise self._translate(exc) from exc

        status = intent["status"]
        if status != "succeeded":
            # Off-session intents cannot complete customer actions
            raise GatewayDeclinedError(
                f"Payment intent {intent['id']} ended in status {status}",
                code=f"intent_{status}",
            )

        charged = intent.get("amount", amount_cents)
        logger.info(f"Stripe charge succeeded: intent={intent['id']} amount={charged}")
        return ChargeResult(
            payment_intent_id=intent["id"],
            charge_id=self._charge_id(intent),
            status=status,
            amount_cents=charged,
        )

    def create_payment_intent(
        self,
        *,
        customer_id: str,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
        destination_account: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> PaymentIntentState:
        """
        Create an unconfirmed intent for the customer to pay in the app.

        The saved card is kept for future off-session charges.
        """
        self._require_configured()
        params: Dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency.lower(),
            "customer": customer_id,
            "automatic_payment_methods": {"enabled": True},
            "setup_future_usage": "off_session",
            "metadata": metadata or {},
        }
        if destination_account:
            params["on_behalf_of"] = destination_account
            params["transfer_data"] = {"destination": destination_account}

        try:
            intent = stripe.PaymentIntent.create(**params, idempotency_key=idempotency_key)
        except stripe.StripeError as exc:
            logger.warning(
                f"Stripe intent creation failed for key {idempotency_key}: "
                f"{type(exc).__name__} {getattr(exc, 'code', None)}"
            )
            raise self._translate(exc) from exc
        return self._intent_state(intent)

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntentState:
        self._require_configured()
        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id)
        except stripe.StripeError as exc:
            raise self._translate(exc) from exc
        return self._intent_state(intent)

    @classmethod
    def _intent_state(cls, intent: Any) -> PaymentIntentState:
        last_error = intent.get("last_payment_error") or {}
        return PaymentIntentState(
            payment_intent_id=intent["id"],
            status=intent["status"],
            amount_cents=intent["amount"],
            charge_id=cls._charge_id(intent),
            client_secret=intent.get("client_secret"),
            failure_code=last_error.get("code"),
            failure_message=last_error.get("message"),
        )

    @staticmethod
    def _charge_id(intent: Any) -> Optional[str]:
        latest_charge = intent.get("latest_charge")
        if latest_charge is None or isinstance(latest_charge, str):
            return latest_charge
        return latest_charge.get("id")

    def _require_configured(self) -> None:
        if not self._api_key:
            raise GatewayDeclinedError("Payment gateway is not configured", code="not_configured")

    @staticmethod
    def _translate(exc: stripe.StripeError) -> GatewayError:
        code = getattr(exc, "code", None)
        message = getattr(exc, "user_message", None) or str(exc) or type(exc).__name__
        if isinstance(exc, (stripe.APIConnectionError, stripe.RateLimitError)):
            return GatewayTransientError(message, code=code or "network_error")
        if isinstance(exc, stripe.CardError):
            decline_code = getattr(exc, "decline_code", None)
            return GatewayDeclinedError(message, code=decline_code or code or "card_declined")
        if isinstance(
            exc,
            (stripe.AuthenticationError, stripe.PermissionError, stripe.InvalidRequestError),
        ):
            return GatewayDeclinedError(message, code=code or "permission_error")
        http_status = getattr(exc, "http_status", None)
        if isinstance(exc, stripe.APIError) or (http_status and http_status >= 500):
            return GatewayTransientError(message, code=code or "provider_error")
        return GatewayDeclinedError(message, code=code or "stripe_error")

# backend/autoscuola/services/notification_service.py
"""
Notification Service for the autoscuola engine.

Turns domain events into short student-facing notices and hands them to a
``NotificationDispatcher``. Channel selection (push, email, chat) belongs to
the dispatcher. Delivery is fire-and-forget: a dispatcher failure is logged
and never propagates into the appointment or payment flow that raised the
event.
"""

from datetime import datetime
import logging
from typing import Any, Dict, Optional, Protocol, Tuple

from ..core.constants import BRAND_NAME
from ..core.timezone_utils import get_timezone, to_local
from ..events.appointment_events import (
    AppointmentCreated,
    OperationalCancellationPending,
    PaymentInsoluto,
    ReplacementProposed,
)
from ..models.reposition_task import RepositionReason

logger = logging.getLogger(__name__)

_REASON_LABELS = {
    RepositionReason.INSTRUCTOR_CANCEL.value: "L'istruttore ha cancellato la guida",
    RepositionReason.VEHICLE_INACTIVE.value: "Il veicolo non è più disponibile",
    RepositionReason.INSTRUCTOR_INACTIVE.value: "L'istruttore non è più disponibile",
    RepositionReason.AVAILABILITY_CHANGED.value: "Disponibilità risorse aggiornata",
    RepositionReason.OWNER_DELETE.value: "La guida è stata rimossa dall'agenda autoscuola",
    RepositionReason.DIRECTORY_INSTRUCTOR_REMOVED.value: "Istruttore rimosso dalla directory",
}


class NotificationDispatcher(Protocol):
    def notify(
        self,
        company_id: str,
        user_id: str,
        title: str,
        body: str,
        kind: str,
        metadata: Dict[str, Any],
    ) -> None:
        ...


class LoggingNotificationDispatcher:
    """Default dispatcher: records notices in the application log."""

    def notify(
        self,
        company_id: str,
        user_id: str,
        title: str,
        body: str,
        kind: str,
        metadata: Dict[str, Any],
    ) -> None:
        logger.info(f"[notify] company={company_id} user={user_id} kind={kind} title={title!r}")


class NotificationService:
    def __init__(
        self,
        dispatcher: Optional[NotificationDispatcher] = None,
        timezone: Optional[str] = None,
    ):
        self.dispatcher = dispatcher or LoggingNotificationDispatcher()
        self.tz = get_timezone(timezone)

    def publish(self, event: Any) -> bool:
        """Render and dispatch an event. Returns False when nothing was delivered."""
        rendered = self._render(event)
        if rendered is None:
            logger.debug(f"No notification template for {type(event).__name__}")
            return False
        user_id, title, body, kind = rendered
        metadata = {
            key: value.isoformat() if isinstance(value, datetime) else value
            for key, value in event.to_dict().items()
        }
        try:
            self.dispatcher.notify(event.company_id, user_id, title, body, kind, metadata)
        except Exception as exc:
            logger.error(
                f"Notification dispatch failed for {type(event).__name__}: {exc}", exc_info=True
            )
            return False
        return True

    def _when(self, at: datetime) -> str:
        return to_local(at, self.tz).strftime("%d/%m %H:%M")

    def _render(self, event: Any) -> Optional[Tuple[str, str, str, str]]:
        if isinstance(event, ReplacementProposed):
            return (
                event.student_id,
                f"{BRAND_NAME} · Nuova proposta guida",
                f"Abbiamo trovato un nuovo slot per il {self._when(event.starts_at)}. "
                "Apri l'app per accettare o rifiutare.",
                "appointment_proposal",
            )
        if isinstance(event, OperationalCancellationPending):
            label = _REASON_LABELS.get(event.reason, "La guida è stata annullata")
            return (
                event.student_id,
                f"{BRAND_NAME} · Guida da riprogrammare",
                f"{label} ({self._when(event.starts_at)}). "
                "Stiamo cercando un nuovo slot e ti invieremo una proposta.",
                "appointment_cancelled",
            )
        if isinstance(event, PaymentInsoluto):
            return (
                event.student_id,
                f"{BRAND_NAME} · Pagamento non riuscito",
                f"Non siamo riusciti ad addebitare {event.amount_cents / 100:.2f} €. "
                "Aggiorna il metodo di pagamento per prenotare nuove guide.",
                "payment_insoluto",
            )
        if isinstance(event, AppointmentCreated):
            return (
                event.student_id,
                f"{BRAND_NAME} · Guida prenotata",
                f"La tua guida del {self._when(event.starts_at)} è confermata.",
                "appointment_created",
            )
        return None

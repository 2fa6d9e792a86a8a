# backend/auditoryx/services/notification_service.py
"""
Notification dispatch for booking lifecycle messages.

Delivery itself (email, push, in-app) belongs to an external provider. From
the ledger's side every send is fire-and-forget: failures are logged and
never propagate into the booking transition that triggered them.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    """Collaborator that actually delivers a message."""

    def notify(self, uid: str, template_key: str, data: Dict[str, Any]) -> None:
        ...


class LoggingNotificationDispatcher:
    """Default dispatcher: records the message in the application log."""

    def notify(self, uid: str, template_key: str, data: Dict[str, Any]) -> None:
        logger.info(
            "notification_dispatched",
            extra={"recipient_uid": uid, "template_key": template_key, "payload": data},
        )


class NotificationService:
    """Booking notifications with failure isolation."""

    def __init__(self, dispatcher: Optional[NotificationDispatcher] = None):
        self.dispatcher = dispatcher or LoggingNotificationDispatcher()

    def send(self, uid: str, template_key: str, data: Dict[str, Any]) -> bool:
        """Send one message; returns False instead of raising when delivery fails."""
        try:
            self.dispatcher.notify(uid, template_key, data)
            return True
        except Exception as exc:
            logger.warning(
                "Notification delivery failed",
                extra={
                    "recipient_uid": uid,
                    "template_key": template_key,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return False

    def send_booking_confirmed(self, booking: Any) -> bool:
        return self.send(
            booking.client_uid,
            "booking_confirmed",
            {
                "booking_id": booking.id,
                "provider_uid": booking.provider_uid,
                "scheduled_at": booking.scheduled_at.isoformat(),
            },
        )

    def send_refund_processed(self, booking: Any, *, refund_amount_cents: int) -> None:
        data = {
            "booking_id": booking.id,
            "refund_amount_cents": refund_amount_cents,
            "reason": booking.refund_reason,
        }
        self.send(booking.client_uid, "booking_refunded_client", data)
        self.send(booking.provider_uid, "booking_refunded_provider", data)

    def send_booking_cancelled(self, booking: Any, *, cancelled_by: Optional[str]) -> None:
        data = {"booking_id": booking.id, "cancelled_by": cancelled_by}
        for uid in (booking.client_uid, booking.provider_uid):
            if uid != cancelled_by:
                self.send(uid, "booking_cancelled", data)

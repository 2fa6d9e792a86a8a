"""
In-process handlers for booking lifecycle events drained from the outbox.

Delivery is at-least-once, so every handler must tolerate running twice for
the same event. A handler that raises leaves the event pending for retry.
"""

import logging
from typing import Any, Callable, Dict

from sqlalchemy.orm import Session

from ..core.enums import PaymentStatus, XPEvent
from ..models.booking import Booking
from ..services.notification_service import NotificationService
from ..services.xp_service import XPService

logger = logging.getLogger(__name__)

EventHandler = Callable[[Dict[str, Any], Session], None]


def handle_booking_completed(payload: Dict[str, Any], db: Session) -> None:
    """Credit the provider for the completed booking, keyed by booking id."""
    booking_id = payload["booking_id"]
    provider_uid = payload["provider_uid"]
    result = XPService(db).award_xp(
        provider_uid,
        XPEvent.BOOKING_CONFIRMED,
        context_id=booking_id,
        metadata={"booking_id": booking_id, "client_uid": payload.get("client_uid")},
    )
    logger.info(
        "Processed BookingCompleted",
        extra={
            "booking_id": booking_id,
            "provider_uid": provider_uid,
            "amount_awarded": result.amount_awarded,
            "duplicate": result.duplicate,
        },
    )


def handle_booking_cancelled(payload: Dict[str, Any], db: Session) -> None:
    """Tell the other party about a cancellation; refunds notify synchronously."""
    booking_id = payload["booking_id"]
    booking = db.get(Booking, booking_id)
    if booking is None:
        logger.warning("Cancelled booking %s not found; skipping", booking_id)
        return
    if booking.payment_status == PaymentStatus.REFUNDED.value:
        logger.debug("Refund notifications already sent for %s", booking_id)
        return
    NotificationService().send_booking_cancelled(
        booking, cancelled_by=payload.get("cancelled_by")
    )


EVENT_HANDLERS: Dict[str, EventHandler] = {
    "BookingCompleted": handle_booking_completed,
    "BookingCancelled": handle_booking_cancelled,
}


def process_event(event_type: str, payload: Dict[str, Any], db: Session) -> bool:
    """
    Run the handler registered for ``event_type``.

    Returns False when no handler exists (the event is considered delivered).
    """
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.warning("No handler registered for event type %s", event_type)
        return False
    handler(payload, db)
    return True

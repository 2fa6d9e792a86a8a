"""Event publisher - stages events in the outbox for background delivery."""
from datetime import datetime
from typing import Any, Dict, Protocol

from ..repositories.event_outbox_repository import EventOutboxRepository


class Event(Protocol):
    """Protocol for event types."""

    booking_id: str

    def to_dict(self) -> Dict[str, Any]:
        ...


class EventPublisher:
    """Publishes domain events into the transactional outbox."""

    def __init__(self, outbox_repository: EventOutboxRepository):
        self.outbox_repo = outbox_repository

    def publish(self, event: Event) -> None:
        """
        Stage an event in the caller's transaction.

        The row commits (or rolls back) together with the state change that
        produced it. One row per (event type, booking) is kept.
        """
        event_type = type(event).__name__
        payload = event.to_dict()

        # Convert datetime objects to ISO strings for JSON serialization
        for key, value in payload.items():
            if isinstance(value, datetime):
                payload[key] = value.isoformat()

        self.outbox_repo.enqueue(
            event_type=event_type,
            aggregate_id=event.booking_id,
            payload=payload,
            idempotency_key=f"{event_type}:{event.booking_id}",
        )

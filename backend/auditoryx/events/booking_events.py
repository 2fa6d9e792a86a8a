"""Booking domain events."""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class BookingCompleted:
    """Fired after a booking is marked complete."""

    booking_id: str
    client_uid: str
    provider_uid: str
    completed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookingCancelled:
    """Fired after a booking is cancelled."""

    booking_id: str
    cancelled_by: Optional[str]
    cancelled_at: datetime
    refund_amount_cents: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

# backend/auditoryx/repositories/booking_repository.py
"""
Booking Repository for the AuditoryX ledger.

Status writes go through the ORM so the mapper's ``version_id`` check runs;
callers flush/commit and handle ``StaleDataError``.
"""

from datetime import datetime
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.enums import BookingStatus, PaymentStatus
from ..core.exceptions import RepositoryException
from ..models.booking import Booking, BookingActivityLog
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def get_fresh(self, booking_id: str) -> Optional[Booking]:
        """Load the booking bypassing the identity map's cached state."""
        try:
            return (
                self.db.query(Booking)
                .filter(Booking.id == booking_id)
                .populate_existing()
                .one_or_none()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error loading booking %s: %s", booking_id, str(e))
            raise RepositoryException(f"Failed to load booking: {str(e)}")

    def list_stale_unpaid(self, created_before: datetime, *, limit: int = 500) -> List[Booking]:
        """Bookings still awaiting payment that were created before ``created_before``."""
        try:
            return (
                self.db.query(Booking)
                .filter(
                    Booking.status.in_(
                        [BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value]
                    ),
                    Booking.payment_status == PaymentStatus.PENDING.value,
                    Booking.created_at < created_before,
                )
                .order_by(Booking.created_at.asc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error listing stale unpaid bookings: %s", str(e))
            raise RepositoryException(f"Failed to list unpaid bookings: {str(e)}")

    def list_refunded_for_user(self, uid: str, *, limit: int = 100) -> List[Booking]:
        try:
            return (
                self.db.query(Booking)
                .filter(
                    or_(Booking.client_uid == uid, Booking.provider_uid == uid),
                    Booking.payment_status == PaymentStatus.REFUNDED.value,
                )
                .order_by(Booking.refunded_at.desc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error listing refunds for %s: %s", uid, str(e))
            raise RepositoryException(f"Failed to list refunds: {str(e)}")

    # Activity log

    def add_activity(
        self,
        *,
        booking_id: str,
        actor_uid: Optional[str],
        actor_role: str,
        action: str,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> BookingActivityLog:
        entry = BookingActivityLog(
            booking_id=booking_id,
            actor_uid=actor_uid,
            actor_role=actor_role,
            action=action,
            from_status=from_status,
            to_status=to_status,
            details=details or {},
        )
        self.db.add(entry)
        return entry

    def get_activity(self, booking_id: str) -> List[BookingActivityLog]:
        try:
            return (
                self.db.query(BookingActivityLog)
                .filter(BookingActivityLog.booking_id == booking_id)
                .order_by(BookingActivityLog.created_at.asc(), BookingActivityLog.id.asc())
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error loading activity for %s: %s", booking_id, str(e))
            raise RepositoryException(f"Failed to load booking activity: {str(e)}")

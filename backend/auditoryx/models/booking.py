# backend/auditoryx/models/booking.py
"""
Booking model for the AuditoryX marketplace.

A booking ties a client to a creator (provider) for one scheduled session.
Money is held in escrow from capture until completion or refund. Bookings
are never deleted: cancelled and reviewed bookings stay for audit.

Every UPDATE is a compare-and-swap on ``version_id``; two writers working
off the same read cannot both succeed.
"""

from datetime import datetime, timezone
import logging
from typing import Any, Dict, Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
import ulid

from ..core.enums import BookingStatus, PaymentStatus
from ..database import Base

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class Booking(Base):
    """
    Booking between a client and a creator.

    Attributes:
        client_uid: User paying for the session
        provider_uid: Creator delivering the session
        status: Position in the booking lifecycle
        scheduled_at: Session start (UTC)
        total_cost_cents: Captured amount in minor units
        payment_status: pending, paid or refunded
        payment_intent_id: Gateway reference used for refunds
        revenue_split: Optional role -> fraction map, frozen once paid
    """

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    client_uid = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    provider_uid = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value, index=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    total_cost_cents = Column(Integer, nullable=False)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    payment_intent_id = Column(String(255), nullable=True)
    revenue_split = Column(JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"), nullable=True)

    # Refund bookkeeping
    refund_amount_cents = Column(Integer, nullable=True)
    refund_reason = Column(Text, nullable=True)
    refund_id = Column(String(255), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(String(26), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=_now_utc, onupdate=func.now()
    )
    version_id = Column(Integer, nullable=False)

    activity = relationship(
        "BookingActivityLog",
        back_populates="booking",
        order_by="BookingActivityLog.created_at",
        lazy="select",
    )

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        CheckConstraint("total_cost_cents >= 0", name="ck_bookings_total_cost_non_negative"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'paid', 'in_progress', 'completed', "
            "'cancelled', 'disputed', 'reviewed')",
            name="ck_bookings_status",
        ),
        CheckConstraint(
            "payment_status IN ('pending', 'paid', 'refunded')",
            name="ck_bookings_payment_status",
        ),
        Index("ix_bookings_status_payment_created", "status", "payment_status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Booking {self.id} status={self.status} payment={self.payment_status}>"

    @property
    def status_enum(self) -> BookingStatus:
        return BookingStatus(self.status)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID.value

    def involves(self, uid: Optional[str]) -> bool:
        return uid is not None and uid in (self.client_uid, self.provider_uid)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "client_uid": self.client_uid,
            "provider_uid": self.provider_uid,
            "status": self.status,
            "scheduled_at": self.scheduled_at,
            "total_cost_cents": self.total_cost_cents,
            "payment_status": self.payment_status,
            "refund_amount_cents": self.refund_amount_cents,
        }


class BookingActivityLog(Base):
    """Append-only audit trail of booking lifecycle actions."""

    __tablename__ = "booking_activity_logs"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(String(26), ForeignKey("bookings.id"), nullable=False, index=True)
    actor_uid = Column(String(26), nullable=True)
    actor_role = Column(String(20), nullable=False)
    action = Column(String(50), nullable=False)
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=True)
    details = Column(JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now_utc)

    booking = relationship("Booking", back_populates="activity")

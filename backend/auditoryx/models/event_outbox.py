# backend/auditoryx/models/event_outbox.py
"""
Outbox table for booking lifecycle events.

Rows are inserted alongside the booking change that raised them and handed to
in-process handlers by ``auditoryx.tasks.outbox``. ``idempotency_key`` has the
form ``"{event_type}:{booking_id}"``.
"""

from __future__ import annotations

from enum import Enum

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
import ulid

from ..database import Base


class EventOutboxStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class EventOutbox(Base):
    __tablename__ = "event_outbox"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    event_type = Column(String(64), nullable=False, index=True)
    # Booking id for every event the ledger emits today
    aggregate_id = Column(String(26), nullable=False, index=True)
    idempotency_key = Column(String(128), nullable=False)
    payload = Column(JSONB().with_variant(JSON(), "sqlite"), nullable=False, default=dict)
    status = Column(String(16), nullable=False, default=EventOutboxStatus.PENDING.value, index=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True, index=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (UniqueConstraint("idempotency_key", name="uq_event_outbox_key"),)

    def __repr__(self) -> str:
        return f"<EventOutbox {self.idempotency_key} {self.status} attempts={self.attempt_count}>"

# backend/auditoryx/repositories/event_outbox_repository.py
"""
Outbox rows for booking lifecycle events.

``enqueue`` runs inside the caller's transaction so an event exists exactly
when the status change that produced it committed. The delivery task reads
due rows and records each attempt with ``mark_sent`` / ``mark_failed``.
"""

from __future__ import annotations

from datetime import timedelta
import logging
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..core.timezone_utils import utc_now
from ..models.event_outbox import EventOutbox, EventOutboxStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

LAST_ERROR_MAX_LENGTH = 1000


def outbox_key(event_type: str, aggregate_id: str) -> str:
    return f"{event_type}:{aggregate_id}"


class EventOutboxRepository(BaseRepository[EventOutbox]):
    def __init__(self, db: Session):
        super().__init__(db, EventOutbox)
        # Only Postgres can hand concurrent drainers disjoint batches.
        self._skip_locked = db.get_bind().dialect.name == "postgresql"

    def find_by_key(self, key: str) -> Optional[EventOutbox]:
        return self.db.execute(
            select(EventOutbox).where(EventOutbox.idempotency_key == key)
        ).scalar_one_or_none()

    def enqueue(
        self,
        event_type: str,
        aggregate_id: str,
        payload: Optional[dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> EventOutbox:
        """Stage an event; a repeat for the same key returns the row already queued."""
        key = idempotency_key or outbox_key(event_type, aggregate_id)
        existing = self.find_by_key(key)
        if existing is not None:
            logger.info("Outbox event %s already queued", key)
            return existing

        row = EventOutbox(
            event_type=event_type,
            aggregate_id=aggregate_id,
            payload=payload or {},
            idempotency_key=key,
            status=EventOutboxStatus.PENDING.value,
            attempt_count=0,
            next_attempt_at=utc_now(),
        )
        self.db.add(row)
        return row

    def fetch_pending(self, limit: int = 200) -> list[EventOutbox]:
        """Due PENDING events, oldest scheduled attempt first."""
        stmt = (
            select(EventOutbox)
            .where(
                EventOutbox.status == EventOutboxStatus.PENDING.value,
                EventOutbox.next_attempt_at <= utc_now(),
            )
            .order_by(EventOutbox.next_attempt_at.asc(), EventOutbox.id.asc())
            .limit(limit)
        )
        if self._skip_locked:
            stmt = stmt.with_for_update(skip_locked=True)
        return list(self.db.execute(stmt).scalars().all())

    def mark_sent(self, event_id: str, attempt_count: int) -> None:
        now = utc_now()
        self._set(
            event_id,
            status=EventOutboxStatus.SENT.value,
            attempt_count=attempt_count,
            last_error=None,
            next_attempt_at=now,
            updated_at=now,
        )

    def mark_failed(
        self,
        event_id: str,
        *,
        attempt_count: int,
        backoff_seconds: int,
        error: Optional[str] = None,
        terminal: bool = False,
    ) -> None:
        """Record a failed attempt; non-terminal failures stay PENDING until the backoff elapses."""
        now = utc_now()
        if terminal:
            status, next_attempt_at = EventOutboxStatus.FAILED.value, now
        else:
            status = EventOutboxStatus.PENDING.value
            next_attempt_at = now + timedelta(seconds=max(backoff_seconds, 1))
        self._set(
            event_id,
            status=status,
            attempt_count=attempt_count,
            last_error=error[:LAST_ERROR_MAX_LENGTH] if error else None,
            next_attempt_at=next_attempt_at,
            updated_at=now,
        )

    def _set(self, event_id: str, **values: Any) -> None:
        self.db.execute(update(EventOutbox).where(EventOutbox.id == event_id).values(**values))
        self.flush()

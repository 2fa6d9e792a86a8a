# backend/auditoryx/tasks/outbox.py
"""
Celery tasks for draining the booking event outbox.

Two-step workflow:
1. `outbox.dispatch_pending` periodically enqueues delivery tasks.
2. `outbox.deliver_event` runs the in-process handler for one event.

A failed delivery stays PENDING with a pushed-back ``next_attempt_at``; the
next dispatch picks it up again. After the last attempt it is marked FAILED.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from celery.utils.log import get_task_logger
from sqlalchemy.orm import Session

from auditoryx.core.config import settings
from auditoryx.database import SessionLocal
from auditoryx.events.handlers import process_event
from auditoryx.models.event_outbox import EventOutboxStatus
from auditoryx.monitoring.prometheus_metrics import PrometheusMetrics
from auditoryx.repositories.event_outbox_repository import EventOutboxRepository
from auditoryx.tasks.celery_app import celery_app

logger = get_task_logger(__name__)

MAX_DELIVERY_ATTEMPTS = 5
BACKOFF_SECONDS = [30, 120, 600, 1800, 7200]


def _next_backoff(attempt_number: int) -> int:
    """Return backoff delay for the given attempt (1-indexed)."""
    index = max(0, min(attempt_number - 1, len(BACKOFF_SECONDS) - 1))
    return BACKOFF_SECONDS[index]


@contextmanager
def _session_scope() -> Iterator[Session]:
    """Provide transactional scope for use in tasks."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def deliver_outbox_event(session: Session, event_id: str) -> Optional[str]:
    """
    Deliver one outbox event using ``session``.

    Returns the event id once delivered, None when it was skipped or failed.
    """
    repo = EventOutboxRepository(session)
    event = repo.get_by_id(event_id)
    if event is None:
        logger.warning("Outbox event %s missing; skipping", event_id)
        return None
    if event.status != EventOutboxStatus.PENDING.value:
        logger.info("Outbox event %s already %s; skipping", event_id, event.status)
        return None

    event_type = event.event_type
    payload = dict(event.payload or {})
    attempt_number = event.attempt_count + 1
    session.commit()
    PrometheusMetrics.record_outbox_attempt(event_type)

    try:
        process_event(event_type, payload, session)
    except Exception as exc:
        session.rollback()
        backoff = _next_backoff(attempt_number)
        terminal = attempt_number >= MAX_DELIVERY_ATTEMPTS
        repo.mark_failed(
            event_id,
            attempt_count=attempt_number,
            backoff_seconds=backoff,
            error=str(exc),
            terminal=terminal,
        )
        session.commit()
        if terminal:
            PrometheusMetrics.record_outbox_outcome(event_type, "failed")
            logger.exception(
                "Outbox event %s failed permanently after %s attempts",
                event_id,
                attempt_number,
            )
        else:
            logger.warning(
                "Outbox event %s attempt=%s failed; retrying in %ss: %s",
                event_id,
                attempt_number,
                backoff,
                exc,
            )
        return None

    repo.mark_sent(event_id, attempt_number)
    session.commit()
    PrometheusMetrics.record_outbox_outcome(event_type, "sent")
    logger.info(
        "Delivered outbox event %s type=%s attempts=%s", event_id, event_type, attempt_number
    )
    return event_id


@celery_app.task(name="outbox.dispatch_pending", max_retries=0)
def dispatch_pending() -> int:
    """
    Fetch pending outbox events and enqueue delivery tasks.

    Returns the number of events scheduled.
    """
    with _session_scope() as session:
        repo = EventOutboxRepository(session)
        pending = repo.fetch_pending(limit=settings.outbox_batch_size)
        for event in pending:
            deliver_event.apply_async((event.id,))
        scheduled: int = len(pending)
        if scheduled:
            logger.info("Scheduled %s outbox events for delivery", scheduled)
        return scheduled


@celery_app.task(name="outbox.deliver_event", max_retries=0)
def deliver_event(event_id: str) -> Optional[str]:
    """Deliver a single outbox event."""
    session = SessionLocal()
    try:
        return deliver_outbox_event(session, event_id)
    finally:
        session.close()

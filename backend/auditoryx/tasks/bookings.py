# backend/auditoryx/tasks/bookings.py
"""Celery tasks for booking housekeeping."""

from typing import Any, Dict

from celery.utils.log import get_task_logger

from auditoryx.database import SessionLocal
from auditoryx.services.booking_state_machine import BookingStateMachine
from auditoryx.tasks.celery_app import celery_app

logger = get_task_logger(__name__)


@celery_app.task(name="auditoryx.tasks.bookings.expire_unpaid", max_retries=0)
def expire_unpaid() -> Dict[str, Any]:
    """Cancel bookings whose payment never arrived."""
    db = SessionLocal()
    try:
        expired = BookingStateMachine(db).expire_stale_unpaid()
        if expired:
            logger.info("Expired %s unpaid bookings", expired)
        return {"expired": expired}
    finally:
        db.close()

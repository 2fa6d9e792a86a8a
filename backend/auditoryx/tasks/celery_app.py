# backend/auditoryx/tasks/celery_app.py
"""
Celery application for the ledger's background work.

Redis is both broker and result backend and tasks exchange JSON only. Two
queues are used: ``ledger`` for leaderboard and booking maintenance, and
``events`` for outbox delivery. Beat drives all periodic work in UTC.
"""

from datetime import datetime, timezone
import logging
import os
from typing import Any, Dict

from celery import Celery, Task
from celery.signals import setup_logging

from auditoryx.core.config import settings

logger = logging.getLogger(__name__)

TASK_MODULES = (
    "auditoryx.tasks.bookings",
    "auditoryx.tasks.leaderboard",
    "auditoryx.tasks.outbox",
)


class BaseTask(Task):  # type: ignore[misc]
    """Logs every task outcome with its id so worker logs can be joined to request logs."""

    def on_failure(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logger.error(
            f"Task {self.name}[{task_id}] failed: {exc}",
            exc_info=True,
            extra={"task_id": task_id, "task_name": self.name, "task_args": str(args)},
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval: Any, task_id: str, args: Any, kwargs: Any) -> None:
        logger.info(
            f"Task {self.name}[{task_id}] succeeded",
            extra={"task_id": task_id, "task_name": self.name},
        )
        super().on_success(retval, task_id, args, kwargs)


def _broker_url() -> str:
    url = os.getenv("CELERY_BROKER_URL") or settings.redis_url
    # Pin a database index so the broker never shares db 0 by accident with the lock keys
    if url.rstrip("/").rsplit("/", 1)[-1].isdigit():
        return url
    return f"{url.rstrip('/')}/1"


def create_celery_app() -> Celery:
    broker_url = _broker_url()
    app = Celery(
        "auditoryx",
        broker=broker_url,
        backend=os.getenv("CELERY_RESULT_BACKEND") or broker_url,
        task_cls=BaseTask,
    )
    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        # Leaderboard resets key off the UTC month
        timezone="UTC",
        enable_utc=True,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        task_soft_time_limit=300,
        task_time_limit=600,
        worker_prefetch_multiplier=1,
        worker_hijack_root_logger=False,
        result_expires=3600,
        imports=TASK_MODULES,
        task_routes={
            "auditoryx.tasks.leaderboard.*": {"queue": "ledger"},
            "auditoryx.tasks.bookings.*": {"queue": "ledger"},
            "outbox.*": {"queue": "events"},
        },
    )

    from auditoryx.tasks.beat_schedule import get_beat_schedule

    app.conf.beat_schedule = get_beat_schedule(settings.environment)
    return app


@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Workers log in the same format as the API process."""
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


celery_app = create_celery_app()


@celery_app.task(name="auditoryx.tasks.health_check")  # type: ignore[misc]
def health_check() -> Dict[str, str]:
    current = celery_app.current_task
    return {
        "status": "healthy",
        "worker": current.request.hostname if current else "unknown",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

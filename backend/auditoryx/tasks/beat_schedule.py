# backend/auditoryx/tasks/beat_schedule.py
"""
Celery Beat schedule for the ledger's periodic work.

All crontabs are UTC (the Celery app runs with ``timezone="UTC"``).
"""

from datetime import timedelta
import logging
import os
from typing import Any

from celery.schedules import crontab

CELERYBEAT_SCHEDULE: dict[str, dict[str, Any]] = {
    # Rebuild (city, role) leaderboards; the run on the 1st also resets monthly points
    "aggregate-leaderboards": {
        "task": "auditoryx.tasks.leaderboard.run_aggregation",
        "schedule": crontab(hour=0, minute=5),
        "options": {"queue": "ledger", "priority": 5},
    },
    # Cancel bookings that were never paid
    "expire-unpaid-bookings": {
        "task": "auditoryx.tasks.bookings.expire_unpaid",
        "schedule": crontab(minute=15),
        "options": {"queue": "ledger", "priority": 4},
    },
    # Drain the booking event outbox
    "dispatch-outbox-events": {
        "task": "outbox.dispatch_pending",
        "schedule": timedelta(minutes=1),
        "options": {"queue": "events", "priority": 6},
    },
}

SCHEDULE_CONFIG: dict[str, dict[str, dict[str, Any]]] = {
    "production": CELERYBEAT_SCHEDULE,
    "testing": {
        "dispatch-outbox-events": {
            "task": "outbox.dispatch_pending",
            "schedule": timedelta(seconds=30),
            "options": {"queue": "events", "priority": 10},
        },
    },
}


def _parse_cron_expression(cron_expr: str) -> Any:
    """Convert a five-field cron expression into a Celery crontab schedule."""
    parts = cron_expr.strip().split()
    if len(parts) != 5:
        logging.getLogger(__name__).warning(
            "Invalid LEADERBOARD_CRON expression '%s'; falling back to 5 0 * * *",
            cron_expr,
        )
        parts = ["5", "0", "*", "*", "*"]
    minute, hour, day_of_month, month_of_year, day_of_week = parts
    return crontab(
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month_of_year=month_of_year,
        day_of_week=day_of_week,
    )


def get_beat_schedule(environment: str = "production") -> dict[str, dict[str, Any]]:
    """
    Get the beat schedule for the specified environment.

    Args:
        environment: The environment name (production, development, testing)

    Returns:
        Mapping of task name to Celery beat configuration dict
    """
    base: dict[str, dict[str, Any]] = {
        key: dict(value) for key, value in CELERYBEAT_SCHEDULE.items()
    }
    overrides = SCHEDULE_CONFIG.get(environment)
    if overrides and overrides is not CELERYBEAT_SCHEDULE:
        base.update(overrides)
    leaderboard_cron = os.getenv("LEADERBOARD_CRON")
    if leaderboard_cron:
        base["aggregate-leaderboards"]["schedule"] = _parse_cron_expression(leaderboard_cron)
    return base

# backend/auditoryx/tasks/leaderboard.py
"""Celery task for the daily leaderboard rebuild."""

from typing import Any, Dict

from celery.utils.log import get_task_logger

from auditoryx.database import SessionLocal
from auditoryx.services.leaderboard_service import LeaderboardService
from auditoryx.tasks.celery_app import celery_app

logger = get_task_logger(__name__)


@celery_app.task(name="auditoryx.tasks.leaderboard.run_aggregation", max_retries=0)
def run_aggregation() -> Dict[str, Any]:
    """
    Rebuild all leaderboards.

    Not retried: failed groups are repaired by the next scheduled run, except
    on the 1st when the monthly reset has already zeroed their points.
    """
    db = SessionLocal()
    try:
        result = LeaderboardService(db).run_leaderboard_aggregation()
        if result.groups_failed:
            logger.warning(
                "Leaderboard run finished with %s failed groups", result.groups_failed
            )
        return result.to_dict()
    finally:
        db.close()

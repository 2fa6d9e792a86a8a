# backend/auditoryx/services/leaderboard_service.py
"""
Leaderboard aggregation.

Every run rebuilds each (city, role) group from scratch; there are no
incremental updates to get out of sync. Groups that lost all their members
are cleared. Groups commit independently, so one failing group never blocks
the others and the next run repairs it, unless the monthly reset has already
zeroed the points it would have ranked.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.constants import LEADERBOARD_SIZE
from ..core.timezone_utils import ensure_utc, utc_now
from ..database import with_db_retry
from ..models.leaderboard import LeaderboardEntry
from ..models.progress import UserProgress
from ..models.user import User
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)

GroupKey = Tuple[str, str]


@dataclass(frozen=True)
class AggregationResult:
    groups_written: int
    groups_failed: int
    reset_applied: bool
    groups_cleared: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "groups_written": self.groups_written,
            "groups_failed": self.groups_failed,
            "groups_cleared": self.groups_cleared,
            "reset_applied": self.reset_applied,
        }


def ranking_period(moment: datetime) -> str:
    """
    Month whose points are being ranked, as ``YYYY-MM``.

    On the 1st the counters still hold the previous month's points (they are
    reset at the end of that run).
    """
    if moment.day == 1:
        if moment.month == 1:
            return f"{moment.year - 1:04d}-12"
        return f"{moment.year:04d}-{moment.month - 1:02d}"
    return f"{moment.year:04d}-{moment.month:02d}"


def rank_group(members: List[Tuple[User, UserProgress]]) -> List[Tuple[User, UserProgress]]:
    """Top entries by monthly points, ties broken by uid."""
    ordered = sorted(members, key=lambda pair: (-(pair[1].points_month or 0), pair[0].id))
    return ordered[:LEADERBOARD_SIZE]


class LeaderboardService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.progress_repository = RepositoryFactory.create_user_progress_repository(db)
        self.leaderboard_repository = RepositoryFactory.create_leaderboard_repository(db)

    def _collect_groups(self) -> Dict[GroupKey, List[Tuple[User, UserProgress]]]:
        candidates = with_db_retry(
            "leaderboard_candidates", self.progress_repository.list_ranked_candidates
        )
        groups: Dict[GroupKey, List[Tuple[User, UserProgress]]] = defaultdict(list)
        for user, progress in candidates:
            groups[(user.city, user.role)].append((user, progress))
        return groups

    @BaseService.measure_operation("run_leaderboard_aggregation")
    def run_leaderboard_aggregation(self, now: Optional[datetime] = None) -> AggregationResult:
        """
        Rebuild every (city, role) leaderboard.

        Groups left without members are emptied. On the 1st of the month
        (UTC), monthly points are zeroed after all groups have been written;
        a group that failed in that run cannot be rebuilt and is logged as lost.
        """
        moment = ensure_utc(now) if now is not None else utc_now()
        period = ranking_period(moment)

        groups = self._collect_groups()
        # Plain rows; the session is rolled back between groups
        snapshots = {
            key: [
                {
                    "uid": user.id,
                    "display_name": user.display_name,
                    "points_month": int(progress.points_month or 0),
                }
                for user, progress in rank_group(members)
            ]
            for key, members in groups.items()
        }
        # Groups whose members all moved away or lost their city or role
        for key in with_db_retry("leaderboard_groups", self.leaderboard_repository.list_group_keys):
            snapshots.setdefault(key, [])
        self.db.rollback()

        written = 0
        cleared = 0
        failed_groups: List[GroupKey] = []
        for (city, role), ranked in sorted(snapshots.items()):
            rows = [
                {**row, "rank": position, "period": period, "generated_at": moment}
                for position, row in enumerate(ranked, start=1)
            ]
            try:
                self.leaderboard_repository.replace_group(city, role, rows)
                self.db.commit()
                if ranked:
                    written += 1
                    prometheus_metrics.record_leaderboard_group("written")
                else:
                    cleared += 1
                    prometheus_metrics.record_leaderboard_group("cleared")
                    self.logger.info(
                        "Leaderboard group cleared", extra={"city": city, "role": role}
                    )
            except Exception as exc:
                self.db.rollback()
                failed_groups.append((city, role))
                prometheus_metrics.record_leaderboard_group("failed")
                self.logger.error(
                    "Leaderboard group failed",
                    extra={
                        "city": city,
                        "role": role,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                )

        reset_applied = False
        if moment.day == 1:
            with self.transaction():
                reset_count = self.progress_repository.reset_points_month()
            # Bulk update bypassed the identity map
            self.db.expire_all()
            reset_applied = True
            self.logger.info(
                "Monthly points reset", extra={"period": period, "users_reset": reset_count}
            )
            for city, role in failed_groups:
                self.logger.error(
                    "Leaderboard group lost at month reset",
                    extra={"city": city, "role": role, "period": period},
                )

        result = AggregationResult(
            groups_written=written,
            groups_failed=len(failed_groups),
            reset_applied=reset_applied,
            groups_cleared=cleared,
        )
        self.log_operation("leaderboard_aggregation", period=period, **result.to_dict())
        return result

    def get_leaderboard(self, city: str, role: str) -> List[LeaderboardEntry]:
        with self.transaction():
            return with_db_retry(
                "leaderboard_read", lambda: self.leaderboard_repository.get_group(city, role)
            )

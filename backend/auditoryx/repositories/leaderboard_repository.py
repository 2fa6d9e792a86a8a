"""Repository for leaderboard snapshot rows."""

from typing import Any, Dict, List, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.leaderboard import LeaderboardEntry
from .base_repository import BaseRepository


class LeaderboardRepository(BaseRepository[LeaderboardEntry]):
    def __init__(self, db: Session):
        super().__init__(db, LeaderboardEntry)

    def replace_group(self, city: str, role: str, rows: Sequence[Dict[str, Any]]) -> int:
        """
        Supersede every entry for (city, role) with ``rows``.

        Does NOT commit; the service commits each group on its own. The delete
        is issued as a statement before the inserts so the rank constraint
        never sees old and new rows together.
        """
        try:
            self.db.query(LeaderboardEntry).filter(
                LeaderboardEntry.city == city, LeaderboardEntry.role == role
            ).delete(synchronize_session=False)
            for row in rows:
                self.db.add(LeaderboardEntry(city=city, role=role, **row))
            self.db.flush()
            return len(rows)
        except SQLAlchemyError as e:
            self.logger.error("Error replacing leaderboard %s/%s: %s", city, role, str(e))
            raise RepositoryException(f"Failed to replace leaderboard group: {str(e)}")

    def list_group_keys(self) -> List[Tuple[str, str]]:
        """Every (city, role) that currently has snapshot rows."""
        try:
            rows = self.db.query(LeaderboardEntry.city, LeaderboardEntry.role).distinct().all()
            return [(city, role) for city, role in rows]
        except SQLAlchemyError as e:
            self.logger.error("Error listing leaderboard groups: %s", str(e))
            raise RepositoryException(f"Failed to list leaderboard groups: {str(e)}")

    def get_group(self, city: str, role: str) -> List[LeaderboardEntry]:
        return self._execute_query(
            self._build_query()
            .filter(LeaderboardEntry.city == city, LeaderboardEntry.role == role)
            .order_by(LeaderboardEntry.rank.asc())
        )

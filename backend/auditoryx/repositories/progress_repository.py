"""Repository for user progress rows and the XP transaction log."""

from datetime import date, datetime
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.progress import AdminXPOperation, UserProgress, XPTransaction
from ..models.user import User
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class UserProgressRepository(BaseRepository[UserProgress]):
    """Data access for ``user_progress``."""

    def __init__(self, db: Session):
        super().__init__(db, UserProgress)

    def get_fresh(self, uid: str) -> Optional[UserProgress]:
        """Load progress with current database values (used at the start of each retry)."""
        try:
            return (
                self.db.query(UserProgress)
                .filter(UserProgress.uid == uid)
                .populate_existing()
                .one_or_none()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error loading progress for %s: %s", uid, str(e))
            raise RepositoryException(f"Failed to load user progress: {str(e)}")

    def create_default(self, uid: str) -> UserProgress:
        """Stage a zeroed progress row; the caller's flush detects creation races."""
        progress = UserProgress(
            uid=uid,
            total_xp=0,
            daily_xp=0,
            streak_count=0,
            tier_frozen=False,
            late_deliveries=0,
            points_month=0,
        )
        self.db.add(progress)
        return progress

    def list_ranked_candidates(self) -> List[Tuple[User, UserProgress]]:
        """Users with both city and role set, paired with their progress."""
        try:
            rows = (
                self.db.query(User, UserProgress)
                .join(UserProgress, UserProgress.uid == User.id)
                .filter(and_(User.city.isnot(None), User.role.isnot(None)))
                .all()
            )
            return [(user, progress) for user, progress in rows]
        except SQLAlchemyError as e:
            self.logger.error("Error listing leaderboard candidates: %s", str(e))
            raise RepositoryException(f"Failed to list leaderboard candidates: {str(e)}")

    def reset_points_month(self) -> int:
        """
        Zero ``points_month`` for every user in one statement.

        Bumps ``version_id`` so in-flight awards that read the old row retry.
        """
        try:
            result = self.db.execute(
                update(UserProgress)
                .where(UserProgress.points_month != 0)
                .values(points_month=0, version_id=UserProgress.version_id + 1)
                .execution_options(synchronize_session=False)
            )
            return int(result.rowcount or 0)
        except SQLAlchemyError as e:
            self.logger.error("Error resetting monthly points: %s", str(e))
            raise RepositoryException(f"Failed to reset monthly points: {str(e)}")


class XPTransactionRepository(BaseRepository[XPTransaction]):
    """Append-only access to ``xp_transactions``."""

    def __init__(self, db: Session):
        super().__init__(db, XPTransaction)

    def find_by_key(self, uid: str, event: str, context_id: str) -> Optional[XPTransaction]:
        try:
            return (
                self.db.query(XPTransaction)
                .filter(
                    XPTransaction.uid == uid,
                    XPTransaction.event == event,
                    XPTransaction.context_id == context_id,
                )
                .one_or_none()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error looking up XP transaction: %s", str(e))
            raise RepositoryException(f"Failed to look up XP transaction: {str(e)}")

    def append(
        self,
        *,
        uid: str,
        event: str,
        amount_awarded: int,
        nominal_amount: int,
        context_id: Optional[str],
        metadata: Optional[Dict[str, Any]],
        occurred_at: Any,
        day_bucket: date,
        daily_cap_reached: bool,
        source: str,
    ) -> XPTransaction:
        transaction = XPTransaction(
            uid=uid,
            event=event,
            amount_awarded=amount_awarded,
            nominal_amount=nominal_amount,
            context_id=context_id,
            metadata_json=metadata or None,
            occurred_at=occurred_at,
            day_bucket=day_bucket,
            daily_cap_reached=daily_cap_reached,
            source=source,
        )
        self.db.add(transaction)
        return transaction

    def awarded_on_day(self, uid: str, day_bucket: date) -> int:
        """XP actually credited to ``uid`` on one accounting day, read from the log."""
        try:
            total = (
                self.db.query(func.coalesce(func.sum(XPTransaction.amount_awarded), 0))
                .filter(XPTransaction.uid == uid, XPTransaction.day_bucket == day_bucket)
                .scalar()
            )
            return int(total or 0)
        except SQLAlchemyError as e:
            self.logger.error("Error summing XP for %s on %s: %s", uid, day_bucket, str(e))
            raise RepositoryException(f"Failed to sum daily XP: {str(e)}")

    def recent_activity(
        self, uid: str, event: str, since: datetime
    ) -> Tuple[int, Optional[datetime]]:
        """Count and latest ``occurred_at`` of ``event`` awards to ``uid`` after ``since``."""
        try:
            count, latest = (
                self.db.query(func.count(XPTransaction.id), func.max(XPTransaction.occurred_at))
                .filter(
                    XPTransaction.uid == uid,
                    XPTransaction.event == event,
                    XPTransaction.occurred_at > since,
                )
                .one()
            )
            return int(count or 0), latest
        except SQLAlchemyError as e:
            self.logger.error("Error reading recent XP activity for %s: %s", uid, str(e))
            raise RepositoryException(f"Failed to read recent XP activity: {str(e)}")

    def list_for_user(self, uid: str, *, limit: int) -> List[XPTransaction]:
        try:
            return (
                self.db.query(XPTransaction)
                .filter(XPTransaction.uid == uid)
                .order_by(XPTransaction.occurred_at.desc(), XPTransaction.id.desc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error("Error listing XP history for %s: %s", uid, str(e))
            raise RepositoryException(f"Failed to list XP history: {str(e)}")


class AdminXPOperationRepository(BaseRepository[AdminXPOperation]):
    def __init__(self, db: Session):
        super().__init__(db, AdminXPOperation)

    def record(
        self,
        *,
        admin_uid: Optional[str],
        target_uid: str,
        operation: str,
        amount: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> AdminXPOperation:
        entry = AdminXPOperation(
            admin_uid=admin_uid,
            target_uid=target_uid,
            operation=operation,
            amount=amount,
            reason=reason,
        )
        self.db.add(entry)
        return entry

    def list_for_user(self, target_uid: str) -> List[AdminXPOperation]:
        return self._execute_query(
            self._build_query()
            .filter(AdminXPOperation.target_uid == target_uid)
            .order_by(AdminXPOperation.created_at.desc())
        )

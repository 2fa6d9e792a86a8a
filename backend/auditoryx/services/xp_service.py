# backend/auditoryx/services/xp_service.py
"""
XP award service.

Each award is one atomic unit per user: the progress row (a versioned
compare-and-swap) and the transaction log row commit together or not at
all. The unique key on (uid, event, context_id) makes retried deliveries
of the same real-world event harmless.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..core.constants import (
    DAILY_XP_CAP,
    STREAK_WINDOW_HOURS,
    XP_HISTORY_DEFAULT_LIMIT,
    XP_HISTORY_MAX_LIMIT,
    XP_RATE_RULES,
    XP_REWARDS,
)
from ..core.enums import Tier, XPEvent, XPSource
from ..core.exceptions import NotFoundException, ValidationException, XPRateLimitedException
from ..core.timezone_utils import accounting_day, ensure_utc, utc_now
from ..domain.tiers import TierProgress, classify, next_tier_progress
from ..models.progress import UserProgress, XPTransaction
from ..models.user import User
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)

# Lost CAS races and concurrent inserts of the same key both retry
AWARD_CONFLICT_ERRORS = (StaleDataError, IntegrityError)


@dataclass(frozen=True)
class XPAwardResult:
    amount_awarded: int
    transaction_id: str
    nominal_amount: int
    daily_cap_reached: bool
    duplicate: bool
    total_xp: int
    tier: Tier

    def to_payload(self) -> Dict[str, Any]:
        return {
            "amount_awarded": self.amount_awarded,
            "transaction_id": self.transaction_id,
            "nominal_amount": self.nominal_amount,
            "daily_cap_reached": self.daily_cap_reached,
            "duplicate": self.duplicate,
            "total_xp": self.total_xp,
            "tier": self.tier.value,
        }


@dataclass(frozen=True)
class ProgressSnapshot:
    """Read model for a user's progress; zeroed for users who never earned XP."""

    uid: str
    total_xp: int
    daily_xp: int
    daily_bucket: Optional[date]
    streak_count: int
    last_activity_at: Optional[datetime]
    tier: Tier
    tier_frozen: bool
    late_deliveries: int
    points_month: int
    next_tier: TierProgress
    persisted: bool


def parse_award_event(event: XPEvent | str) -> XPEvent:
    """Only events with a fixed reward can be awarded through ``award_xp``."""
    try:
        parsed = XPEvent(event)
    except ValueError:
        raise ValidationException(
            f"Unknown XP event: {event}",
            code="UNKNOWN_XP_EVENT",
            details={"allowed": [e.value for e in XP_REWARDS]},
        )
    if parsed not in XP_REWARDS:
        raise ValidationException(
            f"{parsed.value} cannot be awarded automatically",
            code="UNKNOWN_XP_EVENT",
            details={"allowed": [e.value for e in XP_REWARDS]},
        )
    return parsed


class XPService(BaseService):
    """Awards XP, enforces the daily cap and keeps tiers in sync."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.progress_repository = RepositoryFactory.create_user_progress_repository(db)
        self.transaction_repository = RepositoryFactory.create_xp_transaction_repository(db)

    @BaseService.measure_operation("award_xp")
    def award_xp(
        self,
        uid: str,
        event: XPEvent | str,
        *,
        context_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        quick_reply: bool = False,
        now: Optional[datetime] = None,
    ) -> XPAwardResult:
        """
        Credit the reward for ``event`` to ``uid``.

        The credited amount may be lower than the reward (possibly zero) when
        the daily cap is hit; that is reported, not raised. Repeating an award
        with the same ``context_id`` returns the original transaction.
        """
        xp_event = parse_award_event(event)
        nominal = XP_REWARDS[xp_event]
        moment = ensure_utc(now) if now is not None else utc_now()

        def _operation() -> XPAwardResult:
            if context_id is not None:
                existing = self.transaction_repository.find_by_key(uid, xp_event.value, context_id)
                if existing is not None:
                    return self._duplicate_result(existing)
            self._check_rate_limits(uid, xp_event, moment)
            transaction, progress = self.stage_credit(
                uid,
                event=xp_event,
                nominal_amount=nominal,
                moment=moment,
                context_id=context_id,
                metadata=metadata,
                quick_reply=quick_reply,
                source=XPSource.EVENT,
            )
            return XPAwardResult(
                amount_awarded=transaction.amount_awarded,
                transaction_id=transaction.id,
                nominal_amount=nominal,
                daily_cap_reached=transaction.daily_cap_reached,
                duplicate=False,
                total_xp=progress.total_xp,
                tier=Tier(progress.tier),
            )

        result = self.retry_on_conflict(
            "user_progress", uid, _operation, conflict_errors=AWARD_CONFLICT_ERRORS
        )

        if result.duplicate:
            outcome = "duplicate"
        elif result.daily_cap_reached:
            outcome = "capped"
        else:
            outcome = "credited"
        prometheus_metrics.record_xp_award(xp_event.value, outcome, result.amount_awarded)
        if not result.duplicate:
            self.log_operation(
                "xp_awarded",
                uid=uid,
                xp_event=xp_event.value,
                context_id=context_id,
                amount_awarded=result.amount_awarded,
                daily_cap_reached=result.daily_cap_reached,
            )
        return result

    def _check_rate_limits(self, uid: str, event: XPEvent, moment: datetime) -> None:
        """Refuse awards inside the event's cooldown or over its hourly or daily limit."""
        rule = XP_RATE_RULES.get(event)
        if rule is None:
            return
        cooldown = timedelta(minutes=rule.cooldown_minutes)
        _, latest = self.transaction_repository.recent_activity(
            uid, event.value, moment - cooldown
        )
        if latest is not None:
            remaining = ensure_utc(latest) + cooldown - moment
            if remaining > timedelta(0):
                minutes = -(-int(remaining.total_seconds()) // 60)
                self._reject_rate_limited(
                    uid,
                    event,
                    "cooldown_violation",
                    f"Cooldown period active. {minutes} minutes remaining.",
                    retry_after=int(remaining.total_seconds()),
                )

        hourly, _ = self.transaction_repository.recent_activity(
            uid, event.value, moment - timedelta(hours=1)
        )
        if hourly >= rule.max_per_hour:
            self._reject_rate_limited(
                uid,
                event,
                "rate_limit_exceeded",
                f"Hourly rate limit exceeded for {event.value}. Max {rule.max_per_hour} per hour.",
                retry_after=3600,
            )
        daily, _ = self.transaction_repository.recent_activity(
            uid, event.value, moment - timedelta(days=1)
        )
        if daily >= rule.max_per_day:
            self._reject_rate_limited(
                uid,
                event,
                "rate_limit_exceeded",
                f"Daily rate limit exceeded for {event.value}. Max {rule.max_per_day} per day.",
                retry_after=86400,
            )

    def _reject_rate_limited(
        self, uid: str, event: XPEvent, violation: str, message: str, *, retry_after: int
    ) -> None:
        self.logger.warning(
            "XP award refused",
            extra={"uid": uid, "xp_event": event.value, "violation": violation},
        )
        prometheus_metrics.record_xp_award(event.value, "rate_limited", 0)
        raise XPRateLimitedException(
            message,
            retry_after=retry_after,
            details={"uid": uid, "event": event.value, "violation": violation},
        )

    def _duplicate_result(self, existing: XPTransaction) -> XPAwardResult:
        self.logger.warning(
            "Suspicious activity: duplicate XP award suppressed",
            extra={
                "uid": existing.uid,
                "xp_event": existing.event,
                "context_id": existing.context_id,
                "transaction_id": existing.id,
            },
        )
        progress = self.progress_repository.get_fresh(existing.uid)
        return XPAwardResult(
            amount_awarded=existing.amount_awarded,
            transaction_id=existing.id,
            nominal_amount=existing.nominal_amount,
            daily_cap_reached=existing.daily_cap_reached,
            duplicate=True,
            total_xp=progress.total_xp if progress is not None else 0,
            tier=Tier(progress.tier) if progress is not None else Tier.STANDARD,
        )

    def stage_credit(
        self,
        uid: str,
        *,
        event: XPEvent,
        nominal_amount: int,
        moment: datetime,
        context_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        quick_reply: bool = False,
        source: XPSource = XPSource.EVENT,
        bypass_cap: bool = False,
    ) -> tuple[XPTransaction, UserProgress]:
        """
        Apply one credit to the session without committing.

        The caller commits (normally through ``retry_on_conflict``) so the
        progress update and the log row land in the same transaction.
        ``bypass_cap`` credits the full amount; ``daily_xp`` still saturates
        at the cap. A credit dated before the stored accounting day is capped
        against that day's logged total and leaves ``daily_xp`` untouched.
        """
        user = self.db.get(User, uid)
        if user is None:
            raise NotFoundException(f"User {uid} not found", code="USER_NOT_FOUND")

        progress = self.progress_repository.get_fresh(uid)
        if progress is None:
            progress = self.progress_repository.create_default(uid)

        bucket = accounting_day(moment, user.timezone)
        if progress.daily_bucket is None or bucket > progress.daily_bucket:
            progress.daily_xp = 0
            progress.daily_bucket = bucket
        current_day = bucket == progress.daily_bucket

        if current_day:
            daily_xp = progress.daily_xp or 0
        else:
            # Backdated credit counts against its own day; the running counter stays put
            daily_xp = min(DAILY_XP_CAP, self.transaction_repository.awarded_on_day(uid, bucket))
        if bypass_cap:
            credited = nominal_amount
        else:
            credited = min(nominal_amount, max(0, DAILY_XP_CAP - daily_xp))
        if current_day:
            progress.daily_xp = min(DAILY_XP_CAP, daily_xp + credited)
        cap_reached = credited < nominal_amount

        previous_activity = progress.last_activity_at
        progress.total_xp = (progress.total_xp or 0) + credited
        progress.points_month = (progress.points_month or 0) + credited
        if previous_activity is None or moment >= ensure_utc(previous_activity):
            progress.last_activity_at = moment
        progress.updated_at = moment
        if quick_reply:
            progress.streak_count = self._next_streak(
                progress.streak_count or 0, previous_activity, moment
            )

        previous_tier = progress.tier
        new_tier = classify(progress.total_xp, bool(progress.tier_frozen), previous_tier)
        progress.tier = new_tier.value
        if previous_tier is not None and previous_tier != new_tier.value:
            self.logger.info(
                "Tier changed",
                extra={"uid": uid, "from_tier": previous_tier, "to_tier": new_tier.value},
            )

        transaction = self.transaction_repository.append(
            uid=uid,
            event=event.value,
            amount_awarded=credited,
            nominal_amount=nominal_amount,
            context_id=context_id,
            metadata=metadata,
            occurred_at=moment,
            day_bucket=bucket,
            daily_cap_reached=cap_reached,
            source=source.value,
        )
        # Assigns the primary key and surfaces unique-key races inside the retry loop
        self.db.flush()
        return transaction, progress

    @staticmethod
    def _next_streak(
        current: int, previous_activity: Optional[datetime], moment: datetime
    ) -> int:
        if previous_activity is not None and moment - ensure_utc(previous_activity) <= timedelta(
            hours=STREAK_WINDOW_HOURS
        ):
            return current + 1
        return 1

    @BaseService.measure_operation("get_user_progress")
    def get_user_progress(self, uid: str, *, now: Optional[datetime] = None) -> ProgressSnapshot:
        """
        Current progress for ``uid``.

        Users without a progress row get a zeroed snapshot; nothing is written.
        ``daily_xp`` reads as zero once the accounting day has rolled over.
        """
        moment = ensure_utc(now) if now is not None else utc_now()
        with self.transaction():
            progress = self.progress_repository.get_by_id(uid)
            if progress is None:
                return ProgressSnapshot(
                    uid=uid,
                    total_xp=0,
                    daily_xp=0,
                    daily_bucket=None,
                    streak_count=0,
                    last_activity_at=None,
                    tier=Tier.STANDARD,
                    tier_frozen=False,
                    late_deliveries=0,
                    points_month=0,
                    next_tier=next_tier_progress(0),
                    persisted=False,
                )
            user = self.db.get(User, uid)
            today = accounting_day(moment, user.timezone if user is not None else None)
            daily_xp = progress.daily_xp if progress.daily_bucket == today else 0
            return ProgressSnapshot(
                uid=uid,
                total_xp=progress.total_xp,
                daily_xp=daily_xp,
                daily_bucket=progress.daily_bucket,
                streak_count=progress.streak_count,
                last_activity_at=progress.last_activity_at,
                tier=Tier(progress.tier),
                tier_frozen=bool(progress.tier_frozen),
                late_deliveries=progress.late_deliveries,
                points_month=progress.points_month,
                next_tier=next_tier_progress(progress.total_xp),
                persisted=True,
            )

    def get_xp_history(
        self, uid: str, limit: int = XP_HISTORY_DEFAULT_LIMIT
    ) -> List[XPTransaction]:
        """Newest-first XP transactions for ``uid``."""
        if limit < 1:
            raise ValidationException("limit must be at least 1")
        with self.transaction():
            return self.transaction_repository.list_for_user(
                uid, limit=min(limit, XP_HISTORY_MAX_LIMIT)
            )

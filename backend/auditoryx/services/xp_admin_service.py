# backend/auditoryx/services/xp_admin_service.py
"""
Manual XP and tier operations for admins.

Only operations that keep ``total_xp`` monotonic exist here. Every action
writes an ``AdminXPOperation`` audit row in the same commit as its effect.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.constants import LATE_DELIVERY_FREEZE_THRESHOLD
from ..core.enums import AdminXPOperationType, Tier, XPEvent, XPSource
from ..core.exceptions import NotFoundException, ValidationException
from ..core.timezone_utils import ensure_utc, utc_now
from ..domain.tiers import classify
from ..models.progress import AdminXPOperation, UserProgress
from ..models.user import User
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .xp_service import AWARD_CONFLICT_ERRORS, XPAwardResult, XPService

logger = logging.getLogger(__name__)

MAX_ADMIN_GRANT = 10_000


@dataclass(frozen=True)
class TierState:
    uid: str
    tier: Tier
    tier_frozen: bool
    late_deliveries: int
    total_xp: int


def _tier_state(progress: UserProgress) -> TierState:
    return TierState(
        uid=progress.uid,
        tier=Tier(progress.tier),
        tier_frozen=bool(progress.tier_frozen),
        late_deliveries=progress.late_deliveries,
        total_xp=progress.total_xp,
    )


class XPAdminService(BaseService):
    def __init__(self, db: Session, xp_service: Optional[XPService] = None):
        super().__init__(db)
        self.xp_service = xp_service or XPService(db)
        self.progress_repository = RepositoryFactory.create_user_progress_repository(db)
        self.audit_repository = RepositoryFactory.create_admin_xp_operation_repository(db)

    def _progress_for_update(self, uid: str) -> UserProgress:
        if self.db.get(User, uid) is None:
            raise NotFoundException(f"User {uid} not found", code="USER_NOT_FOUND")
        progress = self.progress_repository.get_fresh(uid)
        if progress is None:
            progress = self.progress_repository.create_default(uid)
            progress.tier = Tier.STANDARD.value
        return progress

    @BaseService.measure_operation("grant_xp")
    def grant_xp(
        self,
        admin_uid: str,
        target_uid: str,
        amount: int,
        reason: str,
        *,
        now: Optional[datetime] = None,
    ) -> XPAwardResult:
        """
        Credit ``amount`` XP outside the reward table.

        Not limited by the daily cap, though it still counts toward
        ``daily_xp`` (which saturates at the cap).
        """
        if amount <= 0:
            raise ValidationException("Grant amount must be positive", code="INVALID_AMOUNT")
        if amount > MAX_ADMIN_GRANT:
            raise ValidationException(
                f"Grant amount cannot exceed {MAX_ADMIN_GRANT}", code="INVALID_AMOUNT"
            )
        if not reason or not reason.strip():
            raise ValidationException("A reason is required for manual grants")
        moment = ensure_utc(now) if now is not None else utc_now()

        def _operation() -> XPAwardResult:
            transaction, progress = self.xp_service.stage_credit(
                target_uid,
                event=XPEvent.ADMIN_GRANT,
                nominal_amount=amount,
                moment=moment,
                metadata={"admin_uid": admin_uid, "reason": reason},
                source=XPSource.ADMIN,
                bypass_cap=True,
            )
            self.audit_repository.record(
                admin_uid=admin_uid,
                target_uid=target_uid,
                operation=AdminXPOperationType.GRANT.value,
                amount=amount,
                reason=reason,
            )
            return XPAwardResult(
                amount_awarded=transaction.amount_awarded,
                transaction_id=transaction.id,
                nominal_amount=amount,
                daily_cap_reached=False,
                duplicate=False,
                total_xp=progress.total_xp,
                tier=Tier(progress.tier),
            )

        result = self.retry_on_conflict(
            "user_progress", target_uid, _operation, conflict_errors=AWARD_CONFLICT_ERRORS
        )
        prometheus_metrics.record_xp_award(XPEvent.ADMIN_GRANT.value, "credited", amount)
        self.log_operation(
            "admin_xp_grant", admin_uid=admin_uid, target_uid=target_uid, amount=amount
        )
        return result

    @BaseService.measure_operation("freeze_tier")
    def freeze_tier(self, admin_uid: Optional[str], target_uid: str, reason: str) -> TierState:
        """Pin the user's current tier; XP keeps accruing but the tier stops moving."""

        def _operation() -> TierState:
            progress = self._progress_for_update(target_uid)
            progress.tier_frozen = True
            progress.updated_at = utc_now()
            self.audit_repository.record(
                admin_uid=admin_uid,
                target_uid=target_uid,
                operation=AdminXPOperationType.FREEZE_TIER.value,
                reason=reason,
            )
            return _tier_state(progress)

        state = self.retry_on_conflict("user_progress", target_uid, _operation)
        self.log_operation("tier_frozen", admin_uid=admin_uid, target_uid=target_uid)
        return state

    @BaseService.measure_operation("unfreeze_tier")
    def unfreeze_tier(self, admin_uid: Optional[str], target_uid: str, reason: str) -> TierState:
        """Lift a freeze and re-derive the tier from ``total_xp``."""

        def _operation() -> TierState:
            progress = self._progress_for_update(target_uid)
            progress.tier_frozen = False
            progress.tier = classify(progress.total_xp or 0, False, progress.tier).value
            progress.updated_at = utc_now()
            self.audit_repository.record(
                admin_uid=admin_uid,
                target_uid=target_uid,
                operation=AdminXPOperationType.UNFREEZE_TIER.value,
                reason=reason,
            )
            return _tier_state(progress)

        state = self.retry_on_conflict("user_progress", target_uid, _operation)
        self.log_operation("tier_unfrozen", admin_uid=admin_uid, target_uid=target_uid)
        return state

    @BaseService.measure_operation("record_late_delivery")
    def record_late_delivery(self, uid: str, *, booking_id: Optional[str] = None) -> TierState:
        """Count a late delivery; the tier freezes once the threshold is reached."""

        def _operation() -> TierState:
            progress = self._progress_for_update(uid)
            progress.late_deliveries = (progress.late_deliveries or 0) + 1
            progress.updated_at = utc_now()
            self.audit_repository.record(
                admin_uid=None,
                target_uid=uid,
                operation=AdminXPOperationType.LATE_DELIVERY.value,
                reason=f"Late delivery on booking {booking_id}" if booking_id else None,
            )
            if (
                progress.late_deliveries >= LATE_DELIVERY_FREEZE_THRESHOLD
                and not progress.tier_frozen
            ):
                progress.tier_frozen = True
                self.audit_repository.record(
                    admin_uid=None,
                    target_uid=uid,
                    operation=AdminXPOperationType.FREEZE_TIER.value,
                    reason=f"{progress.late_deliveries} late deliveries",
                )
                self.logger.warning(
                    "Tier frozen after repeated late deliveries",
                    extra={"uid": uid, "late_deliveries": progress.late_deliveries},
                )
            return _tier_state(progress)

        return self.retry_on_conflict("user_progress", uid, _operation)

    def list_operations(self, target_uid: str) -> List[AdminXPOperation]:
        with self.transaction():
            return self.audit_repository.list_for_user(target_uid)

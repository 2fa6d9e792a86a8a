# backend/auditoryx/services/booking_state_machine.py
"""
Booking lifecycle state machine.

Every status change goes through ``ALLOWED_TRANSITIONS``. Writes are
compare-and-swap updates on the booking's ``version_id``; a lost race is
retried from a fresh read and, once retries run out, surfaces as
``ConcurrencyConflictException``.

Side effects committed with the status change:
- confirmed: activity-log row (client notified after commit)
- completed: ``BookingCompleted`` outbox event
- cancelled: activity-log row and ``BookingCancelled`` outbox event

Cancelling a booking whose payment was captured before the session started
is handed to ``RefundService``, which calls the gateway before anything is
written.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Dict, FrozenSet, List, Mapping, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import REVENUE_SPLIT_TOLERANCE
from ..core.enums import ActorRole, BookingStatus, PaymentStatus
from ..core.exceptions import (
    BusinessRuleException,
    ConcurrencyConflictException,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, utc_now
from ..events.booking_events import BookingCancelled, BookingCompleted
from ..events.publisher import EventPublisher
from ..models.booking import Booking, BookingActivityLog
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .notification_service import NotificationService

if TYPE_CHECKING:
    from .refund_service import RefundService

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Mapping[BookingStatus, FrozenSet[BookingStatus]] = MappingProxyType(
    {
        BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
        BookingStatus.CONFIRMED: frozenset({BookingStatus.PAID, BookingStatus.CANCELLED}),
        BookingStatus.PAID: frozenset(
            {BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED, BookingStatus.DISPUTED}
        ),
        BookingStatus.IN_PROGRESS: frozenset(
            {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.DISPUTED}
        ),
        BookingStatus.COMPLETED: frozenset({BookingStatus.REVIEWED, BookingStatus.DISPUTED}),
        BookingStatus.DISPUTED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
        BookingStatus.CANCELLED: frozenset(),
        BookingStatus.REVIEWED: frozenset(),
    }
)

TERMINAL_STATUSES: FrozenSet[BookingStatus] = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)

# Only these states can be left by an admin or the system actor
PRIVILEGED_SOURCE_STATUSES: FrozenSet[BookingStatus] = frozenset({BookingStatus.DISPUTED})

# Cancelling from these with a captured payment goes through the refund flow
PRE_SESSION_STATUSES: FrozenSet[BookingStatus] = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.PAID}
)


def is_transition_allowed(current: BookingStatus, target: BookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


@dataclass(frozen=True)
class Actor:
    """Caller of a ledger mutation; ``user_id`` is None for the system actor."""

    user_id: Optional[str]
    role: ActorRole

    @classmethod
    def system(cls) -> "Actor":
        return cls(user_id=None, role=ActorRole.SYSTEM)

    @property
    def is_privileged(self) -> bool:
        return self.role in (ActorRole.ADMIN, ActorRole.SYSTEM)


def _parse_status(value: BookingStatus | str) -> BookingStatus:
    try:
        return BookingStatus(value)
    except ValueError:
        raise ValidationException(
            f"Unknown booking status: {value}",
            code="INVALID_STATUS",
            details={"allowed": [s.value for s in BookingStatus]},
        )


class BookingStateMachine(BaseService):
    """Owns every write to ``Booking.status``."""

    def __init__(
        self,
        db: Session,
        *,
        notification_service: Optional[NotificationService] = None,
        refund_service: Optional["RefundService"] = None,
    ):
        super().__init__(db)
        self.repository = RepositoryFactory.create_booking_repository(db)
        self.event_publisher = EventPublisher(RepositoryFactory.create_event_outbox_repository(db))
        self.notifications = notification_service or NotificationService()
        self._refund_service = refund_service

    @property
    def refund_service(self) -> "RefundService":
        if self._refund_service is None:
            from .refund_service import RefundService

            self._refund_service = RefundService(
                self.db, state_machine=self, notification_service=self.notifications
            )
        return self._refund_service

    # Validation

    def _load(self, booking_id: str) -> Booking:
        booking = self.repository.get_fresh(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")
        return booking

    def authorize(self, booking: Booking, actor: Actor) -> None:
        """Participants may act on their own bookings; admins and the system on any."""
        if not actor.is_privileged and not booking.involves(actor.user_id):
            raise ForbiddenException(
                "You are not a participant in this booking",
                code="NOT_BOOKING_PARTICIPANT",
                details={"booking_id": booking.id},
            )

    def validate_transition(self, booking: Booking, target: BookingStatus, actor: Actor) -> None:
        """Raise unless ``actor`` may move ``booking`` to ``target`` right now."""
        self.authorize(booking, actor)
        current = booking.status_enum
        if not is_transition_allowed(current, target):
            raise InvalidTransitionException(booking.id, current.value, target.value)
        if current in PRIVILEGED_SOURCE_STATUSES and not actor.is_privileged:
            raise ForbiddenException(
                "Only an admin can resolve a disputed booking",
                code="DISPUTE_RESOLUTION_FORBIDDEN",
                details={"booking_id": booking.id},
            )

    # Transitions

    @BaseService.measure_operation("transition")
    def transition(
        self,
        booking_id: str,
        target_status: BookingStatus | str,
        actor: Actor,
        *,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Move a booking to ``target_status``.

        Raises:
            NotFoundException: booking does not exist
            ForbiddenException: actor may not act on this booking
            InvalidTransitionException: target not reachable from the current status
            ConcurrencyConflictException: version check kept failing
        """
        target = _parse_status(target_status)
        with self.transaction():
            booking = self._load(booking_id)
            self.validate_transition(booking, target, actor)
            needs_refund = (
                target == BookingStatus.CANCELLED
                and booking.status_enum in PRE_SESSION_STATUSES
                and booking.is_paid
            )

        if needs_refund:
            result = self.refund_service.process_refund(
                booking_id,
                actor.user_id,
                reason or "Booking cancelled",
                actor_role=actor.role,
                now=now,
            )
            return result.booking

        booking = self.commit_transition(booking_id, target, actor, reason=reason, now=now)
        if target == BookingStatus.CONFIRMED:
            self.notifications.send_booking_confirmed(booking)
        return booking

    def commit_transition(
        self,
        booking_id: str,
        target: BookingStatus,
        actor: Actor,
        *,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
        guard: Optional[Callable[[Booking], None]] = None,
        apply: Optional[Callable[[Booking], None]] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Booking:
        """
        Write one transition with its side effects as a single CAS commit.

        ``guard`` runs against the fresh row before anything changes and may
        raise to abort; ``apply`` sets extra columns in the same update. No
        refund is attempted here: callers that need one use RefundService.
        """
        moment = ensure_utc(now) if now is not None else utc_now()
        from_status: Dict[str, BookingStatus] = {}

        def _operation() -> Booking:
            booking = self._load(booking_id)
            self.validate_transition(booking, target, actor)
            if guard is not None:
                guard(booking)
            from_status["value"] = booking.status_enum
            self._apply_status(booking, target, actor, reason, moment)
            if apply is not None:
                apply(booking)
            self._record_side_effects(booking, from_status["value"], target, actor, reason, details)
            return booking

        booking = self.retry_on_conflict("booking", booking_id, _operation)

        prometheus_metrics.record_transition(from_status["value"].value, target.value)
        self.log_operation(
            "booking_transition",
            booking_id=booking_id,
            from_status=from_status["value"].value,
            to_status=target.value,
            actor_uid=actor.user_id,
            actor_role=actor.role.value,
        )
        return booking

    @staticmethod
    def _apply_status(
        booking: Booking,
        target: BookingStatus,
        actor: Actor,
        reason: Optional[str],
        moment: datetime,
    ) -> None:
        booking.status = target.value
        booking.updated_at = moment
        if target == BookingStatus.CONFIRMED:
            booking.confirmed_at = moment
        elif target == BookingStatus.COMPLETED:
            booking.completed_at = moment
        elif target == BookingStatus.CANCELLED:
            booking.cancelled_at = moment
            booking.cancelled_by = actor.user_id
            booking.cancellation_reason = reason

    def _record_side_effects(
        self,
        booking: Booking,
        from_status: BookingStatus,
        target: BookingStatus,
        actor: Actor,
        reason: Optional[str],
        details: Optional[Dict[str, Any]],
    ) -> None:
        if target == BookingStatus.CONFIRMED:
            self.repository.add_activity(
                booking_id=booking.id,
                actor_uid=actor.user_id,
                actor_role=actor.role.value,
                action="confirmed",
                from_status=from_status.value,
                to_status=target.value,
                details=details,
            )
        elif target == BookingStatus.COMPLETED:
            self.event_publisher.publish(
                BookingCompleted(
                    booking_id=booking.id,
                    client_uid=booking.client_uid,
                    provider_uid=booking.provider_uid,
                    completed_at=booking.completed_at,
                )
            )
        elif target == BookingStatus.CANCELLED:
            self.repository.add_activity(
                booking_id=booking.id,
                actor_uid=actor.user_id,
                actor_role=actor.role.value,
                action="cancelled",
                from_status=from_status.value,
                to_status=target.value,
                details={"reason": reason, **(details or {})},
            )
            self.event_publisher.publish(
                BookingCancelled(
                    booking_id=booking.id,
                    cancelled_by=actor.user_id,
                    cancelled_at=booking.cancelled_at,
                    refund_amount_cents=booking.refund_amount_cents,
                )
            )

    # Supplementary operations

    @BaseService.measure_operation("expire_stale_unpaid")
    def expire_stale_unpaid(self, now: Optional[datetime] = None) -> int:
        """Cancel bookings that never got paid within the expiry window."""
        moment = ensure_utc(now) if now is not None else utc_now()
        expiry_hours = settings.unpaid_booking_expiry_hours
        cutoff = moment - timedelta(hours=expiry_hours)

        with self.transaction():
            booking_ids = [b.id for b in self.repository.list_stale_unpaid(cutoff)]

        def _still_unpaid(booking: Booking) -> None:
            if booking.payment_status != PaymentStatus.PENDING.value:
                raise BusinessRuleException(
                    "Booking was paid before it expired", code="BOOKING_PAID"
                )

        expired = 0
        for booking_id in booking_ids:
            try:
                self.commit_transition(
                    booking_id,
                    BookingStatus.CANCELLED,
                    Actor.system(),
                    reason=f"Payment not received within {expiry_hours} hours",
                    now=moment,
                    guard=_still_unpaid,
                    details={"expired": True},
                )
                expired += 1
            except (
                BusinessRuleException,
                InvalidTransitionException,
                ConcurrencyConflictException,
            ) as exc:
                self.logger.warning(
                    "Skipped expiring booking",
                    extra={"booking_id": booking_id, "error_code": exc.code},
                )

        if booking_ids:
            self.logger.info(
                "Expired unpaid bookings",
                extra={"candidates": len(booking_ids), "expired": expired},
            )
        return expired

    @BaseService.measure_operation("set_revenue_split")
    def set_revenue_split(
        self,
        booking_id: str,
        split: Mapping[str, float],
        actor: Optional[Actor] = None,
    ) -> Booking:
        """Record how the payout is shared; frozen once the payment is captured."""
        cleaned = self._validate_revenue_split(split)
        acting = actor or Actor.system()

        def _operation() -> Booking:
            booking = self._load(booking_id)
            self.authorize(booking, acting)
            if booking.payment_status != PaymentStatus.PENDING.value:
                raise BusinessRuleException(
                    "Revenue split cannot change after payment",
                    code="REVENUE_SPLIT_LOCKED",
                    details={"booking_id": booking_id, "payment_status": booking.payment_status},
                )
            booking.revenue_split = cleaned
            booking.updated_at = utc_now()
            return booking

        return self.retry_on_conflict("booking", booking_id, _operation)

    @staticmethod
    def _validate_revenue_split(split: Mapping[str, float]) -> Dict[str, float]:
        if not split:
            raise ValidationException("Revenue split must name at least one party")
        cleaned: Dict[str, float] = {}
        for party, fraction in split.items():
            try:
                value = float(fraction)
            except (TypeError, ValueError):
                raise ValidationException(f"Revenue share for {party} is not a number")
            if value < 0 or value > 1:
                raise ValidationException(
                    f"Revenue share for {party} must be between 0 and 1",
                    details={"party": party, "fraction": value},
                )
            cleaned[str(party)] = value
        total = sum(cleaned.values())
        if abs(total - 1.0) > REVENUE_SPLIT_TOLERANCE:
            raise ValidationException(
                "Revenue split fractions must add up to 1.0",
                code="REVENUE_SPLIT_SUM",
                details={"total": total},
            )
        return cleaned

    @BaseService.measure_operation("mark_paid")
    def mark_paid(
        self,
        booking_id: str,
        payment_intent_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> Booking:
        """Payment capture confirmed by the gateway: record it and move to ``paid``."""
        if not payment_intent_id:
            raise ValidationException("payment_intent_id is required")

        with self.transaction():
            booking = self._load(booking_id)
            already_paid = (
                booking.status == BookingStatus.PAID.value
                and booking.payment_intent_id == payment_intent_id
            )
        if already_paid:
            # Redelivered webhook
            self.logger.info("Booking already marked paid", extra={"booking_id": booking_id})
            return booking

        def _not_refunded(fresh: Booking) -> None:
            if fresh.payment_status == PaymentStatus.REFUNDED.value:
                raise BusinessRuleException("Booking payment was already refunded")

        def _record_payment(fresh: Booking) -> None:
            fresh.payment_status = PaymentStatus.PAID.value
            fresh.payment_intent_id = payment_intent_id

        return self.commit_transition(
            booking_id,
            BookingStatus.PAID,
            Actor.system(),
            now=now,
            guard=_not_refunded,
            apply=_record_payment,
        )

    def get_activity(self, booking_id: str, actor: Actor) -> List[BookingActivityLog]:
        with self.transaction():
            booking = self._load(booking_id)
            self.authorize(booking, actor)
            return self.repository.get_activity(booking_id)


__all__ = [
    "ALLOWED_TRANSITIONS",
    "Actor",
    "BookingStateMachine",
    "PRE_SESSION_STATUSES",
    "TERMINAL_STATUSES",
    "is_transition_allowed",
]

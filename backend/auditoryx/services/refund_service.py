# backend/auditoryx/services/refund_service.py
"""
Refund execution for cancelled bookings.

Three phases so no database transaction stays open across the gateway call:
1. read and validate the booking, derive the preview server-side
2. call the payment gateway (no transaction)
3. commit the cancellation, refund fields, activity row and outbox event
   as one compare-and-swap on the booking

A gateway failure leaves the booking exactly as it was.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.booking_lock import booking_lock_sync
from ..core.enums import ActorRole, BookingStatus, PaymentStatus, Tier
from ..core.exceptions import (
    BusinessRuleException,
    ConflictException,
    ForbiddenException,
    GatewayException,
    NotEligibleException,
    NotFoundException,
)
from ..core.timezone_utils import ensure_utc, utc_now
from ..integrations.stripe_gateway import GatewayRefund, PaymentGateway, StripeRefundGateway
from ..models.booking import Booking
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .notification_service import NotificationService
from .refund_policy_engine import RefundPolicyEngine, RefundPreview

if TYPE_CHECKING:
    from .booking_state_machine import BookingStateMachine

logger = logging.getLogger(__name__)


def refund_idempotency_key(booking_id: str) -> str:
    return f"booking-refund-{booking_id}"


@dataclass(frozen=True)
class RefundResult:
    booking: Booking
    refund_amount_cents: int
    refund_percentage: int
    processing_fee_cents: int
    refund_id: Optional[str]
    gateway_status: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "booking_id": self.booking.id,
            "status": self.booking.status,
            "payment_status": self.booking.payment_status,
            "refund_amount_cents": self.refund_amount_cents,
            "refund_percentage": self.refund_percentage,
            "processing_fee_cents": self.processing_fee_cents,
            "refund_id": self.refund_id,
            "gateway_status": self.gateway_status,
        }


class RefundService(BaseService):
    """Previews and executes escrow refunds."""

    def __init__(
        self,
        db: Session,
        *,
        gateway: Optional[PaymentGateway] = None,
        state_machine: Optional["BookingStateMachine"] = None,
        notification_service: Optional[NotificationService] = None,
        policy_engine: Optional[RefundPolicyEngine] = None,
    ):
        super().__init__(db)
        self.repository = RepositoryFactory.create_booking_repository(db)
        self.progress_repository = RepositoryFactory.create_user_progress_repository(db)
        self.policy = policy_engine or RefundPolicyEngine()
        self.notifications = notification_service or NotificationService()
        self._gateway = gateway
        if state_machine is None:
            from .booking_state_machine import BookingStateMachine

            state_machine = BookingStateMachine(
                db, notification_service=self.notifications, refund_service=self
            )
        self.state_machine = state_machine

    @property
    def gateway(self) -> PaymentGateway:
        if self._gateway is None:
            self._gateway = StripeRefundGateway()
        return self._gateway

    def _load(self, booking_id: str) -> Booking:
        booking = self.repository.get_fresh(booking_id)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found", code="BOOKING_NOT_FOUND")
        return booking

    def _provider_tier(self, booking: Booking) -> Tier:
        """Tier picking the refund bands; providers without progress use the standard table."""
        progress = self.progress_repository.get_by_id(booking.provider_uid)
        if progress is None:
            return Tier.STANDARD
        try:
            return Tier(progress.tier)
        except ValueError:
            return Tier.STANDARD

    @staticmethod
    def _resolve_actor_role(
        booking: Booking, user_id: Optional[str], actor_role: Optional[ActorRole | str]
    ) -> ActorRole:
        if actor_role is not None:
            role = ActorRole(actor_role)
            if role in (ActorRole.ADMIN, ActorRole.SYSTEM):
                return role
        if user_id is not None and user_id == booking.client_uid:
            return ActorRole.CLIENT
        if user_id is not None and user_id == booking.provider_uid:
            return ActorRole.PROVIDER
        raise ForbiddenException(
            "Only the booking's client or provider can request a refund",
            code="NOT_BOOKING_PARTICIPANT",
            details={"booking_id": booking.id},
        )

    @BaseService.measure_operation("preview_refund")
    def preview_refund(
        self,
        booking_id: str,
        *,
        now: Optional[datetime] = None,
        is_emergency: bool = False,
        user_id: Optional[str] = None,
        actor_role: Optional[ActorRole | str] = None,
    ) -> RefundPreview:
        """Refund the caller would get if they cancelled at ``now``. Read-only."""
        moment = ensure_utc(now) if now is not None else utc_now()
        with self.transaction():
            booking = self._load(booking_id)
            if user_id is not None or actor_role is not None:
                self._resolve_actor_role(booking, user_id, actor_role)
            return self.policy.preview(
                booking,
                moment,
                is_emergency=is_emergency,
                provider_tier=self._provider_tier(booking),
            )

    @BaseService.measure_operation("process_refund")
    def process_refund(
        self,
        booking_id: str,
        user_id: Optional[str],
        reason: str,
        is_emergency: bool = False,
        *,
        actor_role: Optional[ActorRole | str] = None,
        now: Optional[datetime] = None,
    ) -> RefundResult:
        """
        Cancel a paid booking and refund the client through the gateway.

        Raises:
            NotFoundException: booking does not exist
            ForbiddenException: caller is not a participant (or admin)
            ConflictException: another refund for this booking is in flight
            NotEligibleException: policy says no refund is possible
            InvalidTransitionException: booking cannot be cancelled from its status
            GatewayDeclinedException / GatewayUnavailableException: gateway failed
        """
        from .booking_state_machine import Actor

        moment = ensure_utc(now) if now is not None else utc_now()

        with booking_lock_sync(booking_id) as acquired:
            if not acquired:
                raise ConflictException(
                    "A refund for this booking is already in progress",
                    code="REFUND_IN_PROGRESS",
                    details={"booking_id": booking_id},
                )

            # Phase 1: validate and price
            with self.transaction():
                booking = self._load(booking_id)
                role = self._resolve_actor_role(booking, user_id, actor_role)
                actor = Actor(user_id=user_id, role=role)
                preview = self.policy.preview(
                    booking,
                    moment,
                    is_emergency=is_emergency,
                    provider_tier=self._provider_tier(booking),
                )
                if not preview.can_refund:
                    prometheus_metrics.record_refund("not_eligible")
                    raise NotEligibleException(
                        preview.reason,
                        details={
                            "booking_id": booking_id,
                            "escrow_status": preview.escrow_status.value,
                        },
                    )
                self.state_machine.validate_transition(booking, BookingStatus.CANCELLED, actor)
                payment_id = booking.payment_intent_id
                if not payment_id:
                    prometheus_metrics.record_refund("not_eligible")
                    raise NotEligibleException(
                        "Booking has no gateway payment reference",
                        details={"booking_id": booking_id},
                    )

            # Phase 2: gateway call, no open transaction
            gateway_refund = self._call_gateway(booking_id, payment_id, preview, reason)

            # Phase 3: commit cancellation and refund bookkeeping together
            def _still_refundable(fresh: Booking) -> None:
                if fresh.payment_status != PaymentStatus.PAID.value:
                    raise BusinessRuleException(
                        "Booking payment changed while the refund was processed",
                        code="PAYMENT_STATE_CHANGED",
                        details={"payment_status": fresh.payment_status},
                    )

            def _record_refund(fresh: Booking) -> None:
                fresh.payment_status = PaymentStatus.REFUNDED.value
                fresh.refund_amount_cents = preview.refund_amount_cents
                fresh.refund_reason = reason
                fresh.refund_id = gateway_refund.id
                fresh.refunded_at = moment

            try:
                booking = self.state_machine.commit_transition(
                    booking_id,
                    BookingStatus.CANCELLED,
                    actor,
                    reason=reason,
                    now=moment,
                    guard=_still_refundable,
                    apply=_record_refund,
                    details={
                        "refund_amount_cents": preview.refund_amount_cents,
                        "refund_percentage": preview.refund_percentage,
                        "processing_fee_cents": preview.processing_fee_cents,
                        "is_emergency": is_emergency,
                        "refund_id": gateway_refund.id,
                    },
                )
            except Exception:
                # The gateway key makes a retry of this call safe
                self.logger.critical(
                    "Refund captured by gateway but booking update failed",
                    extra={
                        "booking_id": booking_id,
                        "refund_id": gateway_refund.id,
                        "refund_amount_cents": preview.refund_amount_cents,
                    },
                )
                prometheus_metrics.record_refund("persist_failed")
                raise

        prometheus_metrics.record_refund("succeeded")
        self.log_operation(
            "refund_processed",
            booking_id=booking_id,
            refund_amount_cents=preview.refund_amount_cents,
            refund_percentage=preview.refund_percentage,
            refund_id=gateway_refund.id,
        )
        self.notifications.send_refund_processed(
            booking, refund_amount_cents=preview.refund_amount_cents
        )
        return RefundResult(
            booking=booking,
            refund_amount_cents=preview.refund_amount_cents,
            refund_percentage=preview.refund_percentage,
            processing_fee_cents=preview.processing_fee_cents,
            refund_id=gateway_refund.id,
            gateway_status=gateway_refund.status,
        )

    def _call_gateway(
        self,
        booking_id: str,
        payment_id: str,
        preview: RefundPreview,
        reason: str,
    ) -> GatewayRefund:
        try:
            return self.gateway.refund(
                payment_id,
                preview.refund_amount_cents,
                idempotency_key=refund_idempotency_key(booking_id),
                metadata={
                    "booking_id": booking_id,
                    "refund_percentage": str(preview.refund_percentage),
                    "reason": reason[:500],
                },
            )
        except GatewayException as exc:
            outcome = "gateway_unavailable" if exc.retryable else "gateway_declined"
            prometheus_metrics.record_refund(outcome)
            self.logger.error(
                "Gateway refund failed; booking left unchanged",
                extra={
                    "booking_id": booking_id,
                    "error_code": exc.code,
                    "retryable": exc.retryable,
                },
            )
            raise

    @BaseService.measure_operation("get_refund_history")
    def get_refund_history(self, user_id: str, *, limit: int = 100) -> List[Booking]:
        """Refunded bookings where the user was client or provider, newest first."""
        with self.transaction():
            return self.repository.list_refunded_for_user(user_id, limit=limit)

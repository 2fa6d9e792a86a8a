# backend/auditoryx/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected.
"""

from functools import lru_cache
import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from ...integrations.stripe_gateway import PaymentGateway, StripeRefundGateway
from ...services.booking_state_machine import BookingStateMachine
from ...services.leaderboard_service import LeaderboardService
from ...services.notification_service import NotificationService
from ...services.refund_service import RefundService
from ...services.xp_admin_service import XPAdminService
from ...services.xp_service import XPService
from .database import get_db

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_payment_gateway_singleton() -> PaymentGateway:
    """Get singleton payment gateway instance."""
    return StripeRefundGateway()


def get_payment_gateway() -> PaymentGateway:
    return get_payment_gateway_singleton()


def get_notification_service() -> NotificationService:
    return NotificationService()


def get_refund_service(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notification_service: NotificationService = Depends(get_notification_service),
) -> RefundService:
    """Get RefundService wired to the shared gateway and a state machine on the same session."""
    return RefundService(db, gateway=gateway, notification_service=notification_service)


def get_booking_state_machine(
    refund_service: RefundService = Depends(get_refund_service),
) -> BookingStateMachine:
    """The state machine shares the refund service's session and collaborators."""
    return refund_service.state_machine


def get_xp_service(db: Session = Depends(get_db)) -> XPService:
    return XPService(db)


def get_xp_admin_service(xp_service: XPService = Depends(get_xp_service)) -> XPAdminService:
    return XPAdminService(xp_service.db, xp_service=xp_service)


def get_leaderboard_service(db: Session = Depends(get_db)) -> LeaderboardService:
    return LeaderboardService(db)

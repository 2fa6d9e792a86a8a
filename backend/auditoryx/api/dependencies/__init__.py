# backend/auditoryx/api/dependencies/__init__.py
"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from .auth import get_current_actor, require_admin_actor, require_privileged_actor
from .database import get_db
from .services import (
    get_booking_state_machine,
    get_leaderboard_service,
    get_notification_service,
    get_payment_gateway,
    get_refund_service,
    get_xp_admin_service,
    get_xp_service,
)

__all__ = [
    # Auth
    "get_current_actor",
    "require_admin_actor",
    "require_privileged_actor",
    # Database
    "get_db",
    # Services
    "get_booking_state_machine",
    "get_leaderboard_service",
    "get_notification_service",
    "get_payment_gateway",
    "get_refund_service",
    "get_xp_admin_service",
    "get_xp_service",
]

# backend/auditoryx/repositories/__init__.py
"""
Repository layer for the AuditoryX ledger.

Usage:
    from auditoryx.repositories import RepositoryFactory

    # In a service:
    repository = RepositoryFactory.create_booking_repository(db)
    booking = repository.get_by_id(booking_id)
"""

from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .event_outbox_repository import EventOutboxRepository
from .factory import RepositoryFactory
from .leaderboard_repository import LeaderboardRepository
from .progress_repository import (
    AdminXPOperationRepository,
    UserProgressRepository,
    XPTransactionRepository,
)

__all__ = [
    "AdminXPOperationRepository",
    "BaseRepository",
    "BookingRepository",
    "EventOutboxRepository",
    "LeaderboardRepository",
    "RepositoryFactory",
    "UserProgressRepository",
    "XPTransactionRepository",
]

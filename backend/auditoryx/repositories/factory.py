# backend/auditoryx/repositories/factory.py
"""
Repository Factory for the AuditoryX ledger.

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .booking_repository import BookingRepository
    from .event_outbox_repository import EventOutboxRepository
    from .leaderboard_repository import LeaderboardRepository
    from .progress_repository import (
        AdminXPOperationRepository,
        UserProgressRepository,
        XPTransactionRepository,
    )


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        """Create repository for booking operations."""
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_user_progress_repository(db: Session) -> "UserProgressRepository":
        """Create repository for user progress rows."""
        from .progress_repository import UserProgressRepository

        return UserProgressRepository(db)

    @staticmethod
    def create_xp_transaction_repository(db: Session) -> "XPTransactionRepository":
        """Create repository for the XP transaction log."""
        from .progress_repository import XPTransactionRepository

        return XPTransactionRepository(db)

    @staticmethod
    def create_admin_xp_operation_repository(db: Session) -> "AdminXPOperationRepository":
        """Create repository for admin XP audit rows."""
        from .progress_repository import AdminXPOperationRepository

        return AdminXPOperationRepository(db)

    @staticmethod
    def create_leaderboard_repository(db: Session) -> "LeaderboardRepository":
        """Create repository for leaderboard snapshots."""
        from .leaderboard_repository import LeaderboardRepository

        return LeaderboardRepository(db)

    @staticmethod
    def create_event_outbox_repository(db: Session) -> "EventOutboxRepository":
        """Create repository for the event outbox."""
        from .event_outbox_repository import EventOutboxRepository

        return EventOutboxRepository(db)

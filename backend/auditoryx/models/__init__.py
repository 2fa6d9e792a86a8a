"""
Database models for the AuditoryX ledger.

- Users (the profile slice the ledger reads)
- Bookings and their activity log
- XP ledger: progress, transactions, admin audit
- Leaderboard snapshots
- Event outbox
"""

from .booking import Booking, BookingActivityLog
from .event_outbox import EventOutbox, EventOutboxStatus
from .leaderboard import LeaderboardEntry
from .progress import AdminXPOperation, UserProgress, XPTransaction
from .user import User

__all__ = [
    "AdminXPOperation",
    "Booking",
    "BookingActivityLog",
    "EventOutbox",
    "EventOutboxStatus",
    "LeaderboardEntry",
    "User",
    "UserProgress",
    "XPTransaction",
]

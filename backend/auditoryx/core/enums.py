# backend/auditoryx/core/enums.py
"""
Core enums for the AuditoryX ledger.

Stored values are the wire/database spellings; keep them stable.
"""

from enum import Enum


class BookingStatus(str, Enum):
    """Lifecycle states of a booking."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PAID = "paid"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"
    REVIEWED = "reviewed"


class PaymentStatus(str, Enum):
    """Capture state of the client's payment."""

    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class EscrowStatus(str, Enum):
    HELD = "held"
    RELEASED = "released"
    REFUNDED = "refunded"


class Tier(str, Enum):
    """Reputation ranks derived from cumulative XP."""

    STANDARD = "standard"
    VERIFIED = "verified"
    SIGNATURE = "signature"


class XPEvent(str, Enum):
    """
    Closed set of XP-earning events.

    Every member except ADMIN_GRANT has a fixed reward in
    ``auditoryx.core.constants.XP_REWARDS``.
    """

    BOOKING_COMPLETED = "bookingCompleted"
    FIVE_STAR_REVIEW = "fiveStarReview"
    REFERRAL_SIGNUP = "referralSignup"
    REFERRAL_FIRST_BOOKING = "referralFirstBooking"
    PROFILE_COMPLETED = "profileCompleted"
    BOOKING_CONFIRMED = "bookingConfirmed"
    ON_TIME_DELIVERY = "onTimeDelivery"
    SEVEN_DAY_STREAK = "sevenDayStreak"
    CREATOR_REFERRAL = "creatorReferral"
    ADMIN_GRANT = "adminGrant"


class XPSource(str, Enum):
    EVENT = "event"
    ADMIN = "admin"


class ActorRole(str, Enum):
    """Who is asking for a ledger mutation."""

    CLIENT = "client"
    PROVIDER = "provider"
    ADMIN = "admin"
    SYSTEM = "system"


class CreatorRole(str, Enum):
    """Creator categories used to bucket leaderboards."""

    ARTIST = "artist"
    ENGINEER = "engineer"
    PRODUCER = "producer"
    STUDIO = "studio"
    VIDEOGRAPHER = "videographer"


class AdminXPOperationType(str, Enum):
    GRANT = "grant"
    FREEZE_TIER = "freeze_tier"
    UNFREEZE_TIER = "unfreeze_tier"
    LATE_DELIVERY = "late_delivery"

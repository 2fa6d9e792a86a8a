# backend/auditoryx/core/constants.py
"""
Business constants for the settlement and gamification ledger.

This is the only place reward values, caps, tier thresholds and refund
bands are defined. Services import from here; nothing re-declares them.
"""

from types import MappingProxyType
from typing import Mapping, NamedTuple, Tuple

from .enums import Tier, XPEvent

BRAND_NAME = "AuditoryX"
API_TITLE = f"{BRAND_NAME} Ledger API"
API_DESCRIPTION = "Booking settlement, refunds, XP and leaderboards for the AuditoryX marketplace"
API_VERSION = "1.0.0"

# XP ledger
XP_REWARDS: Mapping[XPEvent, int] = MappingProxyType(
    {
        XPEvent.BOOKING_COMPLETED: 100,
        XPEvent.FIVE_STAR_REVIEW: 30,
        XPEvent.REFERRAL_SIGNUP: 100,
        XPEvent.REFERRAL_FIRST_BOOKING: 50,
        XPEvent.PROFILE_COMPLETED: 25,
        XPEvent.BOOKING_CONFIRMED: 50,
        XPEvent.ON_TIME_DELIVERY: 25,
        XPEvent.SEVEN_DAY_STREAK: 40,
        XPEvent.CREATOR_REFERRAL: 150,
    }
)
DAILY_XP_CAP = 300
STREAK_WINDOW_HOURS = 24
XP_HISTORY_DEFAULT_LIMIT = 50
XP_HISTORY_MAX_LIMIT = 200


class XPRateRule(NamedTuple):
    cooldown_minutes: int
    max_per_hour: int
    max_per_day: int


# Anti-gaming limits for events a user can trigger repeatedly. Windows are rolling and
# counted per (uid, event); events missing here are only bounded by the daily cap.
XP_RATE_RULES: Mapping[XPEvent, XPRateRule] = MappingProxyType(
    {
        XPEvent.BOOKING_COMPLETED: XPRateRule(cooldown_minutes=60, max_per_hour=2, max_per_day=8),
        XPEvent.FIVE_STAR_REVIEW: XPRateRule(cooldown_minutes=30, max_per_hour=3, max_per_day=10),
        XPEvent.REFERRAL_SIGNUP: XPRateRule(cooldown_minutes=120, max_per_hour=1, max_per_day=3),
        XPEvent.PROFILE_COMPLETED: XPRateRule(
            cooldown_minutes=1440, max_per_hour=1, max_per_day=1
        ),
    }
)

# Ordered highest first so the classifier can take the first match.
TIER_THRESHOLDS: Tuple[Tuple[Tier, int], ...] = (
    (Tier.SIGNATURE, 2000),
    (Tier.VERIFIED, 1000),
    (Tier.STANDARD, 0),
)
LATE_DELIVERY_FREEZE_THRESHOLD = 3

# Refund policy by the provider's tier: (minimum hours of notice, refund percentage),
# most generous first. Higher tiers ask for longer notice.
RefundBands = Tuple[Tuple[float, int], ...]
REFUND_BANDS: Mapping[Tier, RefundBands] = MappingProxyType(
    {
        Tier.STANDARD: ((48.0, 100), (24.0, 50), (0.0, 0)),
        Tier.VERIFIED: ((72.0, 100), (48.0, 75), (24.0, 25), (0.0, 0)),
        Tier.SIGNATURE: ((168.0, 100), (72.0, 75), (48.0, 50), (24.0, 10), (0.0, 0)),
    }
)
PROCESSING_FEE_RATE_BPS = 290  # 2.9%
PROCESSING_FEE_FIXED_CENTS = 30
PROCESSING_FEE_MAX_SHARE_BPS = 1000  # fee never exceeds 10% of the refund

# Leaderboards
LEADERBOARD_SIZE = 10

# Revenue split fractions must add up to one within this tolerance.
REVENUE_SPLIT_TOLERANCE = 1e-6

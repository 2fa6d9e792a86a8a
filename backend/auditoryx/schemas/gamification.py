"""Schemas for the XP ledger, tiers and leaderboards."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from ..core.enums import Tier, XPEvent
from .base import ResponseModel, StrictRequestModel


class XPAwardRequest(StrictRequestModel):
    uid: str = Field(..., min_length=1, max_length=26)
    event: XPEvent
    context_id: Optional[str] = Field(default=None, max_length=255)
    metadata: Optional[Dict[str, Any]] = None
    quick_reply: bool = False


class XPAwardResponse(ResponseModel):
    amount_awarded: int
    transaction_id: str
    nominal_amount: int
    daily_cap_reached: bool
    duplicate: bool
    total_xp: int
    tier: Tier


class NextTierResponse(ResponseModel):
    next_tier: Optional[Tier] = None
    next_threshold: Optional[int] = None
    xp_to_next: int


class UserProgressResponse(ResponseModel):
    uid: str
    total_xp: int
    daily_xp: int
    daily_bucket: Optional[date] = None
    streak_count: int
    last_activity_at: Optional[datetime] = None
    tier: Tier
    tier_frozen: bool
    late_deliveries: int
    points_month: int
    next_tier: NextTierResponse


class XPTransactionResponse(ResponseModel):
    id: str
    event: str
    amount_awarded: int
    nominal_amount: int
    context_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="metadata_json")
    occurred_at: datetime
    day_bucket: date
    daily_cap_reached: bool
    source: str


class XPHistoryResponse(ResponseModel):
    uid: str
    transactions: List[XPTransactionResponse]


class AdminGrantRequest(StrictRequestModel):
    target_uid: str = Field(..., min_length=1, max_length=26)
    amount: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=1000)


class TierActionRequest(StrictRequestModel):
    target_uid: str = Field(..., min_length=1, max_length=26)
    reason: str = Field(..., min_length=1, max_length=1000)


class LateDeliveryRequest(StrictRequestModel):
    uid: str = Field(..., min_length=1, max_length=26)
    booking_id: Optional[str] = None


class TierStateResponse(ResponseModel):
    uid: str
    tier: Tier
    tier_frozen: bool
    late_deliveries: int
    total_xp: int


class LeaderboardEntryResponse(ResponseModel):
    rank: int
    uid: str
    display_name: str
    points_month: int
    period: str


class LeaderboardResponse(ResponseModel):
    city: str
    role: str
    generated_at: Optional[datetime] = None
    entries: List[LeaderboardEntryResponse]

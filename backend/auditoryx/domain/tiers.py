"""
Tier classification.

Pure functions; safe to call with any XP value, including values below a
user's current tier (the classifier does not assume XP only grows).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from ..core.constants import TIER_THRESHOLDS
from ..core.enums import Tier

TierLike = Union[Tier, str]


def classify(total_xp: int, tier_frozen: bool, current_tier: Optional[TierLike]) -> Tier:
    """
    Map cumulative XP to a tier.

    A frozen tier is returned unchanged regardless of XP. Otherwise the
    highest threshold not exceeding ``total_xp`` wins.
    """
    if tier_frozen:
        return Tier(current_tier) if current_tier is not None else Tier.STANDARD
    for tier, threshold in TIER_THRESHOLDS:
        if total_xp >= threshold:
            return tier
    return Tier.STANDARD


@dataclass(frozen=True)
class TierProgress:
    tier: Tier
    next_tier: Optional[Tier]
    next_threshold: Optional[int]
    xp_to_next: int


def next_tier_progress(total_xp: int) -> TierProgress:
    """XP still needed to reach the next tier (zero at the top tier)."""
    tier = classify(total_xp, False, None)
    ascending = list(reversed(TIER_THRESHOLDS))
    for candidate, threshold in ascending:
        if threshold > total_xp and candidate != tier:
            return TierProgress(
                tier=tier,
                next_tier=candidate,
                next_threshold=threshold,
                xp_to_next=threshold - max(total_xp, 0),
            )
    return TierProgress(tier=tier, next_tier=None, next_threshold=None, xp_to_next=0)

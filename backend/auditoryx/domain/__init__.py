"""Pure domain rules shared by services."""

from .tiers import TierProgress, classify, next_tier_progress

__all__ = ["TierProgress", "classify", "next_tier_progress"]

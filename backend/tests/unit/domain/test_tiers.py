import pytest

from auditoryx.core.enums import Tier
from auditoryx.domain.tiers import classify, next_tier_progress


@pytest.mark.parametrize(
    "total_xp, expected",
    [
        (0, Tier.STANDARD),
        (999, Tier.STANDARD),
        (1000, Tier.VERIFIED),
        (1999, Tier.VERIFIED),
        (2000, Tier.SIGNATURE),
        (50000, Tier.SIGNATURE),
    ],
)
def test_classify_uses_highest_threshold_reached(total_xp: int, expected: Tier) -> None:
    assert classify(total_xp, False, None) == expected


def test_classify_frozen_keeps_current_tier_regardless_of_xp() -> None:
    assert classify(5000, True, Tier.STANDARD) == Tier.STANDARD
    assert classify(0, True, "signature") == Tier.SIGNATURE


def test_classify_can_move_down_when_not_frozen() -> None:
    assert classify(500, False, Tier.SIGNATURE) == Tier.STANDARD


def test_classify_frozen_without_current_tier_defaults_to_standard() -> None:
    assert classify(3000, True, None) == Tier.STANDARD


def test_next_tier_progress_counts_xp_to_next_threshold() -> None:
    progress = next_tier_progress(950)

    assert progress.tier == Tier.STANDARD
    assert progress.next_tier == Tier.VERIFIED
    assert progress.next_threshold == 1000
    assert progress.xp_to_next == 50


def test_next_tier_progress_at_top_tier() -> None:
    progress = next_tier_progress(2400)

    assert progress.tier == Tier.SIGNATURE
    assert progress.next_tier is None
    assert progress.next_threshold is None
    assert progress.xp_to_next == 0

from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.orm.exc import StaleDataError

from auditoryx.core.constants import DAILY_XP_CAP, XPRateRule
from auditoryx.core.enums import Tier, XPEvent
from auditoryx.core.exceptions import (
    ConcurrencyConflictException,
    NotFoundException,
    ValidationException,
    XPRateLimitedException,
)
from auditoryx.models.progress import UserProgress, XPTransaction
from auditoryx.services.xp_service import XPService, parse_award_event

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def _hours_later(hours: int) -> datetime:
    """Awards an hour apart stay clear of the booking cooldown."""
    return NOW + timedelta(hours=hours)


@pytest.fixture
def xp_service(unit_db) -> XPService:
    return XPService(unit_db)


def test_first_award_creates_progress(xp_service, make_user, unit_db) -> None:
    user = make_user()

    result = xp_service.award_xp(user.id, XPEvent.BOOKING_COMPLETED, context_id="B1", now=NOW)

    assert result.amount_awarded == 100
    assert result.duplicate is False
    assert result.total_xp == 100
    progress = unit_db.get(UserProgress, user.id)
    assert progress.total_xp == 100
    assert progress.daily_xp == 100
    assert progress.points_month == 100
    assert progress.daily_bucket == date(2026, 3, 15)


def test_same_context_id_is_awarded_once(xp_service, make_user, unit_db) -> None:
    user = make_user()

    first = xp_service.award_xp(user.id, "bookingConfirmed", context_id="B2", now=NOW)
    second = xp_service.award_xp(user.id, "bookingConfirmed", context_id="B2", now=NOW)

    assert second.duplicate is True
    assert second.transaction_id == first.transaction_id
    assert second.total_xp == 50
    assert unit_db.query(XPTransaction).count() == 1


def test_context_id_is_scoped_to_event(xp_service, make_user) -> None:
    user = make_user()

    xp_service.award_xp(user.id, XPEvent.BOOKING_CONFIRMED, context_id="B3", now=NOW)
    result = xp_service.award_xp(user.id, XPEvent.ON_TIME_DELIVERY, context_id="B3", now=NOW)

    assert result.duplicate is False
    assert result.total_xp == 75


def test_awards_without_context_id_always_credit(xp_service, make_user) -> None:
    user = make_user()

    xp_service.award_xp(user.id, XPEvent.FIVE_STAR_REVIEW, now=NOW)
    result = xp_service.award_xp(
        user.id, XPEvent.FIVE_STAR_REVIEW, now=NOW + timedelta(minutes=31)
    )

    assert result.total_xp == 60


def test_daily_cap_limits_credit(xp_service, make_user, unit_db) -> None:
    user = make_user()

    for index in range(3):
        xp_service.award_xp(
            user.id, XPEvent.BOOKING_COMPLETED, context_id=f"C{index}", now=_hours_later(index)
        )
    capped = xp_service.award_xp(
        user.id, XPEvent.BOOKING_COMPLETED, context_id="C3", now=_hours_later(3)
    )

    assert capped.amount_awarded == 0
    assert capped.daily_cap_reached is True
    assert capped.total_xp == DAILY_XP_CAP
    transaction = unit_db.get(XPTransaction, capped.transaction_id)
    assert transaction.nominal_amount == 100
    assert transaction.amount_awarded == 0


def test_cap_resets_on_next_accounting_day(xp_service, make_user) -> None:
    user = make_user()
    for index in range(3):
        xp_service.award_xp(
            user.id, XPEvent.BOOKING_COMPLETED, context_id=f"D{index}", now=_hours_later(index)
        )

    tomorrow = xp_service.award_xp(
        user.id, XPEvent.BOOKING_COMPLETED, context_id="D3", now=NOW + timedelta(days=1)
    )

    assert tomorrow.amount_awarded == 100
    assert tomorrow.daily_cap_reached is False


def test_accounting_day_follows_user_timezone(xp_service, make_user, unit_db) -> None:
    user = make_user(tz="Asia/Tokyo")
    late_evening_utc = datetime(2026, 3, 15, 20, 0, tzinfo=timezone.utc)

    xp_service.award_xp(user.id, XPEvent.PROFILE_COMPLETED, now=late_evening_utc)

    assert unit_db.get(UserProgress, user.id).daily_bucket == date(2026, 3, 16)


def test_crossing_threshold_promotes_tier_in_same_update(
    xp_service, make_user, make_progress
) -> None:
    user = make_user()
    make_progress(user, total_xp=950, daily_xp=250, daily_bucket=date(2026, 3, 15))

    result = xp_service.award_xp(user.id, XPEvent.BOOKING_COMPLETED, context_id="B9", now=NOW)

    assert result.amount_awarded == 50
    assert result.daily_cap_reached is True
    assert result.total_xp == 1000
    assert result.tier == Tier.VERIFIED


def test_frozen_tier_does_not_move(xp_service, make_user, make_progress) -> None:
    user = make_user()
    make_progress(user, total_xp=990, tier_frozen=True)

    result = xp_service.award_xp(user.id, XPEvent.BOOKING_COMPLETED, now=NOW)

    assert result.total_xp == 1090
    assert result.tier == Tier.STANDARD


def test_quick_reply_streak(xp_service, make_user, unit_db) -> None:
    user = make_user()

    xp_service.award_xp(user.id, XPEvent.PROFILE_COMPLETED, quick_reply=True, now=NOW)
    xp_service.award_xp(
        user.id, XPEvent.FIVE_STAR_REVIEW, quick_reply=True, now=NOW + timedelta(hours=20)
    )
    assert unit_db.get(UserProgress, user.id).streak_count == 2

    xp_service.award_xp(
        user.id, XPEvent.FIVE_STAR_REVIEW, quick_reply=True, now=NOW + timedelta(hours=50)
    )
    assert unit_db.get(UserProgress, user.id).streak_count == 1


def test_unknown_event_rejected(xp_service, make_user) -> None:
    user = make_user()

    with pytest.raises(ValidationException) as exc_info:
        xp_service.award_xp(user.id, "likedAPost", now=NOW)
    assert exc_info.value.code == "UNKNOWN_XP_EVENT"


def test_admin_grant_is_not_an_automatic_event() -> None:
    with pytest.raises(ValidationException):
        parse_award_event(XPEvent.ADMIN_GRANT)


def test_award_for_missing_user(xp_service) -> None:
    with pytest.raises(NotFoundException):
        xp_service.award_xp("01HF4G12ABCDEF3456789XYZAB", XPEvent.PROFILE_COMPLETED, now=NOW)


def test_award_retries_lost_race(xp_service, make_user, unit_db, monkeypatch) -> None:
    user = make_user()
    real_commit = unit_db.commit
    calls = {"count": 0}

    def flaky_commit() -> None:
        calls["count"] += 1
        if calls["count"] == 1:
            raise StaleDataError("version mismatch")
        real_commit()

    monkeypatch.setattr(unit_db, "commit", flaky_commit)

    result = xp_service.award_xp(user.id, XPEvent.BOOKING_COMPLETED, context_id="R1", now=NOW)

    assert result.total_xp == 100
    assert calls["count"] == 2
    assert unit_db.query(XPTransaction).count() == 1


def test_award_gives_up_after_bounded_retries(xp_service, make_user, unit_db) -> None:
    user = make_user()

    with patch.object(unit_db, "commit", side_effect=StaleDataError("busy")):
        with pytest.raises(ConcurrencyConflictException):
            xp_service.award_xp(user.id, XPEvent.BOOKING_COMPLETED, now=NOW)

    assert unit_db.query(XPTransaction).count() == 0


def test_progress_snapshot_for_new_user_is_zeroed(xp_service, make_user) -> None:
    user = make_user()

    snapshot = xp_service.get_user_progress(user.id, now=NOW)

    assert snapshot.total_xp == 0
    assert snapshot.tier == Tier.STANDARD
    assert snapshot.persisted is False
    assert snapshot.next_tier.xp_to_next == 1000


def test_progress_daily_xp_reads_zero_after_rollover(xp_service, make_user) -> None:
    user = make_user()
    xp_service.award_xp(user.id, XPEvent.BOOKING_COMPLETED, now=NOW)

    today = xp_service.get_user_progress(user.id, now=NOW)
    tomorrow = xp_service.get_user_progress(user.id, now=NOW + timedelta(days=1))

    assert today.daily_xp == 100
    assert tomorrow.daily_xp == 0
    assert tomorrow.total_xp == 100


def test_history_is_newest_first_and_limited(xp_service, make_user) -> None:
    user = make_user()
    for hour in range(3):
        xp_service.award_xp(
            user.id, XPEvent.FIVE_STAR_REVIEW, now=NOW + timedelta(hours=hour)
        )

    history = xp_service.get_xp_history(user.id, limit=2)

    assert len(history) == 2
    assert history[0].occurred_at > history[1].occurred_at
    with pytest.raises(ValidationException):
        xp_service.get_xp_history(user.id, limit=0)


def test_backdated_award_leaves_current_day_cap_intact(xp_service, make_user, unit_db) -> None:
    user = make_user()
    april_2 = datetime(2026, 4, 2, 10, 0, tzinfo=timezone.utc)

    for index in range(2):
        xp_service.award_xp(
            user.id,
            XPEvent.CREATOR_REFERRAL,
            context_id=f"A{index}",
            now=april_2 + timedelta(hours=index),
        )
    backdated = xp_service.award_xp(
        user.id,
        XPEvent.CREATOR_REFERRAL,
        context_id="late",
        now=datetime(2026, 4, 1, 20, 0, tzinfo=timezone.utc),
    )
    later = [
        xp_service.award_xp(
            user.id,
            XPEvent.CREATOR_REFERRAL,
            context_id=f"B{index}",
            now=april_2 + timedelta(hours=2 + index),
        )
        for index in range(2)
    ]

    assert backdated.amount_awarded == 150
    assert [result.amount_awarded for result in later] == [0, 0]
    assert all(result.daily_cap_reached for result in later)
    progress = unit_db.get(UserProgress, user.id)
    assert progress.daily_bucket == date(2026, 4, 2)
    assert progress.daily_xp == DAILY_XP_CAP
    assert progress.total_xp == 450
    april_2_rows = unit_db.query(XPTransaction).filter(
        XPTransaction.day_bucket == date(2026, 4, 2)
    )
    assert sum(row.amount_awarded for row in april_2_rows) == DAILY_XP_CAP


def test_backdated_award_is_capped_against_its_own_day(xp_service, make_user, unit_db) -> None:
    user = make_user()
    april_1 = datetime(2026, 4, 1, 9, 0, tzinfo=timezone.utc)
    for index in range(2):
        xp_service.award_xp(
            user.id,
            XPEvent.CREATOR_REFERRAL,
            context_id=f"A{index}",
            now=april_1 + timedelta(hours=index),
        )
    xp_service.award_xp(
        user.id,
        XPEvent.BOOKING_CONFIRMED,
        context_id="today",
        now=datetime(2026, 4, 2, 9, 0, tzinfo=timezone.utc),
    )

    backdated = xp_service.award_xp(
        user.id, XPEvent.ON_TIME_DELIVERY, context_id="late", now=april_1 + timedelta(hours=5)
    )

    assert backdated.amount_awarded == 0
    assert backdated.daily_cap_reached is True
    progress = unit_db.get(UserProgress, user.id)
    assert progress.daily_bucket == date(2026, 4, 2)
    assert progress.daily_xp == 50


def test_repeat_review_inside_cooldown_is_refused(xp_service, make_user, unit_db) -> None:
    user = make_user()
    xp_service.award_xp(user.id, XPEvent.FIVE_STAR_REVIEW, context_id="R1", now=NOW)

    with pytest.raises(XPRateLimitedException) as exc_info:
        xp_service.award_xp(
            user.id, XPEvent.FIVE_STAR_REVIEW, context_id="R2", now=NOW + timedelta(minutes=10)
        )

    assert exc_info.value.code == "XP_RATE_LIMITED"
    assert exc_info.value.retry_after == 20 * 60
    assert exc_info.value.details["violation"] == "cooldown_violation"
    http_exc = exc_info.value.to_http_exception()
    assert http_exc.status_code == 429
    assert http_exc.headers == {"Retry-After": "1200"}
    assert unit_db.query(XPTransaction).count() == 1
    assert unit_db.get(UserProgress, user.id).total_xp == 30


def test_review_after_cooldown_is_credited(xp_service, make_user) -> None:
    user = make_user()
    xp_service.award_xp(user.id, XPEvent.FIVE_STAR_REVIEW, context_id="R1", now=NOW)

    result = xp_service.award_xp(
        user.id, XPEvent.FIVE_STAR_REVIEW, context_id="R2", now=NOW + timedelta(minutes=30)
    )

    assert result.amount_awarded == 30
    assert result.total_xp == 60


def test_replayed_context_inside_cooldown_is_still_a_duplicate(xp_service, make_user) -> None:
    user = make_user()
    first = xp_service.award_xp(user.id, XPEvent.FIVE_STAR_REVIEW, context_id="R1", now=NOW)

    replay = xp_service.award_xp(
        user.id, XPEvent.FIVE_STAR_REVIEW, context_id="R1", now=NOW + timedelta(minutes=5)
    )

    assert replay.duplicate is True
    assert replay.transaction_id == first.transaction_id


def test_hourly_limit_is_enforced(xp_service, make_user, monkeypatch) -> None:
    monkeypatch.setattr(
        "auditoryx.services.xp_service.XP_RATE_RULES",
        {XPEvent.FIVE_STAR_REVIEW: XPRateRule(cooldown_minutes=0, max_per_hour=2, max_per_day=10)},
    )
    user = make_user()
    for minute in range(2):
        xp_service.award_xp(
            user.id,
            XPEvent.FIVE_STAR_REVIEW,
            context_id=f"H{minute}",
            now=NOW + timedelta(minutes=minute),
        )

    with pytest.raises(XPRateLimitedException) as exc_info:
        xp_service.award_xp(
            user.id, XPEvent.FIVE_STAR_REVIEW, context_id="H2", now=NOW + timedelta(minutes=2)
        )

    assert exc_info.value.details["violation"] == "rate_limit_exceeded"
    assert "per hour" in exc_info.value.message


def test_daily_limit_is_enforced(xp_service, make_user) -> None:
    user = make_user()
    for index in range(10):
        xp_service.award_xp(
            user.id,
            XPEvent.FIVE_STAR_REVIEW,
            context_id=f"D{index}",
            now=NOW + timedelta(minutes=31 * index),
        )

    with pytest.raises(XPRateLimitedException) as exc_info:
        xp_service.award_xp(
            user.id, XPEvent.FIVE_STAR_REVIEW, context_id="D10", now=NOW + timedelta(minutes=310)
        )

    assert "per day" in exc_info.value.message
    assert exc_info.value.retry_after == 86400


def test_events_without_rate_rule_are_not_throttled(xp_service, make_user) -> None:
    user = make_user()

    results = [
        xp_service.award_xp(user.id, XPEvent.BOOKING_CONFIRMED, context_id=f"K{index}", now=NOW)
        for index in range(3)
    ]

    assert [result.amount_awarded for result in results] == [50, 50, 50]

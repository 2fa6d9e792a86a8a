from datetime import datetime, timezone
import logging

import pytest

from auditoryx.models.leaderboard import LeaderboardEntry
from auditoryx.models.progress import UserProgress
from auditoryx.models.user import User
from auditoryx.services.leaderboard_service import LeaderboardService, ranking_period

FIRST_OF_MONTH = datetime(2026, 4, 1, 0, 5, tzinfo=timezone.utc)
MID_MONTH = datetime(2026, 4, 15, 0, 5, tzinfo=timezone.utc)


@pytest.fixture
def leaderboard_service(unit_db) -> LeaderboardService:
    return LeaderboardService(unit_db)


@pytest.fixture
def tokyo_producers(make_user, make_progress):
    users = []
    for index in range(12):
        user = make_user(f"Producer {index:02d}", city="Tokyo", role="producer")
        make_progress(user, total_xp=index * 100, points_month=index * 10)
        users.append(user)
    return users


def test_ranking_period() -> None:
    assert ranking_period(FIRST_OF_MONTH) == "2026-03"
    assert ranking_period(MID_MONTH) == "2026-04"
    assert ranking_period(datetime(2026, 1, 1, tzinfo=timezone.utc)) == "2025-12"


def test_first_of_month_ranks_last_month_then_resets(
    leaderboard_service, tokyo_producers, unit_db
) -> None:
    result = leaderboard_service.run_leaderboard_aggregation(now=FIRST_OF_MONTH)

    assert result.groups_written == 1
    assert result.groups_failed == 0
    assert result.reset_applied is True

    entries = leaderboard_service.get_leaderboard("Tokyo", "producer")
    assert len(entries) == 10
    assert [entry.rank for entry in entries] == list(range(1, 11))
    assert entries[0].display_name == "Producer 11"
    assert entries[0].points_month == 110
    assert entries[-1].points_month == 20
    assert {entry.period for entry in entries} == {"2026-03"}

    assert {p.points_month for p in unit_db.query(UserProgress).all()} == {0}
    # Lifetime XP untouched
    assert sum(p.total_xp for p in unit_db.query(UserProgress).all()) == 6600


def test_mid_month_run_keeps_counters(leaderboard_service, tokyo_producers, unit_db) -> None:
    result = leaderboard_service.run_leaderboard_aggregation(now=MID_MONTH)

    assert result.reset_applied is False
    assert max(p.points_month for p in unit_db.query(UserProgress).all()) == 110


def test_rerun_supersedes_previous_snapshot(
    leaderboard_service, tokyo_producers, unit_db
) -> None:
    leaderboard_service.run_leaderboard_aggregation(now=MID_MONTH)
    leaderboard_service.run_leaderboard_aggregation(now=MID_MONTH)

    assert unit_db.query(LeaderboardEntry).count() == 10


def test_ties_break_by_uid(leaderboard_service, make_user, make_progress) -> None:
    tied = [make_user(f"Engineer {n}", city="Berlin", role="engineer") for n in range(3)]
    for user in tied:
        make_progress(user, points_month=40)

    leaderboard_service.run_leaderboard_aggregation(now=MID_MONTH)

    entries = leaderboard_service.get_leaderboard("Berlin", "engineer")
    assert [entry.uid for entry in entries] == sorted(user.id for user in tied)


def test_users_without_city_or_role_are_not_ranked(
    leaderboard_service, make_user, make_progress, unit_db
) -> None:
    make_progress(make_user("Client"), points_month=500)
    make_progress(make_user("Nomad", role="artist"), points_month=500)

    result = leaderboard_service.run_leaderboard_aggregation(now=MID_MONTH)

    assert result.groups_written == 0
    assert unit_db.query(LeaderboardEntry).count() == 0


def test_failed_group_does_not_block_others(
    leaderboard_service, make_user, make_progress, monkeypatch
) -> None:
    make_progress(make_user("A", city="Lagos", role="artist"), points_month=10)
    make_progress(make_user("B", city="Tokyo", role="producer"), points_month=20)
    real_replace = leaderboard_service.leaderboard_repository.replace_group

    def flaky_replace(city, role, rows):
        if city == "Lagos":
            raise RuntimeError("disk full")
        return real_replace(city, role, rows)

    monkeypatch.setattr(leaderboard_service.leaderboard_repository, "replace_group", flaky_replace)

    result = leaderboard_service.run_leaderboard_aggregation(now=FIRST_OF_MONTH)

    assert result.groups_written == 1
    assert result.groups_failed == 1
    assert result.reset_applied is True
    assert len(leaderboard_service.get_leaderboard("Tokyo", "producer")) == 1
    assert leaderboard_service.get_leaderboard("Lagos", "artist") == []


def test_group_emptied_when_its_only_member_moves(
    leaderboard_service, make_user, make_progress, unit_db
) -> None:
    engineer = make_user("Mover", city="Osaka", role="engineer")
    make_progress(engineer, points_month=70)
    leaderboard_service.run_leaderboard_aggregation(now=MID_MONTH)
    assert len(leaderboard_service.get_leaderboard("Osaka", "engineer")) == 1

    unit_db.get(User, engineer.id).city = "Tokyo"
    unit_db.commit()
    result = leaderboard_service.run_leaderboard_aggregation(now=MID_MONTH)

    assert result.groups_written == 1
    assert result.groups_cleared == 1
    assert leaderboard_service.get_leaderboard("Osaka", "engineer") == []
    assert [entry.uid for entry in leaderboard_service.get_leaderboard("Tokyo", "engineer")] == [
        engineer.id
    ]


def test_group_emptied_when_member_drops_role(
    leaderboard_service, make_user, make_progress, unit_db
) -> None:
    artist = make_user("Retired", city="Lagos", role="artist")
    make_progress(artist, points_month=15)
    leaderboard_service.run_leaderboard_aggregation(now=MID_MONTH)

    unit_db.get(User, artist.id).role = None
    unit_db.commit()
    result = leaderboard_service.run_leaderboard_aggregation(now=MID_MONTH)

    assert result.groups_cleared == 1
    assert unit_db.query(LeaderboardEntry).count() == 0


def test_group_failing_on_reset_day_is_logged_as_lost(
    leaderboard_service, make_user, make_progress, monkeypatch, caplog
) -> None:
    make_progress(make_user("A", city="Lagos", role="artist"), points_month=10)
    make_progress(make_user("B", city="Tokyo", role="producer"), points_month=20)
    real_replace = leaderboard_service.leaderboard_repository.replace_group

    def flaky_replace(city, role, rows):
        if city == "Lagos":
            raise RuntimeError("disk full")
        return real_replace(city, role, rows)

    monkeypatch.setattr(leaderboard_service.leaderboard_repository, "replace_group", flaky_replace)
    caplog.set_level(logging.ERROR)

    result = leaderboard_service.run_leaderboard_aggregation(now=FIRST_OF_MONTH)

    assert result.groups_failed == 1
    assert result.reset_applied is True
    lost = [r for r in caplog.records if r.getMessage() == "Leaderboard group lost at month reset"]
    assert len(lost) == 1
    assert (lost[0].city, lost[0].role, lost[0].period) == ("Lagos", "artist", "2026-03")


def test_failed_group_mid_month_is_not_reported_lost(
    leaderboard_service, make_user, make_progress, monkeypatch, caplog
) -> None:
    make_progress(make_user("A", city="Lagos", role="artist"), points_month=10)

    def broken_replace(city, role, rows):
        raise RuntimeError("disk full")

    monkeypatch.setattr(
        leaderboard_service.leaderboard_repository, "replace_group", broken_replace
    )
    caplog.set_level(logging.ERROR)

    result = leaderboard_service.run_leaderboard_aggregation(now=MID_MONTH)

    assert result.groups_failed == 1
    assert result.reset_applied is False
    assert not [r for r in caplog.records if "lost at month reset" in r.getMessage()]

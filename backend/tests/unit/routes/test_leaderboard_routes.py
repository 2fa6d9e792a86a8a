from datetime import datetime, timezone

from auditoryx.services.leaderboard_service import LeaderboardService


def test_leaderboard_snapshot(client, unit_db, make_user, make_progress) -> None:
    user = make_user("Top Producer", city="Tokyo", role="producer")
    make_progress(user, points_month=120)
    LeaderboardService(unit_db).run_leaderboard_aggregation(
        now=datetime(2026, 4, 15, tzinfo=timezone.utc)
    )

    response = client.get("/api/v1/leaderboards/Tokyo/producer")

    assert response.status_code == 200
    body = response.json()
    assert body["city"] == "Tokyo"
    assert body["entries"] == [
        {
            "rank": 1,
            "uid": user.id,
            "display_name": "Top Producer",
            "points_month": 120,
            "period": "2026-04",
        }
    ]


def test_empty_group(client) -> None:
    response = client.get("/api/v1/leaderboards/Oslo/artist")

    assert response.status_code == 200
    assert response.json()["entries"] == []
    assert response.json()["generated_at"] is None


def test_unknown_role(client) -> None:
    assert client.get("/api/v1/leaderboards/Oslo/drummer").status_code == 404


def test_health_and_metrics(client) -> None:
    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/live").json() == {"ok": True}
    metrics = client.get("/metrics/prometheus")
    assert metrics.status_code == 200
    assert "auditoryx" in metrics.text

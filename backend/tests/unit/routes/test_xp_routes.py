def test_award_requires_privileged_caller(client, make_user, headers) -> None:
    user = make_user()

    response = client.post(
        "/api/v1/xp/award",
        json={"uid": user.id, "event": "bookingCompleted"},
        headers=headers(user.id),
    )

    assert response.status_code == 403


def test_award_and_read_back(client, make_user, headers, system_headers) -> None:
    user = make_user()

    award = client.post(
        "/api/v1/xp/award",
        json={"uid": user.id, "event": "bookingCompleted", "context_id": "B1"},
        headers=system_headers,
    )
    repeat = client.post(
        "/api/v1/xp/award",
        json={"uid": user.id, "event": "bookingCompleted", "context_id": "B1"},
        headers=system_headers,
    )
    progress = client.get(f"/api/v1/xp/progress/{user.id}", headers=headers(user.id))
    history = client.get(f"/api/v1/xp/history/{user.id}", headers=headers(user.id))

    assert award.status_code == 200
    assert award.json()["amount_awarded"] == 100
    assert repeat.json()["duplicate"] is True
    assert repeat.json()["transaction_id"] == award.json()["transaction_id"]
    assert progress.json()["total_xp"] == 100
    assert progress.json()["next_tier"]["xp_to_next"] == 900
    assert len(history.json()["transactions"]) == 1


def test_admin_grant_event_cannot_be_awarded(client, make_user, system_headers) -> None:
    user = make_user()

    response = client.post(
        "/api/v1/xp/award",
        json={"uid": user.id, "event": "adminGrant"},
        headers=system_headers,
    )

    assert response.status_code == 400
    assert response.json()["code"] == "UNKNOWN_XP_EVENT"


def test_unknown_event_fails_validation(client, make_user, system_headers) -> None:
    user = make_user()

    response = client.post(
        "/api/v1/xp/award", json={"uid": user.id, "event": "likedAPost"}, headers=system_headers
    )

    assert response.status_code == 422


def test_progress_of_another_user_is_forbidden(client, make_user, headers) -> None:
    user = make_user()
    other = make_user("Other")

    response = client.get(f"/api/v1/xp/progress/{other.id}", headers=headers(user.id))

    assert response.status_code == 403


def test_admin_routes(client, make_user, headers, admin_headers, system_headers) -> None:
    user = make_user()

    forbidden = client.post(
        "/api/v1/admin/xp/grant",
        json={"target_uid": user.id, "amount": 50, "reason": "Bonus"},
        headers=system_headers,
    )
    grant = client.post(
        "/api/v1/admin/xp/grant",
        json={"target_uid": user.id, "amount": 1200, "reason": "Bonus"},
        headers=admin_headers,
    )
    freeze = client.post(
        "/api/v1/admin/xp/freeze-tier",
        json={"target_uid": user.id, "reason": "Review"},
        headers=admin_headers,
    )
    late = client.post(
        "/api/v1/admin/xp/late-delivery", json={"uid": user.id}, headers=system_headers
    )

    assert forbidden.status_code == 403
    assert grant.status_code == 200
    assert grant.json()["tier"] == "verified"
    assert freeze.json()["tier_frozen"] is True
    assert late.json()["late_deliveries"] == 1


def test_repeat_review_inside_cooldown_returns_429(client, make_user, system_headers) -> None:
    user = make_user()

    first = client.post(
        "/api/v1/xp/award",
        json={"uid": user.id, "event": "fiveStarReview", "context_id": "R1"},
        headers=system_headers,
    )
    second = client.post(
        "/api/v1/xp/award",
        json={"uid": user.id, "event": "fiveStarReview", "context_id": "R2"},
        headers=system_headers,
    )

    assert first.status_code == 200
    assert second.status_code == 429
    assert second.json()["code"] == "XP_RATE_LIMITED"
    assert int(second.headers["retry-after"]) > 0

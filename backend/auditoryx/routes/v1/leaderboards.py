# backend/auditoryx/routes/v1/leaderboards.py
"""
Leaderboard routes - API v1

Endpoints:
    GET /{city}/{role} - Current top creators for a city and creator role
"""

from fastapi import APIRouter, Depends, HTTPException, status

from ...api.dependencies import get_leaderboard_service
from ...core.enums import CreatorRole
from ...schemas.gamification import LeaderboardEntryResponse, LeaderboardResponse
from ...services.leaderboard_service import LeaderboardService

router = APIRouter(tags=["leaderboards-v1"])


@router.get("/{city}/{role}", response_model=LeaderboardResponse)
def get_leaderboard(
    city: str,
    role: str,
    service: LeaderboardService = Depends(get_leaderboard_service),
) -> LeaderboardResponse:
    """Public snapshot written by the last aggregation run."""
    try:
        creator_role = CreatorRole(role.lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown creator role: {role}"
        )
    entries = service.get_leaderboard(city, creator_role.value)
    return LeaderboardResponse(
        city=city,
        role=creator_role.value,
        generated_at=entries[0].generated_at if entries else None,
        entries=[LeaderboardEntryResponse.model_validate(entry) for entry in entries],
    )

# backend/auditoryx/routes/v1/xp.py
"""
XP ledger routes - API v1

Endpoints:
    POST /award - Award XP for a platform event (system/admin callers)
    GET /progress/{uid} - Current XP, tier and streak
    GET /history/{uid} - Newest-first XP transactions
"""

import logging
from typing import NoReturn

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from ...api.dependencies import get_current_actor, get_xp_service, require_privileged_actor
from ...core.constants import XP_HISTORY_DEFAULT_LIMIT, XP_HISTORY_MAX_LIMIT
from ...core.exceptions import DomainException
from ...schemas.gamification import (
    NextTierResponse,
    UserProgressResponse,
    XPAwardRequest,
    XPAwardResponse,
    XPHistoryResponse,
    XPTransactionResponse,
)
from ...services.booking_state_machine import Actor
from ...services.xp_service import XPService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["xp-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _ensure_can_read(actor: Actor, uid: str) -> None:
    if not actor.is_privileged and actor.user_id != uid:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Cannot read another user's XP ledger"
        )


@router.post(
    "/award",
    response_model=XPAwardResponse,
    responses={
        400: {"description": "Unknown XP event"},
        404: {"description": "User not found"},
        429: {"description": "Cooldown or rate limit for the event is active"},
        503: {"description": "Concurrent update, retry later"},
    },
)
def award_xp(
    payload: XPAwardRequest = Body(...),
    actor: Actor = Depends(require_privileged_actor),
    xp_service: XPService = Depends(get_xp_service),
) -> XPAwardResponse:
    """Credit XP for an event; repeats with the same context id return the first award."""
    try:
        result = xp_service.award_xp(
            payload.uid,
            payload.event,
            context_id=payload.context_id,
            metadata=payload.metadata,
            quick_reply=payload.quick_reply,
        )
        return XPAwardResponse(**result.to_payload())
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/progress/{uid}", response_model=UserProgressResponse)
def get_user_progress(
    uid: str,
    actor: Actor = Depends(get_current_actor),
    xp_service: XPService = Depends(get_xp_service),
) -> UserProgressResponse:
    _ensure_can_read(actor, uid)
    try:
        snapshot = xp_service.get_user_progress(uid)
        return UserProgressResponse(
            uid=snapshot.uid,
            total_xp=snapshot.total_xp,
            daily_xp=snapshot.daily_xp,
            daily_bucket=snapshot.daily_bucket,
            streak_count=snapshot.streak_count,
            last_activity_at=snapshot.last_activity_at,
            tier=snapshot.tier,
            tier_frozen=snapshot.tier_frozen,
            late_deliveries=snapshot.late_deliveries,
            points_month=snapshot.points_month,
            next_tier=NextTierResponse(
                next_tier=snapshot.next_tier.next_tier,
                next_threshold=snapshot.next_tier.next_threshold,
                xp_to_next=snapshot.next_tier.xp_to_next,
            ),
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/history/{uid}", response_model=XPHistoryResponse)
def get_xp_history(
    uid: str,
    limit: int = Query(XP_HISTORY_DEFAULT_LIMIT, ge=1, le=XP_HISTORY_MAX_LIMIT),
    actor: Actor = Depends(get_current_actor),
    xp_service: XPService = Depends(get_xp_service),
) -> XPHistoryResponse:
    _ensure_can_read(actor, uid)
    try:
        transactions = xp_service.get_xp_history(uid, limit=limit)
        return XPHistoryResponse(
            uid=uid,
            transactions=[XPTransactionResponse.model_validate(t) for t in transactions],
        )
    except DomainException as e:
        handle_domain_exception(e)

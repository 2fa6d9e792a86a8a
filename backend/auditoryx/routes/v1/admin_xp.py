# backend/auditoryx/routes/v1/admin_xp.py
"""
Admin XP routes - API v1

Endpoints:
    POST /grant - Manual XP grant
    POST /freeze-tier - Pin a user's tier
    POST /unfreeze-tier - Lift a tier freeze
    POST /late-delivery - Record a late delivery (system or admin)
"""

import logging
from typing import NoReturn

from fastapi import APIRouter, Body, Depends, HTTPException, status

from ...api.dependencies import get_xp_admin_service, require_admin_actor, require_privileged_actor
from ...core.exceptions import DomainException
from ...schemas.gamification import (
    AdminGrantRequest,
    LateDeliveryRequest,
    TierActionRequest,
    TierStateResponse,
    XPAwardResponse,
)
from ...services.booking_state_machine import Actor
from ...services.xp_admin_service import TierState, XPAdminService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin-xp-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _tier_response(state: TierState) -> TierStateResponse:
    return TierStateResponse(
        uid=state.uid,
        tier=state.tier,
        tier_frozen=state.tier_frozen,
        late_deliveries=state.late_deliveries,
        total_xp=state.total_xp,
    )


@router.post("/grant", response_model=XPAwardResponse)
def grant_xp(
    payload: AdminGrantRequest = Body(...),
    admin: Actor = Depends(require_admin_actor),
    service: XPAdminService = Depends(get_xp_admin_service),
) -> XPAwardResponse:
    try:
        result = service.grant_xp(admin.user_id, payload.target_uid, payload.amount, payload.reason)
        return XPAwardResponse(**result.to_payload())
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/freeze-tier", response_model=TierStateResponse)
def freeze_tier(
    payload: TierActionRequest = Body(...),
    admin: Actor = Depends(require_admin_actor),
    service: XPAdminService = Depends(get_xp_admin_service),
) -> TierStateResponse:
    try:
        state = service.freeze_tier(admin.user_id, payload.target_uid, payload.reason)
        return _tier_response(state)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/unfreeze-tier", response_model=TierStateResponse)
def unfreeze_tier(
    payload: TierActionRequest = Body(...),
    admin: Actor = Depends(require_admin_actor),
    service: XPAdminService = Depends(get_xp_admin_service),
) -> TierStateResponse:
    try:
        state = service.unfreeze_tier(admin.user_id, payload.target_uid, payload.reason)
        return _tier_response(state)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/late-delivery", response_model=TierStateResponse)
def record_late_delivery(
    payload: LateDeliveryRequest = Body(...),
    actor: Actor = Depends(require_privileged_actor),
    service: XPAdminService = Depends(get_xp_admin_service),
) -> TierStateResponse:
    try:
        state = service.record_late_delivery(payload.uid, booking_id=payload.booking_id)
        return _tier_response(state)
    except DomainException as e:
        handle_domain_exception(e)

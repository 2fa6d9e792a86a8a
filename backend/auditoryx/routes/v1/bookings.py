# backend/auditoryx/routes/v1/bookings.py
"""
Booking ledger routes - API v1

Versioned booking endpoints under /api/v1/bookings.
All business logic delegated to BookingStateMachine and RefundService.

Endpoints:
    GET /refunds - Refund history for the caller
    POST /{booking_id}/transition - Move a booking to a new status
    GET /{booking_id}/refund-preview - What a cancellation would refund now
    POST /{booking_id}/refund - Cancel with refund through the gateway
    GET /{booking_id}/activity - Booking activity log
"""

import logging
from typing import NoReturn

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.params import Path

from ...api.dependencies import (
    get_booking_state_machine,
    get_current_actor,
    get_refund_service,
)
from ...core.exceptions import DomainException
from ...schemas.booking import (
    ActivityLogEntry,
    ActivityLogResponse,
    BookingResponse,
    RefundHistoryItem,
    RefundHistoryResponse,
    RefundPreviewResponse,
    RefundRequest,
    RefundResponse,
    TransitionRequest,
)
from ...services.booking_state_machine import Actor, BookingStateMachine
from ...services.refund_service import RefundService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["bookings-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.get("/refunds", response_model=RefundHistoryResponse)
def get_refund_history(
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(get_current_actor),
    refund_service: RefundService = Depends(get_refund_service),
) -> RefundHistoryResponse:
    """Refunded bookings where the caller was client or provider."""
    if actor.user_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="X-User-Id required")
    try:
        bookings = refund_service.get_refund_history(actor.user_id, limit=limit)
        items = [RefundHistoryItem.model_validate(booking) for booking in bookings]
        return RefundHistoryResponse(refunds=items, total=len(items))
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{booking_id}/transition",
    response_model=BookingResponse,
    responses={
        403: {"description": "Caller may not act on this booking"},
        404: {"description": "Booking not found"},
        409: {"description": "Transition not allowed from the current status"},
        503: {"description": "Concurrent update, retry later"},
    },
)
def transition_booking(
    booking_id: str = Path(
        ...,
        description="Booking ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    ),
    payload: TransitionRequest = Body(...),
    actor: Actor = Depends(get_current_actor),
    state_machine: BookingStateMachine = Depends(get_booking_state_machine),
) -> BookingResponse:
    """Move a booking along its lifecycle."""
    try:
        booking = state_machine.transition(
            booking_id, payload.target_status, actor, reason=payload.reason
        )
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.get(
    "/{booking_id}/refund-preview",
    response_model=RefundPreviewResponse,
    responses={404: {"description": "Booking not found"}},
)
def preview_refund(
    booking_id: str = Path(
        ...,
        description="Booking ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    ),
    is_emergency: bool = Query(False),
    actor: Actor = Depends(get_current_actor),
    refund_service: RefundService = Depends(get_refund_service),
) -> RefundPreviewResponse:
    """Refund the caller would receive if the booking were cancelled now."""
    try:
        preview = refund_service.preview_refund(
            booking_id,
            is_emergency=is_emergency,
            user_id=actor.user_id,
            actor_role=actor.role,
        )
        return RefundPreviewResponse(booking_id=booking_id, **preview.to_payload())
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{booking_id}/refund",
    response_model=RefundResponse,
    responses={
        402: {"description": "Refund declined by the payment gateway"},
        403: {"description": "Caller may not refund this booking"},
        404: {"description": "Booking not found"},
        409: {"description": "Refund already in progress or booking not cancellable"},
        422: {"description": "Booking not eligible for a refund"},
        503: {"description": "Payment gateway unavailable, retry later"},
    },
)
def process_refund(
    booking_id: str = Path(
        ...,
        description="Booking ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    ),
    payload: RefundRequest = Body(...),
    actor: Actor = Depends(get_current_actor),
    refund_service: RefundService = Depends(get_refund_service),
) -> RefundResponse:
    """Cancel the booking and refund the client according to the refund policy."""
    try:
        result = refund_service.process_refund(
            booking_id,
            actor.user_id,
            payload.reason,
            payload.is_emergency,
            actor_role=actor.role,
        )
        return RefundResponse(**result.to_payload())
    except DomainException as e:
        handle_domain_exception(e)


@router.get(
    "/{booking_id}/activity",
    response_model=ActivityLogResponse,
    responses={404: {"description": "Booking not found"}},
)
def get_booking_activity(
    booking_id: str = Path(
        ...,
        description="Booking ULID",
        pattern=ULID_PATH_PATTERN,
        examples=["01HF4G12ABCDEF3456789XYZAB"],
    ),
    actor: Actor = Depends(get_current_actor),
    state_machine: BookingStateMachine = Depends(get_booking_state_machine),
) -> ActivityLogResponse:
    try:
        entries = state_machine.get_activity(booking_id, actor)
        return ActivityLogResponse(
            booking_id=booking_id,
            entries=[ActivityLogEntry.model_validate(entry) for entry in entries],
        )
    except DomainException as e:
        handle_domain_exception(e)

"""Schemas for booking transitions, refunds and the activity log."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from ..core.enums import BookingStatus, EscrowStatus
from .base import ResponseModel, StrictRequestModel


class TransitionRequest(StrictRequestModel):
    target_status: BookingStatus
    reason: Optional[str] = Field(default=None, max_length=1000)


class RefundRequest(StrictRequestModel):
    reason: str = Field(..., min_length=1, max_length=1000)
    is_emergency: bool = False


class BookingResponse(ResponseModel):
    id: str
    client_uid: str
    provider_uid: str
    status: BookingStatus
    scheduled_at: datetime
    total_cost_cents: int
    payment_status: str
    revenue_split: Optional[Dict[str, float]] = None
    refund_amount_cents: Optional[int] = None
    refund_reason: Optional[str] = None
    refunded_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: datetime


class RefundPreviewResponse(ResponseModel):
    booking_id: str
    can_refund: bool
    refund_amount_cents: int
    refund_percentage: int
    processing_fee_cents: int
    hours_until_booking: float
    escrow_status: EscrowStatus
    reason: str
    is_emergency: bool


class RefundResponse(ResponseModel):
    booking_id: str
    status: BookingStatus
    payment_status: str
    refund_amount_cents: int
    refund_percentage: int
    processing_fee_cents: int
    refund_id: Optional[str] = None
    gateway_status: str


class RefundHistoryItem(ResponseModel):
    booking_id: str = Field(validation_alias="id")
    client_uid: str
    provider_uid: str
    scheduled_at: datetime
    total_cost_cents: int
    refund_amount_cents: Optional[int] = None
    refund_reason: Optional[str] = None
    refunded_at: Optional[datetime] = None


class RefundHistoryResponse(ResponseModel):
    refunds: List[RefundHistoryItem]
    total: int


class ActivityLogEntry(ResponseModel):
    id: str
    actor_uid: Optional[str] = None
    actor_role: str
    action: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    created_at: datetime


class ActivityLogResponse(ResponseModel):
    booking_id: str
    entries: List[ActivityLogEntry]

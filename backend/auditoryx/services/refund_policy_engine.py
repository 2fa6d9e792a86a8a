"""Refund policy evaluation for booking cancellations."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..core.constants import (
    PROCESSING_FEE_FIXED_CENTS,
    PROCESSING_FEE_MAX_SHARE_BPS,
    PROCESSING_FEE_RATE_BPS,
    REFUND_BANDS,
    RefundBands,
)
from ..core.enums import BookingStatus, EscrowStatus, PaymentStatus, Tier
from ..core.timezone_utils import ensure_utc
from ..models.booking import Booking

_TERMINAL_STATUSES = {BookingStatus.CANCELLED.value, BookingStatus.REVIEWED.value}
PAST_SESSION_REASON = "Cannot cancel bookings that have already occurred"


def _bps(amount_cents: int, bps: int) -> int:
    """``amount * bps / 10000`` rounded half up, in whole cents."""
    return (amount_cents * bps + 5000) // 10000


@dataclass(frozen=True)
class RefundPreview:
    can_refund: bool
    refund_amount_cents: int
    refund_percentage: int
    processing_fee_cents: int
    hours_until_booking: float
    escrow_status: EscrowStatus
    reason: str
    is_emergency: bool = False

    def to_payload(self) -> dict[str, object]:
        return {
            "can_refund": self.can_refund,
            "refund_amount_cents": int(self.refund_amount_cents),
            "refund_percentage": int(self.refund_percentage),
            "processing_fee_cents": int(self.processing_fee_cents),
            "hours_until_booking": round(self.hours_until_booking, 2),
            "escrow_status": self.escrow_status.value,
            "reason": self.reason,
            "is_emergency": self.is_emergency,
        }


def refund_bands_for(tier: Tier | str | None) -> RefundBands:
    """Band table for a provider tier; unknown or missing tiers get the standard policy."""
    try:
        return REFUND_BANDS[Tier(tier)] if tier is not None else REFUND_BANDS[Tier.STANDARD]
    except ValueError:
        return REFUND_BANDS[Tier.STANDARD]


def refund_percentage_for(
    hours_until_booking: float,
    *,
    is_emergency: bool = False,
    tier: Tier | str | None = Tier.STANDARD,
) -> int:
    """Band lookup; closer bookings never refund more than distant ones."""
    if is_emergency:
        return 100
    for min_hours, percentage in refund_bands_for(tier):
        if hours_until_booking >= min_hours:
            return percentage
    return 0


def _notice_reason(percentage: int, hours_until_booking: float, bands: RefundBands) -> str:
    if percentage == 0:
        return "No refund (less than 24 hours notice)"
    floor = max(h for h, pct in bands if hours_until_booking >= h)
    label = "Full refund" if percentage == 100 else f"{percentage}% refund"
    return f"{label} ({floor:g}+ hours notice)"


def processing_fee_for(total_cents: int, base_refund_cents: int) -> int:
    """
    Card processing fee kept back from a refund.

    2.9% + 30c of the captured amount, limited to 10% of the refund and
    never more than the refund itself.
    """
    if base_refund_cents <= 0:
        return 0
    fee = min(
        _bps(total_cents, PROCESSING_FEE_RATE_BPS) + PROCESSING_FEE_FIXED_CENTS,
        _bps(base_refund_cents, PROCESSING_FEE_MAX_SHARE_BPS),
    )
    return max(0, min(fee, base_refund_cents))


class RefundPolicyEngine:
    """Computes refund previews. Pure: no I/O, no clock reads."""

    def escrow_status(self, booking: Booking) -> EscrowStatus:
        if booking.payment_status == PaymentStatus.REFUNDED.value:
            return EscrowStatus.REFUNDED
        if booking.status in {BookingStatus.COMPLETED.value, BookingStatus.REVIEWED.value}:
            return EscrowStatus.RELEASED
        return EscrowStatus.HELD

    def ineligibility_reason(self, booking: Booking) -> str | None:
        if booking.payment_status == PaymentStatus.REFUNDED.value:
            return "Booking has already been refunded"
        if booking.status in _TERMINAL_STATUSES:
            return f"Booking is {booking.status} and can no longer be refunded"
        if booking.status == BookingStatus.COMPLETED.value:
            return "Completed bookings have been released from escrow"
        if booking.payment_status != PaymentStatus.PAID.value:
            return "No captured payment to refund"
        return None

    def preview(
        self,
        booking: Booking,
        now: datetime,
        *,
        is_emergency: bool = False,
        provider_tier: Tier | str | None = Tier.STANDARD,
    ) -> RefundPreview:
        """
        What cancelling ``booking`` at ``now`` would refund.

        The band table is the provider's tier policy; emergencies refund in full
        regardless of tier. Sessions that have already started are not refundable.
        """
        raw_hours = (ensure_utc(booking.scheduled_at) - ensure_utc(now)).total_seconds() / 3600
        hours_until_booking = max(0.0, raw_hours)
        escrow = self.escrow_status(booking)

        blocked = self.ineligibility_reason(booking)
        if blocked is None and raw_hours < 0:
            blocked = PAST_SESSION_REASON
        if blocked is not None:
            return RefundPreview(
                can_refund=False,
                refund_amount_cents=0,
                refund_percentage=0,
                processing_fee_cents=0,
                hours_until_booking=hours_until_booking,
                escrow_status=escrow,
                reason=blocked,
                is_emergency=is_emergency,
            )

        captured = int(booking.total_cost_cents or 0)
        bands = refund_bands_for(provider_tier)
        percentage = refund_percentage_for(
            raw_hours, is_emergency=is_emergency, tier=provider_tier
        )
        base_refund = min(captured, captured * percentage // 100)
        fee = 0 if is_emergency else processing_fee_for(captured, base_refund)
        refund_amount = max(0, base_refund - fee)

        if is_emergency:
            reason = "Emergency cancellation - full refund"
        else:
            reason = _notice_reason(percentage, raw_hours, bands)

        return RefundPreview(
            can_refund=True,
            refund_amount_cents=refund_amount,
            refund_percentage=percentage,
            processing_fee_cents=fee,
            hours_until_booking=hours_until_booking,
            escrow_status=escrow,
            reason=reason,
            is_emergency=is_emergency,
        )

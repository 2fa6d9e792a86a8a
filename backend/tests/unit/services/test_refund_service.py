from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from auditoryx.core import booking_lock
from auditoryx.core.enums import ActorRole, BookingStatus, PaymentStatus
from auditoryx.core.exceptions import (
    ConflictException,
    ForbiddenException,
    GatewayDeclinedException,
    GatewayUnavailableException,
    InvalidTransitionException,
    NotEligibleException,
)
from auditoryx.integrations.stripe_gateway import GatewayRefund
from auditoryx.models.booking import Booking, BookingActivityLog
from auditoryx.models.event_outbox import EventOutbox
from auditoryx.services.notification_service import NotificationService
from auditoryx.services.refund_service import RefundService, refund_idempotency_key

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def gateway() -> MagicMock:
    gateway = MagicMock()
    gateway.refund.return_value = GatewayRefund(id="re_123", status="succeeded", amount_cents=0)
    return gateway


@pytest.fixture
def dispatcher() -> MagicMock:
    return MagicMock()


@pytest.fixture
def refund_service(unit_db, gateway, dispatcher) -> RefundService:
    return RefundService(
        unit_db, gateway=gateway, notification_service=NotificationService(dispatcher)
    )


@pytest.fixture
def paid_booking(make_booking):
    def _make(status: BookingStatus = BookingStatus.PAID, hours_ahead: float = 72) -> Booking:
        return make_booking(
            status=status,
            payment_status=PaymentStatus.PAID,
            payment_intent_id="pi_123",
            scheduled_at=NOW + timedelta(hours=hours_ahead),
        )

    return _make


def _reload(unit_db, booking_id: str) -> Booking:
    unit_db.expire_all()
    return unit_db.get(Booking, booking_id)


def test_in_progress_cancellation_inside_a_day_refunds_nothing_once_gateway_confirms(
    refund_service, paid_booking, gateway, unit_db
) -> None:
    booking = paid_booking(status=BookingStatus.IN_PROGRESS, hours_ahead=10)

    result = refund_service.process_refund(
        booking.id, booking.client_uid, "Client cancelled", now=NOW
    )

    assert result.refund_percentage == 0
    assert result.refund_amount_cents == 0
    gateway.refund.assert_called_once()
    stored = _reload(unit_db, booking.id)
    assert stored.status == BookingStatus.CANCELLED.value
    assert stored.payment_status == PaymentStatus.REFUNDED.value
    assert stored.refund_amount_cents == 0
    assert stored.refund_id == "re_123"


def test_gateway_failure_leaves_booking_in_progress(
    refund_service, paid_booking, gateway, unit_db
) -> None:
    booking = paid_booking(status=BookingStatus.IN_PROGRESS, hours_ahead=10)
    gateway.refund.side_effect = GatewayUnavailableException("timeout")

    with pytest.raises(GatewayUnavailableException) as exc_info:
        refund_service.process_refund(booking.id, booking.client_uid, "Client cancelled", now=NOW)

    assert exc_info.value.retryable is True
    stored = _reload(unit_db, booking.id)
    assert stored.status == BookingStatus.IN_PROGRESS.value
    assert stored.payment_status == PaymentStatus.PAID.value
    assert unit_db.query(BookingActivityLog).count() == 0
    assert unit_db.query(EventOutbox).count() == 0


def test_gateway_decline_is_not_retryable(refund_service, paid_booking, gateway) -> None:
    booking = paid_booking()
    gateway.refund.side_effect = GatewayDeclinedException("card closed")

    with pytest.raises(GatewayDeclinedException) as exc_info:
        refund_service.process_refund(booking.id, booking.client_uid, "Changed plans", now=NOW)

    assert exc_info.value.retryable is False
    assert exc_info.value.to_http_exception().status_code == 402


def test_full_refund_calls_gateway_with_idempotency_key(
    refund_service, paid_booking, gateway, unit_db, dispatcher
) -> None:
    booking = paid_booking(hours_ahead=72)

    result = refund_service.process_refund(booking.id, booking.client_uid, "Changed plans", now=NOW)

    gateway.refund.assert_called_once()
    args, kwargs = gateway.refund.call_args
    assert args == ("pi_123", 9680)
    assert kwargs["idempotency_key"] == refund_idempotency_key(booking.id)
    assert kwargs["metadata"]["booking_id"] == booking.id
    assert result.refund_percentage == 100
    assert result.processing_fee_cents == 320

    log = unit_db.query(BookingActivityLog).filter_by(booking_id=booking.id).one()
    assert log.action == "cancelled"
    assert log.details["refund_amount_cents"] == 9680
    event = unit_db.query(EventOutbox).one()
    assert event.event_type == "BookingCancelled"
    assert event.payload["refund_amount_cents"] == 9680

    templates = sorted(call.args[1] for call in dispatcher.notify.call_args_list)
    assert templates == ["booking_refunded_client", "booking_refunded_provider"]


def test_emergency_refund_is_full_and_recorded(refund_service, paid_booking, unit_db) -> None:
    booking = paid_booking(hours_ahead=3)

    result = refund_service.process_refund(
        booking.id, booking.provider_uid, "Studio flooded", True, now=NOW
    )

    assert result.refund_amount_cents == 10000
    log = unit_db.query(BookingActivityLog).filter_by(booking_id=booking.id).one()
    assert log.details["is_emergency"] is True
    assert log.actor_role == "provider"


def test_already_refunded_booking_never_reaches_gateway(
    refund_service, make_booking, gateway
) -> None:
    booking = make_booking(
        status=BookingStatus.CANCELLED,
        payment_status=PaymentStatus.REFUNDED,
        payment_intent_id="pi_123",
    )

    with pytest.raises(NotEligibleException) as exc_info:
        refund_service.process_refund(booking.id, booking.client_uid, "Again", now=NOW)

    assert exc_info.value.to_http_exception().status_code == 422
    gateway.refund.assert_not_called()


def test_unpaid_booking_is_not_eligible(refund_service, make_booking, gateway) -> None:
    booking = make_booking(status=BookingStatus.CONFIRMED)

    with pytest.raises(NotEligibleException):
        refund_service.process_refund(booking.id, booking.client_uid, "Changed plans", now=NOW)

    gateway.refund.assert_not_called()


def test_disputed_booking_needs_admin(refund_service, paid_booking, gateway) -> None:
    booking = paid_booking(status=BookingStatus.DISPUTED)

    with pytest.raises(ForbiddenException):
        refund_service.process_refund(booking.id, booking.client_uid, "Refund me", now=NOW)
    gateway.refund.assert_not_called()

    result = refund_service.process_refund(
        booking.id, "01HF4G12ABCDEF3456789ADMIN", "Dispute upheld", actor_role=ActorRole.ADMIN,
        now=NOW,
    )
    assert result.booking.status == BookingStatus.CANCELLED.value


def test_completed_booking_cannot_be_refunded(refund_service, paid_booking, gateway) -> None:
    booking = paid_booking(status=BookingStatus.COMPLETED)

    with pytest.raises(NotEligibleException):
        refund_service.process_refund(booking.id, booking.client_uid, "Too late", now=NOW)
    gateway.refund.assert_not_called()


def test_stranger_cannot_refund(refund_service, paid_booking, gateway) -> None:
    booking = paid_booking()

    with pytest.raises(ForbiddenException):
        refund_service.process_refund(booking.id, "01HF4G12ABCDEF3456789STRNG", "Mine", now=NOW)
    gateway.refund.assert_not_called()


def test_refund_in_flight_is_rejected(refund_service, paid_booking, gateway, monkeypatch) -> None:
    booking = paid_booking()
    monkeypatch.setattr(booking_lock, "acquire_booking_lock_sync", lambda *_a, **_k: False)

    with pytest.raises(ConflictException) as exc_info:
        refund_service.process_refund(booking.id, booking.client_uid, "Double click", now=NOW)

    assert exc_info.value.code == "REFUND_IN_PROGRESS"
    gateway.refund.assert_not_called()


def test_payment_reference_required(refund_service, make_booking, gateway) -> None:
    booking = make_booking(status=BookingStatus.PAID, payment_status=PaymentStatus.PAID)

    with pytest.raises(NotEligibleException):
        refund_service.process_refund(booking.id, booking.client_uid, "Changed plans", now=NOW)
    gateway.refund.assert_not_called()


def test_preview_matches_policy_and_checks_caller(refund_service, paid_booking) -> None:
    booking = paid_booking(hours_ahead=30)

    preview = refund_service.preview_refund(booking.id, now=NOW, user_id=booking.client_uid)

    assert preview.refund_percentage == 50
    assert preview.refund_amount_cents == 4680
    with pytest.raises(ForbiddenException):
        refund_service.preview_refund(booking.id, now=NOW, user_id="01HF4G12ABCDEF3456789STRNG")


def test_refund_history_lists_refunded_bookings_for_either_party(
    refund_service, paid_booking, make_booking
) -> None:
    booking = paid_booking()
    make_booking(status=BookingStatus.CONFIRMED)
    refund_service.process_refund(booking.id, booking.client_uid, "Changed plans", now=NOW)

    client_history = refund_service.get_refund_history(booking.client_uid)
    provider_history = refund_service.get_refund_history(booking.provider_uid)

    assert [b.id for b in client_history] == [booking.id]
    assert [b.id for b in provider_history] == [booking.id]


def test_terminal_status_guard_through_state_machine(refund_service, paid_booking) -> None:
    booking = paid_booking(status=BookingStatus.IN_PROGRESS, hours_ahead=10)
    refund_service.process_refund(booking.id, booking.client_uid, "First", now=NOW)

    with pytest.raises((NotEligibleException, InvalidTransitionException)):
        refund_service.process_refund(booking.id, booking.client_uid, "Second", now=NOW)


def test_provider_tier_selects_refund_bands(
    refund_service, make_booking, make_user, make_progress, gateway, unit_db
) -> None:
    provider = make_user("Verified Engineer", city="Osaka", role="engineer")
    make_progress(provider, tier="verified", total_xp=1200)
    booking = make_booking(
        provider=provider,
        status=BookingStatus.PAID,
        payment_status=PaymentStatus.PAID,
        payment_intent_id="pi_tier",
        scheduled_at=NOW + timedelta(hours=60),
    )

    preview = refund_service.preview_refund(booking.id, now=NOW)
    result = refund_service.process_refund(booking.id, booking.client_uid, "Conflict", now=NOW)

    assert preview.refund_percentage == 75
    assert preview.reason == "75% refund (48+ hours notice)"
    assert result.refund_percentage == 75
    assert _reload(unit_db, booking.id).refund_amount_cents == result.refund_amount_cents


def test_provider_without_progress_uses_standard_bands(refund_service, paid_booking) -> None:
    booking = paid_booking(hours_ahead=60)

    assert refund_service.preview_refund(booking.id, now=NOW).refund_percentage == 100


def test_past_session_never_reaches_gateway(refund_service, paid_booking, gateway) -> None:
    booking = paid_booking(status=BookingStatus.IN_PROGRESS, hours_ahead=-2)

    with pytest.raises(NotEligibleException) as exc_info:
        refund_service.process_refund(booking.id, booking.client_uid, "Too late", now=NOW)

    assert "already occurred" in exc_info.value.message
    gateway.refund.assert_not_called()

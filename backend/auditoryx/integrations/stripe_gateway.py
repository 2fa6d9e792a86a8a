"""
Payment gateway adapter for escrow refunds.

Only the refund call is needed by the ledger; card capture and webhook
verification live with the payments team's service. Stripe failures are
sorted into "declined" (do not retry the same request) and "unavailable"
(network, timeout, rate limit, Stripe 5xx; safe to retry with the same
idempotency key).
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Dict, Optional, Protocol

from pydantic import SecretStr
import stripe

from ..core.config import settings
from ..core.exceptions import GatewayDeclinedException, GatewayUnavailableException

logger = logging.getLogger(__name__)

_DECLINED_REFUND_STATUSES = {"failed", "canceled"}


@dataclass(frozen=True)
class GatewayRefund:
    id: Optional[str]
    status: str
    amount_cents: int


class PaymentGateway(Protocol):
    def refund(
        self,
        payment_id: str,
        amount_cents: int,
        *,
        idempotency_key: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> GatewayRefund:
        ...


class StripeRefundGateway:
    """Refunds captured PaymentIntents through Stripe."""

    def __init__(
        self,
        *,
        api_key: str | SecretStr | None = None,
        timeout_seconds: Optional[int] = None,
    ) -> None:
        key = api_key if api_key is not None else settings.stripe_secret_key
        secret_value = key.get_secret_value() if isinstance(key, SecretStr) else key
        self._api_key = secret_value or ""
        self._configure_client(timeout_seconds or settings.stripe_timeout_seconds)

    @staticmethod
    def _configure_client(timeout_seconds: int) -> None:
        try:
            stripe.max_network_retries = 1
            stripe.default_http_client = stripe.http_client.new_default_http_client(
                timeout=timeout_seconds
            )
        except Exception:
            # Non-fatal if client customization isn't available
            pass

    def refund(
        self,
        payment_id: str,
        amount_cents: int,
        *,
        idempotency_key: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> GatewayRefund:
        if amount_cents <= 0:
            # Stripe rejects zero-amount refunds; nothing moves, so confirm locally.
            logger.info(
                "Zero-amount refund confirmed without gateway call",
                extra={"payment_id": payment_id, "idempotency_key": idempotency_key},
            )
            return GatewayRefund(id=None, status="succeeded", amount_cents=0)

        if not self._api_key:
            raise GatewayUnavailableException(
                "Payment gateway is not configured", details={"payment_id": payment_id}
            )

        try:
            refund: Any = stripe.Refund.create(
                api_key=self._api_key,
                payment_intent=payment_id,
                amount=amount_cents,
                reason="requested_by_customer",
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            )
        except (stripe.APIConnectionError, stripe.RateLimitError) as exc:
            logger.warning(
                "Stripe refund unavailable",
                extra={"payment_id": payment_id, "error_type": type(exc).__name__},
            )
            raise GatewayUnavailableException(
                "Payment gateway temporarily unavailable, please retry",
                details={"payment_id": payment_id, "error_type": type(exc).__name__},
            ) from exc
        except stripe.APIError as exc:
            logger.warning(
                "Stripe API error during refund",
                extra={"payment_id": payment_id, "http_status": getattr(exc, "http_status", None)},
            )
            raise GatewayUnavailableException(
                "Payment gateway error, please retry",
                details={"payment_id": payment_id, "error_type": type(exc).__name__},
            ) from exc
        except stripe.StripeError as exc:
            logger.error(
                "Stripe declined refund",
                extra={
                    "payment_id": payment_id,
                    "error_type": type(exc).__name__,
                    "stripe_code": getattr(exc, "code", None),
                },
            )
            raise GatewayDeclinedException(
                getattr(exc, "user_message", None) or "Refund was declined by the payment gateway",
                details={
                    "payment_id": payment_id,
                    "error_type": type(exc).__name__,
                    "stripe_code": getattr(exc, "code", None),
                },
            ) from exc

        status = str(getattr(refund, "status", "") or "")
        if status in _DECLINED_REFUND_STATUSES:
            raise GatewayDeclinedException(
                f"Refund {status}",
                details={"payment_id": payment_id, "refund_id": getattr(refund, "id", None)},
            )
        return GatewayRefund(
            id=getattr(refund, "id", None),
            status=status or "succeeded",
            amount_cents=int(getattr(refund, "amount", amount_cents) or amount_cents),
        )

# backend/auditoryx/core/booking_lock.py
"""
Redis mutex serialising refunds for one booking.

The lock covers the gateway call, which must never run inside a database
transaction. It fails open: without Redis the booking row's version check is
the only guard, and a lost race surfaces as a conflict at commit time.

Each holder writes a random token and only deletes the key while it still
holds that token, so a holder whose TTL lapsed cannot release a successor's
lock.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
from typing import Iterator, Optional
import uuid

from redis import Redis

from auditoryx.core.config import settings
from auditoryx.monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

_RELEASE_IF_OWNER = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""

_client: Optional[Redis] = None
_client_guard = threading.Lock()


def _lock_key(booking_id: str) -> str:
    return f"{settings.lock_namespace}:booking:{booking_id}:refund"


def _get_sync_redis() -> Optional[Redis]:
    """Shared client, created on first use; None when Redis cannot be reached."""
    global _client
    with _client_guard:
        if _client is None:
            try:
                candidate = Redis.from_url(
                    settings.redis_url, decode_responses=True, socket_timeout=1.0
                )
                candidate.ping()
            except Exception as exc:
                logger.warning("Booking lock store unreachable: %s", exc)
                return None
            _client = candidate
        return _client


def _warn(event: str, booking_id: str, exc: Exception) -> None:
    logger.warning(
        event,
        extra={"booking_id": booking_id, "error": str(exc), "error_type": type(exc).__name__},
    )


def acquire_booking_lock_sync(
    booking_id: str, token: str, ttl_s: Optional[int] = None
) -> bool:
    """True when ``token`` now holds the lock, or when Redis is unavailable."""
    client = _get_sync_redis()
    if client is None:
        prometheus_metrics.record_booking_lock("acquire", "redis_unavailable")
        return True
    ttl = ttl_s or settings.booking_lock_ttl_seconds
    try:
        acquired = bool(client.set(_lock_key(booking_id), token, nx=True, ex=ttl))
    except Exception as exc:
        prometheus_metrics.record_booking_lock("acquire", "error")
        _warn("booking_lock_acquire_failed", booking_id, exc)
        return True
    prometheus_metrics.record_booking_lock("acquire", "success" if acquired else "blocked")
    return acquired


def release_booking_lock_sync(booking_id: str, token: str) -> None:
    client = _get_sync_redis()
    if client is None:
        prometheus_metrics.record_booking_lock("release", "redis_unavailable")
        return
    try:
        released = client.eval(_RELEASE_IF_OWNER, 1, _lock_key(booking_id), token)
    except Exception as exc:
        prometheus_metrics.record_booking_lock("release", "error")
        _warn("booking_lock_release_failed", booking_id, exc)
        return
    prometheus_metrics.record_booking_lock("release", "success" if released else "not_owner")


@contextmanager
def booking_lock_sync(booking_id: str, ttl_s: Optional[int] = None) -> Iterator[bool]:
    """Yield whether the lock was obtained; the caller decides what "busy" means."""
    token = uuid.uuid4().hex
    acquired = acquire_booking_lock_sync(booking_id, token, ttl_s=ttl_s)
    try:
        yield acquired
    finally:
        if acquired:
            release_booking_lock_sync(booking_id, token)

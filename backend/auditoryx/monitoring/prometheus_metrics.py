"""
Prometheus metrics module for the AuditoryX ledger.

Service latency comes from the @measure_operation decorator; the ledger adds
counters for XP credited, refunds, leaderboard runs, booking locks and outbox
delivery.
"""

from threading import Lock
from time import monotonic
from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "auditoryx_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "auditoryx_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "auditoryx_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

xp_awarded_total = Counter(
    "auditoryx_xp_awarded_total",
    "XP points credited to users",
    ["event"],
    registry=REGISTRY,
)

xp_awards_total = Counter(
    "auditoryx_xp_awards_total",
    "XP award attempts by outcome",
    ["event", "outcome"],
    registry=REGISTRY,
)

booking_transitions_total = Counter(
    "auditoryx_booking_transitions_total",
    "Booking status transitions",
    ["from_status", "to_status"],
    registry=REGISTRY,
)

refunds_total = Counter(
    "auditoryx_refunds_total",
    "Refund attempts by outcome",
    ["outcome"],
    registry=REGISTRY,
)

ledger_conflicts_total = Counter(
    "auditoryx_ledger_conflicts_total",
    "Optimistic update conflicts on ledger records",
    ["resource", "result"],
    registry=REGISTRY,
)

leaderboard_groups_total = Counter(
    "auditoryx_leaderboard_groups_total",
    "Leaderboard groups processed by outcome",
    ["outcome"],
    registry=REGISTRY,
)

booking_lock_total = Counter(
    "auditoryx_booking_lock_total",
    "Booking mutex operations",
    ["action", "result"],
    registry=REGISTRY,
)

outbox_attempt_total = Counter(
    "auditoryx_outbox_attempt_total",
    "Outbox event delivery attempts",
    ["event_type"],
    registry=REGISTRY,
)

outbox_total = Counter(
    "auditoryx_outbox_total",
    "Outbox event terminal outcomes",
    ["status", "event_type"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """
    Recording helpers plus the exposition payload.

    Scrapes within ``_cache_ttl_seconds`` of each other share one rendered
    payload, so a tight scrape loop never re-walks the registry.
    """

    _cache_lock: Lock = Lock()
    _cache_payload: Optional[bytes] = None
    _cache_ts: Optional[float] = None
    _cache_ttl_seconds: float = 1.0

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'XPService')
            operation: Operation/method name (e.g., 'award_xp')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def record_xp_award(event: str, outcome: str, amount: int = 0) -> None:
        xp_awards_total.labels(event=event, outcome=outcome).inc()
        if amount > 0:
            xp_awarded_total.labels(event=event).inc(amount)

    @staticmethod
    def record_transition(from_status: str, to_status: str) -> None:
        booking_transitions_total.labels(from_status=from_status, to_status=to_status).inc()

    @staticmethod
    def record_refund(outcome: str) -> None:
        refunds_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_ledger_conflict(resource: str, result: str) -> None:
        ledger_conflicts_total.labels(resource=resource, result=result).inc()

    @staticmethod
    def record_leaderboard_group(outcome: str) -> None:
        leaderboard_groups_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_booking_lock(action: str, result: str) -> None:
        booking_lock_total.labels(action=action, result=result).inc()

    @staticmethod
    def record_outbox_attempt(event_type: str) -> None:
        outbox_attempt_total.labels(event_type=event_type).inc()

    @staticmethod
    def record_outbox_outcome(event_type: str, status: str) -> None:
        outbox_total.labels(status=status, event_type=event_type).inc()

    @staticmethod
    def get_metrics() -> bytes:
        now = monotonic()
        payload = PrometheusMetrics._cache_payload
        ts = PrometheusMetrics._cache_ts
        fresh = ts is not None and (now - ts) <= PrometheusMetrics._cache_ttl_seconds
        if payload is not None and fresh:
            return payload

        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_payload = cast(bytes, generate_latest(REGISTRY))
            PrometheusMetrics._cache_ts = monotonic()
            return PrometheusMetrics._cache_payload

    @staticmethod
    def get_content_type() -> str:
        return cast(str, CONTENT_TYPE_LATEST)


prometheus_metrics = PrometheusMetrics()

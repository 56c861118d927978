"""
Prometheus metrics for the scheduling core.

Service timings come from ``@BaseService.measure_operation``; the domain
counters below track slot transitions, waitlist movement and sweep locks.
"""

from threading import Lock
from time import monotonic
from typing import Optional, cast

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest

# Custom registry so test runs and multiple app instances don't collide
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "tutorslots_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "tutorslots_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "tutorslots_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

slot_transitions_total = Counter(
    "tutorslots_slot_transitions_total",
    "Slot state transitions by event and outcome",
    ["event", "outcome"],
    registry=REGISTRY,
)

waitlist_events_total = Counter(
    "tutorslots_waitlist_events_total",
    "Waitlist lifecycle events",
    ["event"],
    registry=REGISTRY,
)

sweep_lock_total = Counter(
    "tutorslots_sweep_lock_total",
    "Sweep mutex acquisition outcomes",
    ["sweep", "outcome"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

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
            service: Service name (e.g., 'SlotService')
            operation: Operation name (e.g., 'book_slot')
            duration: Operation duration in seconds
            status: 'success' or 'error'
            error_type: Exception class name when status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_slot_transition(event: str, outcome: str) -> None:
        """outcome is 'applied', 'rejected' or 'lost_race'."""
        slot_transitions_total.labels(event=event, outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_waitlist_event(event: str) -> None:
        waitlist_events_total.labels(event=event).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_sweep_lock(sweep: str, outcome: str) -> None:
        sweep_lock_total.labels(sweep=sweep, outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def get_metrics() -> bytes:
        """Metrics in Prometheus text format, cached for about a second."""
        now = monotonic()
        with PrometheusMetrics._cache_lock:
            payload = PrometheusMetrics._cache_payload
            ts = PrometheusMetrics._cache_ts
            if payload is None or ts is None or (now - ts) > PrometheusMetrics._cache_ttl_seconds:
                payload = cast(bytes, generate_latest(REGISTRY))
                PrometheusMetrics._cache_payload = payload
                PrometheusMetrics._cache_ts = now
        return payload

    @staticmethod
    def get_content_type() -> str:
        return cast(str, CONTENT_TYPE_LATEST)

    @staticmethod
    def _invalidate_cache() -> None:
        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_ts = None
            PrometheusMetrics._cache_payload = None


prometheus_metrics = PrometheusMetrics()

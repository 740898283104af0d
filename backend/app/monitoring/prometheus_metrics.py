"""
Prometheus metrics module for the ski school booking platform.

Service operation metrics are fed by @BaseService.measure_operation; the
availability engine adds counters for its cache and for capacity rejections
on the booking commit path.
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
    "skischool_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "skischool_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "skischool_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

# Availability cache
availability_cache_hits_total = Counter(
    "skischool_availability_cache_hits_total",
    "Availability reads answered from cache",
    registry=REGISTRY,
)

availability_cache_misses_total = Counter(
    "skischool_availability_cache_misses_total",
    "Availability reads that had to compute from the database",
    registry=REGISTRY,
)

availability_cache_invalidations_total = Counter(
    "skischool_availability_cache_invalidations_total",
    "Availability cache invalidations",
    ["scope"],  # date | subgroup
    registry=REGISTRY,
)

# Booking commit path
capacity_rejections_total = Counter(
    "skischool_capacity_rejections_total",
    "Bookings rejected because a subgroup was full",
    ["reason"],  # create | reactivate
    registry=REGISTRY,
)

pricing_configuration_gaps_total = Counter(
    "skischool_pricing_configuration_gaps_total",
    "Lines priced at 0 because the course pricing is incomplete",
    ["kind"],  # missing_tier | missing_participant_price | unknown_course_type
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
            service: Service name (e.g., 'AvailabilityService')
            operation: Operation/method name (e.g., 'get_available_slots')
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
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def get_metrics() -> bytes:
        """
        Generate Prometheus metrics in exposition format.

        Returns:
            Metrics data in Prometheus text format
        """
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
        """Get the content type for Prometheus metrics."""
        return cast(str, CONTENT_TYPE_LATEST)

    @staticmethod
    def _invalidate_cache() -> None:
        """Invalidate cached metrics so next scrape refreshes."""
        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_ts = None
            PrometheusMetrics._cache_payload = None

    # Domain helpers
    @staticmethod
    def inc_availability_cache_hit() -> None:
        availability_cache_hits_total.inc()

    @staticmethod
    def inc_availability_cache_miss() -> None:
        availability_cache_misses_total.inc()

    @staticmethod
    def inc_availability_cache_invalidation(scope: str) -> None:
        availability_cache_invalidations_total.labels(scope=scope).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def inc_capacity_rejection(reason: str = "create") -> None:
        """Increment the capacity rejection counter."""
        capacity_rejections_total.labels(reason=reason).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def inc_pricing_configuration_gap(kind: str) -> None:
        pricing_configuration_gaps_total.labels(kind=kind).inc()
        PrometheusMetrics._invalidate_cache()


# Singleton instance
prometheus_metrics = PrometheusMetrics()

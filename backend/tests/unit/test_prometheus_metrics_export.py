"""Exposition of the engine's Prometheus metrics."""

from app.monitoring.prometheus_metrics import PrometheusMetrics, prometheus_metrics
from app.services.cache_service import get_cache_service


def test_domain_counters_are_exported():
    prometheus_metrics.record_service_operation(
        "BookingCommitService", "create_booking", 0.02, status="error", error_type="CapacityExceededException"
    )
    prometheus_metrics.inc_capacity_rejection("create")
    prometheus_metrics.inc_pricing_configuration_gap("missing_tier")
    prometheus_metrics.inc_availability_cache_hit()
    prometheus_metrics.inc_availability_cache_invalidation("subgroup")

    payload = prometheus_metrics.get_metrics().decode()

    assert 'skischool_capacity_rejections_total{reason="create"}' in payload
    assert 'skischool_pricing_configuration_gaps_total{kind="missing_tier"}' in payload
    assert 'skischool_availability_cache_invalidations_total{scope="subgroup"}' in payload
    assert 'error_type="CapacityExceededException"' in payload
    assert "skischool_availability_cache_hits_total" in payload


def test_scrape_payload_is_cached_until_a_metric_changes():
    first = prometheus_metrics.get_metrics()
    assert prometheus_metrics.get_metrics() is first

    prometheus_metrics.inc_capacity_rejection("reactivate")

    assert PrometheusMetrics._cache_payload is None
    assert prometheus_metrics.get_metrics() is not first


def test_content_type():
    assert prometheus_metrics.get_content_type().startswith("text/plain")


def test_default_cache_without_redis_url_is_in_memory():
    # conftest blanks REDIS_URL
    assert get_cache_service().backend == "memory"

"""Tests for Prometheus metrics middleware and the cache metrics.

NOTE ON TESTING PROMETHEUS METRICS:
The prometheus-client library uses a global default registry.  Counters
can only go up and cannot be reset between tests, so every assertion is
on a DELTA: read the value before the action, perform the action, read
the value after, and compare.
"""

from __future__ import annotations

from fastapi.testclient import TestClient
from prometheus_client import REGISTRY


def _get_sample(name: str, labels: dict | None = None) -> float:
    """Read a metric sample's current value from the global registry."""
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


def test_request_counter_increments(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/health", "status_code": "200"}
    before = _get_sample("http_requests_total", labels)
    client.get("/health")
    after = _get_sample("http_requests_total", labels)
    assert after - before == 1


def test_request_duration_histogram_observes(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/v1/enrollments/summary"}
    before = _get_sample("http_request_duration_seconds_count", labels)
    client.get("/v1/enrollments/summary")
    after = _get_sample("http_request_duration_seconds_count", labels)
    assert after - before == 1


def test_endpoint_label_ignores_query_string(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/v1/enrollments", "status_code": "200"}
    before = _get_sample("http_requests_total", labels)
    client.get("/v1/enrollments", params={"platform": "hotmart", "limit": 5})
    client.get("/v1/enrollments", params={"origin": "legacy"})
    after = _get_sample("http_requests_total", labels)
    assert after - before == 2


def test_unknown_path_keeps_raw_path_label(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/nope", "status_code": "404"}
    before = _get_sample("http_requests_total", labels)
    client.get("/nope")
    after = _get_sample("http_requests_total", labels)
    assert after - before == 1


def test_cache_read_metrics_count_hits(client: TestClient) -> None:
    before = _get_sample("unified_cache_reads_total", {"result": "hit"})
    client.get("/v1/enrollments")
    after = _get_sample("unified_cache_reads_total", {"result": "hit"})
    assert after - before == 1


def test_metrics_endpoint_returns_prometheus_format(client: TestClient) -> None:
    client.get("/health")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "http_requests_total" in resp.text
    assert "unified_cache_refreshes_total" in resp.text
    assert "unified_enrollments" in resp.text


def test_metrics_endpoint_not_self_instrumented(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/metrics", "status_code": "200"}
    before = _get_sample("http_requests_total", labels)
    client.get("/metrics")
    client.get("/metrics")
    after = _get_sample("http_requests_total", labels)
    assert after == before

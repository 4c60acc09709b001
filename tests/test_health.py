"""
Tests for health check endpoints.
"""
from fastapi.testclient import TestClient
from orderevents.main import app

client = TestClient(app)


def test_health_liveness():
    """Test liveness health check."""
    r = client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "ok"
    assert data["service"] == "orderevents"
    assert data["version"] == "0.1.0"
    assert "timestamp" in data


def test_health_readiness():
    """Test readiness health check."""
    r = client.get("/health/ready")
    # Should be 200 (ready) or 503 (not ready)
    assert r.status_code in [200, 503]
    data = r.json()
    assert data["service"] == "orderevents"
    assert "timestamp" in data
    assert data["checks"]["event_store"]["status"] == "ok"
    assert data["checks"]["queue:order-events"]["status"] == "ok"
    assert data["checks"]["queue:order-events-dlq"]["status"] == "ok"


def test_metrics_endpoint():
    """Test Prometheus metrics endpoint."""
    r = client.get("/metrics")
    assert r.status_code == 200
    content = r.text
    assert "http_requests_total" in content
    assert "http_request_duration_seconds" in content
    assert "app_up" in content
    assert "orderevents_events_published_total" in content
    assert "orderevents_dead_lettered_total" in content


def test_request_id_in_response():
    """Test that a request id is added to response headers."""
    r = client.get("/health")
    assert "x-request-id" in r.headers


def test_request_id_propagation():
    """Test that a provided request id is propagated."""
    request_id = "test-request-id-123"
    r = client.get("/health", headers={"x-request-id": request_id})
    assert r.headers["x-request-id"] == request_id

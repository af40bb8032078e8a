"""Tests for the health endpoints."""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from backplane.api.routers.health import HealthCheck, create_health_router


def _boom() -> None:
    raise RuntimeError("connection refused")


def _client(checks) -> TestClient:
    app = FastAPI()
    app.include_router(create_health_router("backplane", version="test", checks=checks))
    return TestClient(app)


class TestAppHealth:
    """Health endpoints on the real app."""

    def test_liveness(self, client):
        resp = client.get("/health/live")
        assert resp.status_code == 200
        assert resp.json() == {"status": "alive"}

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["service"] == "backplane"
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["checks"]["cache"]["status"] == "healthy"

    def test_readiness(self, client):
        assert client.get("/health/ready").status_code == 200


class TestCheckAggregation:
    """Required vs optional checks."""

    def test_optional_failure_degrades(self):
        client = _client([HealthCheck("database", lambda: None), HealthCheck("cache", _boom, required=False)])
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "degraded"
        assert resp.json()["checks"]["cache"]["error"] == "connection refused"
        assert client.get("/health/ready").status_code == 503

    def test_required_failure(self):
        client = _client([HealthCheck("database", _boom)])
        resp = client.get("/health")
        assert resp.status_code == 503
        assert resp.json()["status"] == "unhealthy"

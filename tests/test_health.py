"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 with status, version and components, no Authorization header needed
  - an unreachable database is reported as degraded, not as a 500
"""

from __future__ import annotations

from sqlalchemy.exc import OperationalError


def test_health_reports_components(api_client):
    client, _, _ = api_client
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"]
    assert data["components"] == {"app": "ok", "database": "ok"}


def test_health_degraded_when_database_down(api_client, monkeypatch):
    client, _, _ = api_client
    store = client.app.state.store

    def _down():
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(store, "ping", _down)
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "degraded"
    assert resp.json()["components"]["database"] == "error"

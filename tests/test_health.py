"""
tests/test_health.py -- Integration tests for GET /api/health.

Covers:
  - 200 response with status and version fields
  - No authentication required
  - TrustedHostMiddleware rejects unknown Host headers
"""

from __future__ import annotations

from api.main import VERSION


def test_health_returns_status_and_version(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "version": VERSION}


def test_health_needs_no_session(client):
    client.cookies.clear()
    assert client.get("/api/health").status_code == 200


def test_unknown_host_is_rejected(client):
    resp = client.get("/api/health", headers={"host": "evil.example"})
    assert resp.status_code == 400


def test_unknown_route_uses_error_envelope(client):
    resp = client.get("/api/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "http_404"

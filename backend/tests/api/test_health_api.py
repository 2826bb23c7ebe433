"""Smoke tests for the health endpoint and blueprint wiring."""

from __future__ import annotations


def test_health_endpoint(client):
    """Health check reports database state and the configured token store."""

    response = client.get("/api/v1/health")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["status"] == "ok"
    assert payload["db"] == "ok"
    assert payload["redis"] == "disabled"
    assert payload["token_store"] == "memory"


def test_unknown_route_is_problem_json(client):
    response = client.get("/api/v1/does-not-exist")

    assert response.status_code == 404
    assert response.mimetype == "application/problem+json"
    assert response.get_json()["code"] == "not_found"


def test_request_id_is_echoed(client):
    response = client.get("/api/v1/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_request_id_does_not_leak_between_requests(client):
    first = client.get("/api/v1/health")
    second = client.get("/api/v1/health", headers={"X-Request-ID": "req-456"})
    third = client.get("/api/v1/health")

    assert second.headers["X-Request-ID"] == "req-456"
    assert third.headers["X-Request-ID"] not in {"req-456", first.headers["X-Request-ID"]}

"""Assertion helper utilities for tests."""

from __future__ import annotations

GENERIC_REFRESH_FAILURE = "Invalid or expired refresh token"


def assert_json_keys(data: dict, required: set[str]) -> None:
    """Ensure that all required keys are present in ``data``.

    Raises
    ------
    AssertionError
        If any required key is missing.
    """

    missing = required - data.keys()
    assert not missing, f"Missing keys: {', '.join(sorted(missing))}"


def assert_problem(resp, status: int, code: str) -> dict:
    """Validate an ``application/problem+json`` error response and return its body."""

    assert resp.status_code == status
    assert resp.mimetype == "application/problem+json"
    body = resp.get_json()
    assert_json_keys(body, {"type", "title", "status", "detail", "code", "request_id"})
    assert body["status"] == status
    assert body["code"] == code
    return body

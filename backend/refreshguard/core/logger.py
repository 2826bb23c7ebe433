"""Structured logging configuration with request correlation.

Security events emitted by the token core attach their context through
``extra=`` (see :data:`EXTRA_KEYS`); those keys are copied verbatim into the
JSON payload. Plaintext refresh tokens must never be passed here: the core
only ever logs record ids and digests.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from flask import Flask, has_request_context, request

REQUEST_ID_HEADER = "X-Request-ID"
CORRELATION_HEADERS = (REQUEST_ID_HEADER, "X-Correlation-ID")

#: ``extra=`` attributes promoted to top-level JSON fields.
EXTRA_KEYS = (
    "event_type",
    "token_id",
    "subject",
    "reason",
    "revoked",
    "ip_address",
    "user_agent",
    "endpoint",
    "elapsed_ms",
)


class JSONFormatter(logging.Formatter):
    """Render one log record as a single-line JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        payload.update({key: getattr(record, key) for key in EXTRA_KEYS if hasattr(record, key)})
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class RequestIdFilter(logging.Filter):
    """Stamp ``request_id`` on every record (``None`` outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = ensure_request_id() if has_request_context() else None
        return True


def ensure_request_id() -> str:
    """
    Return the correlation id of the current request.

    The id is memoised on the request object itself, so it never leaks into
    the next request even when an outer application context (and its
    ``flask.g``) is shared. Outside a request a throwaway id is returned.
    """
    if not has_request_context():
        return str(uuid4())
    request_id = getattr(request, "request_id", None)
    if request_id is None:
        request_id = _seed_from_headers()
    return str(request_id)


def _seed_from_headers() -> str:
    """Derive the id from the first correlation header, else a UUID4, and pin it."""
    request_id = next(
        (request.headers[h] for h in CORRELATION_HEADERS if request.headers.get(h)),
        str(uuid4()),
    )
    request.request_id = request_id
    return request_id


def configure_logging(level: str | int = "INFO") -> None:
    """Route the root logger to stdout as JSON at ``level``.

    Existing root handlers are replaced so repeated app creation does not
    duplicate output.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    handler.addFilter(RequestIdFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)


def init_app(app: Flask) -> None:
    """Seed the correlation id per request and echo it on every response."""

    app.logger.addFilter(RequestIdFilter())

    @app.before_request
    def _seed_request_id() -> None:
        _seed_from_headers()

    @app.after_request
    def _echo_request_id(response):
        response.headers.setdefault(REQUEST_ID_HEADER, ensure_request_id())
        return response


__all__ = [
    "EXTRA_KEYS",
    "JSONFormatter",
    "RequestIdFilter",
    "configure_logging",
    "ensure_request_id",
    "init_app",
]

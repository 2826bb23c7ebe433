"""RFC 7807 error responses for the token API.

Every failure leaves the API as ``application/problem+json`` with a stable
``code`` and the request's correlation id. Token failures are deliberately
uniform: the service layer has already collapsed the precise reason into a
single 401 before an :class:`APIError` is raised here.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any

from flask import Flask, Response, jsonify, request
from marshmallow import ValidationError as MarshmallowValidationError
from sqlalchemy.exc import OperationalError
from werkzeug.exceptions import HTTPException

from refreshguard.core.logger import ensure_request_id

log = logging.getLogger(__name__)

PROBLEM_MIMETYPE = "application/problem+json"

_CODES: dict[int, str] = {
    400: "bad_request",
    401: "unauthorized",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    415: "unsupported_media_type",
    422: "unprocessable_entity",
    429: "too_many_requests",
    500: "internal_server_error",
    503: "service_unavailable",
}


def problem_payload(
    *,
    status: int,
    code: str,
    detail: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Build a Problem Details body for the current request.

    :param status: HTTP status code.
    :param code: Stable machine-readable code.
    :param detail: Client-safe summary; never includes token material.
    :param details: Optional structured extras (validation messages, retry hints).
    :returns: JSON-serialisable mapping.
    """
    payload: dict[str, Any] = {
        "type": "about:blank",
        "title": HTTPStatus(status).phrase,
        "status": status,
        "detail": detail,
        "instance": request.path if request else None,
        "code": code,
        "request_id": ensure_request_id(),
    }
    if details:
        payload["details"] = details
    return payload


def problem_response(payload: dict[str, Any], *, headers: dict[str, str] | None = None) -> Response:
    """Wrap ``payload`` in a response carrying the problem+json media type."""
    resp = jsonify(payload)
    resp.mimetype = PROBLEM_MIMETYPE
    resp.status_code = int(payload["status"])
    for name, value in (headers or {}).items():
        resp.headers[name] = value
    return resp


class APIError(Exception):
    """
    HTTP-facing error raised by route handlers.

    Service exceptions are translated into subclasses of this type by
    :meth:`BaseService.translate_exceptions`.

    :param message: Client-safe description.
    :param status_code: HTTP status (400 by default).
    :param code: Stable snake_case identifier.
    :param details: Optional structured payload.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        code: str = "bad_request",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = int(status_code)
        self.code = code
        self.details = details or {}

    def headers(self) -> dict[str, str]:
        """Extra response headers for this error (none by default)."""
        return {}

    def to_problem(self) -> dict[str, Any]:
        return problem_payload(
            status=self.status_code,
            code=self.code,
            detail=self.message,
            details=self.details or None,
        )


class Conflict(APIError):
    def __init__(self, message: str = "Conflict") -> None:
        super().__init__(message, status_code=HTTPStatus.CONFLICT, code="conflict")


class Unauthorized(APIError):
    """401 for every rejected refresh token, whatever the underlying reason."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message, status_code=HTTPStatus.UNAUTHORIZED, code="unauthorized")


class TooManyRequests(APIError):
    """429 when a token's attempt budget is spent; carries ``Retry-After``."""

    def __init__(self, message: str = "Too many requests", retry_after: int | None = None) -> None:
        super().__init__(
            message,
            status_code=HTTPStatus.TOO_MANY_REQUESTS,
            code="too_many_requests",
            details={"retry_after": retry_after} if retry_after is not None else None,
        )
        self.retry_after = retry_after

    def headers(self) -> dict[str, str]:
        if self.retry_after is None:
            return {}
        return {"Retry-After": str(self.retry_after)}


class ServiceUnavailable(APIError):
    """503 when the token store cannot answer; the only retryable failure."""

    def __init__(self, message: str = "Service temporarily unavailable") -> None:
        super().__init__(
            message,
            status_code=HTTPStatus.SERVICE_UNAVAILABLE,
            code="service_unavailable",
        )


def init_app(app: Flask) -> None:
    """
    Register the problem+json handlers on ``app``.

    4xx outcomes are logged as warnings without tracebacks; 5xx outcomes are
    logged as errors with ``exc_info``.
    """

    @app.errorhandler(APIError)
    def handle_api_error(err: APIError):
        payload = err.to_problem()
        level = log.error if err.status_code >= 500 else log.warning
        level(
            "APIError: code=%s status=%s msg=%s request_id=%s",
            err.code,
            err.status_code,
            err.message,
            payload["request_id"],
        )
        return problem_response(payload, headers=err.headers())

    @app.errorhandler(HTTPException)
    def handle_http_exception(err: HTTPException):
        status = int(err.code or HTTPStatus.INTERNAL_SERVER_ERROR)
        code = _CODES.get(status, "error")
        if status == HTTPStatus.NOT_FOUND:
            detail = f"Route '{request.path}' not found"
        else:
            detail = (err.description or code.replace("_", " ").capitalize()).strip()
        payload = problem_payload(status=status, code=code, detail=detail)
        log.warning("HTTPException: status=%s request_id=%s", status, payload["request_id"])
        return problem_response(payload)

    @app.errorhandler(MarshmallowValidationError)
    def handle_validation_error(err: MarshmallowValidationError):
        payload = problem_payload(
            status=HTTPStatus.UNPROCESSABLE_ENTITY,
            code="validation_error",
            detail="Validation failed",
            details={"errors": err.messages},
        )
        log.warning("ValidationError: request_id=%s", payload["request_id"])
        return problem_response(payload)

    @app.errorhandler(OperationalError)
    def handle_operational_error(err: OperationalError):
        # Database unreachable outside the token store (e.g. health probes)
        payload = problem_payload(
            status=HTTPStatus.SERVICE_UNAVAILABLE,
            code="service_unavailable",
            detail="Service temporarily unavailable",
        )
        log.error("OperationalError: request_id=%s", payload["request_id"], exc_info=True)
        return problem_response(payload)

    @app.errorhandler(Exception)
    def handle_unexpected_error(err: Exception):
        payload = problem_payload(
            status=HTTPStatus.INTERNAL_SERVER_ERROR,
            code="internal_server_error",
            detail="Unexpected error",
        )
        log.error("Unhandled exception: request_id=%s", payload["request_id"], exc_info=True)
        return problem_response(payload)


__all__ = [
    "APIError",
    "Conflict",
    "ServiceUnavailable",
    "TooManyRequests",
    "Unauthorized",
    "init_app",
    "problem_payload",
    "problem_response",
]

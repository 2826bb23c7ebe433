# tests/unit/services/test_service_errors.py
from __future__ import annotations

import pytest
from refreshguard.core import errors as api_errors
from refreshguard.services._shared.base import BaseService
from refreshguard.services._shared.errors import (
    AuthenticationFailedError,
    ConflictError,
    RateLimitedError,
    ServiceError,
    StorageUnavailableError,
    TokenExpiredError,
    TokenReusedError,
)


@pytest.fixture
def service() -> BaseService:
    return BaseService()


@pytest.mark.parametrize(
    "exc",
    [AuthenticationFailedError(), TokenExpiredError(), TokenReusedError()],
)
def test_token_failures_collapse_to_one_401(service, exc):
    translated = service.translate_exceptions(exc)
    assert isinstance(translated, api_errors.Unauthorized)
    assert translated.status_code == 401
    assert translated.message == str(AuthenticationFailedError())


def test_rate_limit_keeps_retry_after(service):
    translated = service.translate_exceptions(RateLimitedError(retry_after=7))
    assert isinstance(translated, api_errors.TooManyRequests)
    assert translated.headers() == {"Retry-After": "7"}


def test_storage_failure_is_503(service):
    translated = service.translate_exceptions(StorageUnavailableError())
    assert translated.status_code == 503


def test_conflict_is_409(service):
    translated = service.translate_exceptions(ConflictError(entity="RefreshToken", detail="dup"))
    assert isinstance(translated, api_errors.Conflict)
    assert translated.status_code == 409


def test_other_service_errors_are_400(service):
    translated = service.translate_exceptions(ServiceError("odd"))
    assert translated.status_code == 400
    assert translated.code == "bad_request"


def test_foreign_exceptions_pass_through(service):
    exc = KeyError("x")
    assert service.translate_exceptions(exc) is exc

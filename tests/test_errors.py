"""Tests for provider error classification."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from helpdesk_search.config import ProviderKind
from helpdesk_search.errors import (
    ProviderErrorKind,
    ProviderInvalidCredentialError,
    ProviderRateLimitedError,
    ProviderServerError,
    ProviderUnknownError,
    classify_provider_error,
)


class _Status(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class _WithResponse(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__("boom")
        self.response = SimpleNamespace(status_code=status_code)


class APITimeoutError(Exception):
    pass


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (_Status(401), ProviderInvalidCredentialError),
        (_Status(403), ProviderInvalidCredentialError),
        (_Status(429), ProviderRateLimitedError),
        (_Status(500), ProviderServerError),
        (_Status(503), ProviderServerError),
        (_WithResponse(429), ProviderRateLimitedError),
        (APITimeoutError("timed out"), ProviderServerError),
        (ConnectionError("refused"), ProviderServerError),
        (RuntimeError("got 401 from upstream"), ProviderInvalidCredentialError),
        (RuntimeError("something odd"), ProviderUnknownError),
    ],
)
def test_classify_provider_error(exc: Exception, expected: type) -> None:
    error = classify_provider_error(ProviderKind.OPENAI, exc)

    assert isinstance(error, expected)
    assert error.provider is ProviderKind.OPENAI


def test_classified_errors_expose_kind() -> None:
    assert classify_provider_error(ProviderKind.GEMINI, _Status(429)).kind is (
        ProviderErrorKind.RATE_LIMITED
    )
    assert classify_provider_error(ProviderKind.GEMINI, _Status(502)).kind is (
        ProviderErrorKind.PROVIDER_UNAVAILABLE
    )


def test_already_classified_error_is_returned_unchanged() -> None:
    original = ProviderRateLimitedError(ProviderKind.GEMINI, "slow down")

    assert classify_provider_error(ProviderKind.OPENAI, original) is original

"""
Error taxonomy for embedding generation and similarity search.
"""

from __future__ import annotations

from enum import Enum

from .config import ProviderKind


class HelpdeskSearchError(Exception):
    """Base class for all search pipeline errors."""


class EmptyInputError(HelpdeskSearchError, ValueError):
    """Raised when text to embed is empty after normalization."""


class CredentialMissingError(HelpdeskSearchError):
    """Raised when the requested provider has no API key configured."""

    def __init__(self, provider: ProviderKind) -> None:
        self.provider = provider
        super().__init__(f"No API key configured for embedding provider {provider.value!r}.")


class ProviderErrorKind(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    RATE_LIMITED = "rate_limited"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    UNKNOWN = "unknown"


class ProviderError(HelpdeskSearchError):
    """A classified failure from an embedding provider call."""

    kind: ProviderErrorKind = ProviderErrorKind.UNKNOWN

    def __init__(self, provider: ProviderKind, message: str) -> None:
        self.provider = provider
        super().__init__(message)


class ProviderInvalidCredentialError(ProviderError):
    kind = ProviderErrorKind.INVALID_CREDENTIALS


class ProviderRateLimitedError(ProviderError):
    kind = ProviderErrorKind.RATE_LIMITED


class ProviderServerError(ProviderError):
    kind = ProviderErrorKind.PROVIDER_UNAVAILABLE


class ProviderUnknownError(ProviderError):
    kind = ProviderErrorKind.UNKNOWN


class DimensionMismatchError(HelpdeskSearchError):
    """Raised when a vector's length differs from the configured dimensionality."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Invalid embedding length: {actual}, expected {expected}")


class PersistenceError(HelpdeskSearchError):
    """Raised when an embedding cannot be written back to storage."""


class VectorQueryError(HelpdeskSearchError):
    """Raised when the native vector distance query fails."""


class QuestionNotFoundError(HelpdeskSearchError, LookupError):
    """Raised when a source question does not exist."""

    def __init__(self, question_id: str) -> None:
        self.question_id = question_id
        super().__init__(f"Question not found: {question_id}")


def _status_code(exc: BaseException) -> int | None:
    for attr in ("status_code", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def classify_provider_error(provider: ProviderKind, exc: BaseException) -> ProviderError:
    """Map an SDK/network exception to a classified ``ProviderError``."""
    if isinstance(exc, ProviderError):
        return exc

    label = provider.value.upper()
    status = _status_code(exc)
    message = str(exc)

    if status is None:
        # Connection and timeout errors carry no status code.
        name = type(exc).__name__
        if "Timeout" in name or "Connection" in name or isinstance(exc, (TimeoutError, ConnectionError)):
            return ProviderServerError(provider, f"{label} API is unreachable: {message}")
        if "401" in message or "403" in message:
            status = 401
        elif "429" in message:
            status = 429
        elif "500" in message or "503" in message:
            status = 500

    if status in (401, 403):
        return ProviderInvalidCredentialError(
            provider, f"{label} API key is invalid or expired"
        )
    if status == 429:
        return ProviderRateLimitedError(
            provider, f"{label} API rate limit exceeded. Please try again later."
        )
    if status is not None and status >= 500:
        return ProviderServerError(
            provider, f"{label} API server error. Please try again later."
        )
    return ProviderUnknownError(provider, f"Failed to generate embedding: {message}")

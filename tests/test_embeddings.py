"""Tests for the embedding provider adapter."""

from __future__ import annotations

import logging
from typing import Any

import pytest
from google.genai import errors as genai_errors

from conftest import (
    DIM,
    FakeEmbedding,
    FakeEmbedResult,
    MockGenAIClient,
    MockOpenAIClient,
    make_service,
)
from helpdesk_search.config import DimensionPolicy, EmbeddingSettings, ProviderKind
from helpdesk_search.embeddings import (
    GEMINI_FALLBACK_MODEL,
    GEMINI_MAX_CHARS,
    OPENAI_MAX_CHARS,
    format_embedding_literal,
)
from helpdesk_search.errors import (
    CredentialMissingError,
    DimensionMismatchError,
    EmptyInputError,
    ProviderInvalidCredentialError,
    ProviderRateLimitedError,
    ProviderServerError,
)


class StatusError(Exception):
    def __init__(self, status_code: int, message: str = "request failed") -> None:
        super().__init__(message)
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Active provider
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_embed_uses_configured_gemini_dimensions() -> None:
    client = MockGenAIClient({"wifi": [1.0, 0.0, 0.0, 0.0]})
    service = make_service(client)

    embedding = await service.embed("Campus wifi is down")

    assert embedding == [1.0, 0.0, 0.0, 0.0]
    call = client.calls[0]
    assert call["model"] == "gemini-embedding-001"
    assert call["config"] == {"task_type": "RETRIEVAL_DOCUMENT", "output_dimensionality": DIM}


@pytest.mark.asyncio
async def test_empty_input_is_rejected_before_any_call() -> None:
    client = MockGenAIClient()
    service = make_service(client)

    with pytest.raises(EmptyInputError):
        await service.embed("   \n ")
    assert client.calls == []


@pytest.mark.asyncio
async def test_block_json_is_normalized_before_embedding() -> None:
    client = MockGenAIClient()
    service = make_service(client)

    await service.embed('{"blocks": [{"type": "paragraph", "data": {"text": "<b>Exam</b> dates"}}]}')

    assert client.calls[0]["contents"] == ["Exam dates"]


@pytest.mark.asyncio
async def test_gemini_input_is_truncated() -> None:
    client = MockGenAIClient()
    service = make_service(client)

    await service.embed("a" * (GEMINI_MAX_CHARS + 500))

    assert len(client.calls[0]["contents"][0]) == GEMINI_MAX_CHARS


@pytest.mark.asyncio
async def test_repeated_text_is_served_from_cache() -> None:
    client = MockGenAIClient()
    service = make_service(client)

    first = await service.embed("Where is the registrar office?")
    second = await service.embed("  where IS the   registrar office? ")

    assert first == second
    assert len(client.calls) == 1


@pytest.mark.asyncio
async def test_missing_active_credential_raises() -> None:
    service = make_service(None)

    assert service.is_available() is False
    with pytest.raises(CredentialMissingError):
        await service.embed("hello")


def test_env_settings(monkeypatch) -> None:
    monkeypatch.setenv("EMBEDDING_PROVIDER", "OpenAI")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("GOOGLE_API_KEY", "g-test")
    monkeypatch.setenv("GEMINI_EMBEDDING_DIMENSIONS", "256")
    monkeypatch.setenv("EMBEDDING_DIMENSION_POLICY", "warn")
    monkeypatch.setenv("EMBEDDING_RETRY_BACKOFF_SECONDS", "0.25")

    settings = EmbeddingSettings.from_env()

    assert settings.provider is ProviderKind.OPENAI
    assert settings.dimensions == 1536
    assert settings.dimensions_for(ProviderKind.GEMINI) == 256
    assert settings.gemini_api_key == "g-test"
    assert settings.dimension_policy is DimensionPolicy.WARN
    assert settings.retry_backoff_seconds == 0.25
    assert settings.has_active_credential


def test_provider_defaults_to_gemini(monkeypatch) -> None:
    monkeypatch.delenv("EMBEDDING_PROVIDER", raising=False)

    settings = EmbeddingSettings.from_env()

    assert settings.provider is ProviderKind.GEMINI
    assert settings.dimensions == 768


@pytest.mark.asyncio
async def test_openai_provider() -> None:
    openai_client = MockOpenAIClient()
    service = make_service(provider=ProviderKind.OPENAI, openai_client=openai_client)

    embedding = await service.embed("x" * (OPENAI_MAX_CHARS + 10))

    assert len(embedding) == 1536
    call = openai_client.embeddings.calls[0]
    assert call["model"] == "text-embedding-ada-002"
    assert len(call["input"]) == OPENAI_MAX_CHARS


# ---------------------------------------------------------------------------
# Dimension validation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_wrong_dimension_fails_under_strict_policy() -> None:
    client = MockGenAIClient({"short": [1.0, 2.0, 3.0]})
    service = make_service(client)

    with pytest.raises(DimensionMismatchError) as excinfo:
        await service.embed("short text")

    assert excinfo.value.expected == DIM
    assert excinfo.value.actual == 3
    assert service.cache.get("short text") is None


@pytest.mark.asyncio
async def test_wrong_dimension_is_logged_under_warn_policy(caplog) -> None:
    client = MockGenAIClient({"short": [1.0, 2.0, 3.0]})
    service = make_service(client, dimension_policy=DimensionPolicy.WARN)

    with caplog.at_level(logging.WARNING, logger="helpdesk_search.embeddings"):
        embedding = await service.embed("short text")

    assert embedding == [1.0, 2.0, 3.0]
    assert "expected 4" in caplog.text


# ---------------------------------------------------------------------------
# Fallback and classification
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_gemini_failure_falls_back_to_openai_once() -> None:
    client = MockGenAIClient()
    client.models.error = StatusError(429, "quota exhausted")
    openai_client = MockOpenAIClient()
    service = make_service(client, openai_client=openai_client)

    embedding = await service.embed("fallback please")

    assert len(embedding) == 1536
    assert len(openai_client.embeddings.calls) == 1
    assert service.cache.get("fallback please") is None


@pytest.mark.asyncio
async def test_fallback_vector_is_length_checked_under_strict_policy() -> None:
    client = MockGenAIClient()
    client.models.error = StatusError(503, "unavailable")
    openai_client = MockOpenAIClient(dim=10)
    service = make_service(client, openai_client=openai_client)
    assert service.settings.dimension_policy is DimensionPolicy.STRICT

    with pytest.raises(DimensionMismatchError) as excinfo:
        await service.embed("hello")

    assert excinfo.value.expected == 1536
    assert excinfo.value.actual == 10
    assert service.cache.get("hello") is None


@pytest.mark.asyncio
async def test_fallback_vector_length_is_only_logged_under_warn_policy(caplog) -> None:
    client = MockGenAIClient()
    client.models.error = StatusError(503, "unavailable")
    service = make_service(
        client,
        openai_client=MockOpenAIClient(dim=10),
        dimension_policy=DimensionPolicy.WARN,
    )

    with caplog.at_level(logging.WARNING, logger="helpdesk_search.embeddings"):
        embedding = await service.embed("hello")

    assert len(embedding) == 10
    assert "expected 1536" in caplog.text


@pytest.mark.asyncio
async def test_active_provider_is_used_again_once_it_recovers() -> None:
    client = MockGenAIClient(default=[0.1] * DIM)
    client.models.error = StatusError(500)
    openai_client = MockOpenAIClient()
    service = make_service(client, openai_client=openai_client)

    first = await service.embed("recovering")
    client.models.error = None
    second = await service.embed("recovering")
    third = await service.embed("recovering")

    assert len(first) == 1536
    assert second == [0.1] * DIM
    assert third == second
    assert len(openai_client.embeddings.calls) == 1
    assert len(client.calls) == 2


@pytest.mark.asyncio
async def test_gemini_failure_without_fallback_key_is_classified() -> None:
    client = MockGenAIClient()
    client.models.error = StatusError(429)
    service = make_service(client)

    with pytest.raises(ProviderRateLimitedError) as excinfo:
        await service.embed("no fallback")

    assert excinfo.value.provider is ProviderKind.GEMINI


@pytest.mark.asyncio
async def test_failed_fallback_surfaces_fallback_error() -> None:
    client = MockGenAIClient()
    client.models.error = StatusError(500)
    openai_client = MockOpenAIClient()
    openai_client.embeddings.error = StatusError(401, "Incorrect API key provided")
    service = make_service(client, openai_client=openai_client)

    with pytest.raises(ProviderInvalidCredentialError) as excinfo:
        await service.embed("both fail")

    assert excinfo.value.provider is ProviderKind.OPENAI
    assert len(openai_client.embeddings.calls) == 1


@pytest.mark.asyncio
async def test_openai_failure_does_not_fall_back_to_gemini() -> None:
    gemini_client = MockGenAIClient()
    openai_client = MockOpenAIClient()
    openai_client.embeddings.error = StatusError(429)
    service = make_service(
        gemini_client, provider=ProviderKind.OPENAI, openai_client=openai_client
    )

    with pytest.raises(ProviderRateLimitedError):
        await service.embed("openai only")

    assert gemini_client.calls == []


class _FlakyModels:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls: list[str] = []

    async def embed_content(self, *, model: str, contents: list[str], config: dict) -> Any:
        self.calls.append(model)
        if len(self.calls) <= self.failures:
            raise genai_errors.ServerError(
                503, {"error": {"code": 503, "message": "overloaded", "status": "UNAVAILABLE"}}
            )
        return FakeEmbedResult(embeddings=[FakeEmbedding(values=[0.1] * DIM)])


class _FlakyClient:
    def __init__(self, models: Any) -> None:
        self.aio = type("Aio", (), {"models": models})()


@pytest.mark.asyncio
async def test_gemini_server_errors_are_retried() -> None:
    models = _FlakyModels(failures=2)
    service = make_service(_FlakyClient(models))

    embedding = await service.embed("retry me")

    assert embedding == [0.1] * DIM
    assert len(models.calls) == 3


@pytest.mark.asyncio
async def test_gemini_server_errors_stop_after_max_retries(caplog) -> None:
    models = _FlakyModels(failures=10)
    service = make_service(_FlakyClient(models), max_retries=1)

    with caplog.at_level(logging.INFO, logger="helpdesk_search.embeddings"):
        with pytest.raises(ProviderServerError):
            await service.embed("still down")

    assert len(models.calls) == 2
    assert "retrying (attempt 1)" in caplog.text


class _ModelSpecificModels:
    def __init__(self) -> None:
        self.calls: list[str] = []

    async def embed_content(self, *, model: str, contents: list[str], config: dict) -> Any:
        self.calls.append(model)
        if model != GEMINI_FALLBACK_MODEL:
            raise StatusError(404, "model not found")
        return FakeEmbedResult(embeddings=[FakeEmbedding(values=[0.2] * DIM)])


@pytest.mark.asyncio
async def test_unknown_gemini_model_falls_back_to_default_model() -> None:
    models = _ModelSpecificModels()
    service = make_service(_FlakyClient(models), gemini_model="text-embedding-004")

    embedding = await service.embed("model fallback")

    assert embedding == [0.2] * DIM
    assert models.calls == ["text-embedding-004", GEMINI_FALLBACK_MODEL]


def test_format_embedding_literal() -> None:
    assert format_embedding_literal([1, 0.5, -2.0]) == "[1.0,0.5,-2.0]"
    with pytest.raises(ValueError):
        format_embedding_literal([])
    with pytest.raises(ValueError):
        format_embedding_literal([float("nan")])

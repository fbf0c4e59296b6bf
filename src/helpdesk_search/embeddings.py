"""
Embedding provider adapter for semantic search.

Two provider families are supported: Google GenAI (the default, 768
dimensions) and OpenAI (1536 dimensions). When the Gemini family fails, one
fallback call is made to OpenAI before a classified error is raised.
Vectors of the active provider's length are memoized in an ``EmbeddingCache``.
Server errors from Gemini are retried with backoff through tenacity.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from google.genai import Client as GenAIClient
from google.genai import errors as genai_errors
from google.genai.types import HttpOptions
from openai import AsyncOpenAI
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from .cache import EmbeddingCache, default_cache
from .config import DimensionPolicy, EmbeddingSettings, ProviderKind
from .content import extract_plain_text
from .errors import (
    CredentialMissingError,
    DimensionMismatchError,
    EmptyInputError,
    ProviderUnknownError,
    classify_provider_error,
)

logger = logging.getLogger(__name__)

GEMINI_FALLBACK_MODEL = "gemini-embedding-001"
GEMINI_MAX_CHARS = 2048
OPENAI_MAX_CHARS = 8000


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.info(
        "Gemini server error, retrying (attempt %d): %s",
        retry_state.attempt_number,
        error,
    )


class EmbeddingBackend(Protocol):
    """One provider family: generate a vector for already-normalized text."""

    kind: ProviderKind
    max_chars: int

    async def embed(self, text: str, dimensions: int) -> list[float]:
        """Return the embedding for *text*."""


class GeminiEmbeddingBackend:
    """Google GenAI embeddings."""

    kind = ProviderKind.GEMINI
    max_chars = GEMINI_MAX_CHARS

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str,
        task_type: str,
        timeout_seconds: float = 30.0,
        max_retries: int = 2,
        retry_backoff_seconds: float = 1.0,
        client: Any | None = None,
    ) -> None:
        self.model = model
        self.task_type = task_type
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        if client is not None:
            self._client = client
        else:
            if not api_key:
                raise CredentialMissingError(self.kind)
            self._client = GenAIClient(
                api_key=api_key,
                http_options=HttpOptions(timeout=int(timeout_seconds * 1000)),
            )

    def _retrying(self) -> AsyncRetrying:
        """Retry transient server errors with jittered exponential backoff."""
        return AsyncRetrying(
            retry=retry_if_exception_type(genai_errors.ServerError),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_random_exponential(
                multiplier=self.retry_backoff_seconds,
                max=self.retry_backoff_seconds * 8,
            ),
            before_sleep=_log_retry,
            reraise=True,
        )

    async def _embed_with_model(self, model: str, text: str, dimensions: int) -> list[float]:
        async for attempt in self._retrying():
            with attempt:
                result = await self._client.aio.models.embed_content(
                    model=model,
                    contents=[text],
                    config={
                        "task_type": self.task_type,
                        "output_dimensionality": dimensions,
                    },
                )

        embeddings = result.embeddings or []
        values = list(embeddings[0].values or []) if embeddings else []
        if not values:
            raise ProviderUnknownError(self.kind, "No embedding data returned from Gemini")
        return values

    async def embed(self, text: str, dimensions: int) -> list[float]:
        text = text[: self.max_chars]
        try:
            return await self._embed_with_model(self.model, text, dimensions)
        except Exception:
            if self.model == GEMINI_FALLBACK_MODEL:
                raise
            logger.info("Gemini model %s failed, trying %s", self.model, GEMINI_FALLBACK_MODEL)
            return await self._embed_with_model(GEMINI_FALLBACK_MODEL, text, dimensions)


class OpenAIEmbeddingBackend:
    """OpenAI embeddings."""

    kind = ProviderKind.OPENAI
    max_chars = OPENAI_MAX_CHARS

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str,
        timeout_seconds: float = 30.0,
        max_retries: int = 2,
        client: Any | None = None,
    ) -> None:
        self.model = model
        if client is not None:
            self._client = client
        else:
            if not api_key:
                raise CredentialMissingError(self.kind)
            self._client = AsyncOpenAI(
                api_key=api_key,
                max_retries=max_retries,
                timeout=timeout_seconds,
            )

    async def embed(self, text: str, dimensions: int) -> list[float]:  # noqa: ARG002
        response = await self._client.embeddings.create(
            model=self.model,
            input=text[: self.max_chars],
        )
        if not response.data:
            raise ProviderUnknownError(self.kind, "No embedding data returned from OpenAI")
        return list(response.data[0].embedding)


def format_embedding_literal(embedding: list[float]) -> str:
    """Render a vector as ``[v1,v2,...]``."""
    if not embedding:
        raise ValueError("Embedding array is empty")
    values: list[float] = []
    for value in embedding:
        try:
            number = float(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid embedding value: {value!r}") from exc
        if number != number:
            raise ValueError(f"Invalid embedding value: {value!r}")
        values.append(number)
    return "[" + ",".join(repr(v) for v in values) + "]"


class EmbeddingService:
    """Generate, validate, and cache embeddings for arbitrary text."""

    def __init__(
        self,
        settings: EmbeddingSettings | None = None,
        *,
        cache: EmbeddingCache | None = None,
        gemini_client: Any | None = None,
        openai_client: Any | None = None,
    ) -> None:
        self.settings = settings or EmbeddingSettings.from_env()
        self.cache = cache if cache is not None else default_cache()
        self._clients: dict[ProviderKind, Any | None] = {
            ProviderKind.GEMINI: gemini_client,
            ProviderKind.OPENAI: openai_client,
        }
        self._backends: dict[ProviderKind, EmbeddingBackend] = {}

    @property
    def provider(self) -> ProviderKind:
        return self.settings.provider

    @property
    def dimensions(self) -> int:
        return self.settings.dimensions

    def is_available(self) -> bool:
        """True when the active provider can be called."""
        return (
            self._clients[self.provider] is not None
            or self.settings.has_active_credential
        )

    def _backend(self, kind: ProviderKind) -> EmbeddingBackend:
        backend = self._backends.get(kind)
        if backend is not None:
            return backend

        client = self._clients[kind]
        if client is None and not self.settings.api_key_for(kind):
            raise CredentialMissingError(kind)

        if kind is ProviderKind.OPENAI:
            backend = OpenAIEmbeddingBackend(
                api_key=self.settings.openai_api_key,
                model=self.settings.openai_model,
                timeout_seconds=self.settings.timeout_seconds,
                max_retries=self.settings.max_retries,
                client=client,
            )
        else:
            backend = GeminiEmbeddingBackend(
                api_key=self.settings.gemini_api_key,
                model=self.settings.gemini_model,
                task_type=self.settings.gemini_task_type,
                timeout_seconds=self.settings.timeout_seconds,
                max_retries=self.settings.max_retries,
                retry_backoff_seconds=self.settings.retry_backoff_seconds,
                client=client,
            )
        self._backends[kind] = backend
        return backend

    async def _generate(self, kind: ProviderKind, plain_text: str) -> list[float]:
        expected = self.settings.dimensions_for(kind)
        embedding = await self._backend(kind).embed(plain_text, expected)
        if len(embedding) != expected:
            if self.settings.dimension_policy is DimensionPolicy.WARN:
                logger.warning(
                    "%s returned %d dimensions, expected %d",
                    kind.value,
                    len(embedding),
                    expected,
                )
            else:
                raise DimensionMismatchError(expected, len(embedding))
        return embedding

    async def embed(self, text: str) -> list[float]:
        """Return the embedding for *text*, using the cache when possible.

        Raises ``EmptyInputError`` for blank input, ``CredentialMissingError``
        when the active provider has no key, and a ``ProviderError`` subclass
        when generation fails on every attempted provider.
        """
        if not text or not text.strip():
            raise EmptyInputError("Text input is empty")

        cached = self.cache.get(text)
        if cached is not None:
            logger.debug("Embedding cache hit for text (length: %d)", len(text))
            return cached

        plain_text = extract_plain_text(text)
        if not plain_text.strip():
            raise EmptyInputError("Extracted plain text is empty")

        provider = self.provider
        if not self.is_available():
            raise CredentialMissingError(provider)

        logger.info(
            "Generating embedding using %s for text (length: %d)",
            provider.value.upper(),
            len(plain_text),
        )
        try:
            embedding = await self._generate(provider, plain_text)
        except Exception as exc:
            error = (
                exc
                if isinstance(exc, DimensionMismatchError)
                else classify_provider_error(provider, exc)
            )
            logger.warning("Embedding generation failed (%s): %s", provider.value, error)
            if provider is not ProviderKind.GEMINI:
                if error is exc:
                    raise
                raise error from exc
            embedding = await self._fallback(plain_text, error)

        if len(embedding) == self.dimensions:
            self.cache.set(text, embedding)
        else:
            # Vectors of another length cannot be compared with stored ones.
            logger.info("Not caching %d-dimension fallback embedding", len(embedding))
        logger.info("Generated embedding (length: %d)", len(embedding))
        return embedding

    async def _fallback(self, plain_text: str, original: Exception) -> list[float]:
        fallback = ProviderKind.OPENAI
        try:
            self._backend(fallback)
        except CredentialMissingError:
            logger.info("No fallback credential for %s", fallback.value)
            raise original

        logger.info("Attempting fallback to %s", fallback.value.upper())
        try:
            embedding = await self._generate(fallback, plain_text)
        except DimensionMismatchError as exc:
            logger.error("Fallback embedding has the wrong length: %s", exc)
            raise
        except Exception as exc:
            error = classify_provider_error(fallback, exc)
            logger.error("Fallback embedding also failed: %s", error)
            if error is exc:
                raise
            raise error from exc
        if not embedding:
            raise ProviderUnknownError(fallback, "Fallback returned an empty embedding")
        return embedding


__all__ = [
    "EmbeddingBackend",
    "EmbeddingService",
    "GeminiEmbeddingBackend",
    "OpenAIEmbeddingBackend",
    "format_embedding_literal",
]

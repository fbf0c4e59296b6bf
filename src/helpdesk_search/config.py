"""
Configuration helpers for the search service.

Values come from explicit arguments first, then environment variables,
then the defaults below.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path


DEFAULT_DB_PATH = "~/.helpdesk_search/helpdesk.duckdb"
ENV_DB_PATH = "HELPDESK_DB_PATH"
ENV_DEBUG = "HELPDESK_DEBUG"

_DEFAULT_GEMINI_MODEL = "gemini-embedding-001"
_DEFAULT_GEMINI_DIM = 768
_DEFAULT_GEMINI_TASK_TYPE = "RETRIEVAL_DOCUMENT"
_DEFAULT_OPENAI_MODEL = "text-embedding-ada-002"
OPENAI_EMBEDDING_DIM = 1536


class ProviderKind(str, Enum):
    """Embedding provider families."""

    GEMINI = "gemini"
    OPENAI = "openai"

    @classmethod
    def parse(cls, value: str | None) -> "ProviderKind":
        if value is not None and value.strip().lower() == cls.OPENAI.value:
            return cls.OPENAI
        return cls.GEMINI


class DimensionPolicy(str, Enum):
    """What to do when a provider returns a vector of unexpected length."""

    STRICT = "strict"
    WARN = "warn"

    @classmethod
    def parse(cls, value: str | None) -> "DimensionPolicy":
        if value is not None and value.strip().lower() == cls.WARN.value:
            return cls.WARN
        return cls.STRICT


def resolve_db_path(override_path: str | None = None) -> str:
    """
    Resolve the DuckDB path from CLI override, env var, or default.

    Precedence:
    1) explicit override_path
    2) HELPDESK_DB_PATH
    3) default path
    """
    raw_path = override_path or os.getenv(ENV_DB_PATH) or DEFAULT_DB_PATH
    resolved = Path(raw_path).expanduser().resolve()
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return str(resolved)


def debug_enabled() -> bool:
    return os.getenv(ENV_DEBUG, "").strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


@dataclass(frozen=True)
class EmbeddingSettings:
    """Resolved embedding provider configuration."""

    provider: ProviderKind = ProviderKind.GEMINI
    gemini_api_key: str | None = None
    openai_api_key: str | None = None
    gemini_model: str = _DEFAULT_GEMINI_MODEL
    gemini_dimensions: int = _DEFAULT_GEMINI_DIM
    gemini_task_type: str = _DEFAULT_GEMINI_TASK_TYPE
    openai_model: str = _DEFAULT_OPENAI_MODEL
    dimension_policy: DimensionPolicy = DimensionPolicy.STRICT
    timeout_seconds: float = 30.0
    max_retries: int = 2
    retry_backoff_seconds: float = 1.0

    @classmethod
    def from_env(cls) -> "EmbeddingSettings":
        return cls(
            provider=ProviderKind.parse(os.getenv("EMBEDDING_PROVIDER")),
            gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            gemini_model=os.getenv("GEMINI_EMBEDDING_MODEL", _DEFAULT_GEMINI_MODEL),
            gemini_dimensions=_env_int("GEMINI_EMBEDDING_DIMENSIONS", _DEFAULT_GEMINI_DIM),
            gemini_task_type=os.getenv(
                "GEMINI_EMBEDDING_TASK_TYPE", _DEFAULT_GEMINI_TASK_TYPE
            ),
            openai_model=os.getenv("OPENAI_EMBEDDING_MODEL", _DEFAULT_OPENAI_MODEL),
            dimension_policy=DimensionPolicy.parse(os.getenv("EMBEDDING_DIMENSION_POLICY")),
            timeout_seconds=_env_float("EMBEDDING_TIMEOUT_SECONDS", 30.0),
            max_retries=_env_int("EMBEDDING_MAX_RETRIES", 2),
            retry_backoff_seconds=_env_float("EMBEDDING_RETRY_BACKOFF_SECONDS", 1.0),
        )

    def dimensions_for(self, provider: ProviderKind) -> int:
        if provider is ProviderKind.OPENAI:
            return OPENAI_EMBEDDING_DIM
        return self.gemini_dimensions

    def api_key_for(self, provider: ProviderKind) -> str | None:
        if provider is ProviderKind.OPENAI:
            return self.openai_api_key
        return self.gemini_api_key

    @property
    def dimensions(self) -> int:
        """Dimensionality of the active provider."""
        return self.dimensions_for(self.provider)

    @property
    def has_active_credential(self) -> bool:
        return bool(self.api_key_for(self.provider))


@dataclass(frozen=True)
class CacheSettings:
    """Embedding cache sizing."""

    max_size: int = 1000
    ttl_seconds: float = 24 * 60 * 60
    sweep_interval_seconds: float = 60 * 60

    @classmethod
    def from_env(cls) -> "CacheSettings":
        return cls(
            max_size=_env_int("EMBEDDING_CACHE_SIZE", 1000),
            ttl_seconds=_env_float("EMBEDDING_CACHE_TTL_SECONDS", 24 * 60 * 60),
            sweep_interval_seconds=_env_float("EMBEDDING_CACHE_SWEEP_SECONDS", 60 * 60),
        )

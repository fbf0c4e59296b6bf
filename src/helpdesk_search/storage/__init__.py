"""Storage backends for the helpdesk question store."""

from .base import (
    AnswerRecord,
    CategoryRecord,
    EmbeddingStats,
    QuestionFilters,
    QuestionRecord,
    SourceQuestion,
    StorageBackend,
    TagRecord,
    UserRecord,
)
from .duckdb import DuckDBStorage

__all__ = [
    "AnswerRecord",
    "CategoryRecord",
    "DuckDBStorage",
    "EmbeddingStats",
    "QuestionFilters",
    "QuestionRecord",
    "SourceQuestion",
    "StorageBackend",
    "TagRecord",
    "UserRecord",
]

"""
Storage interfaces and data models for the question store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from ..content import extract_plain_text
from ..models import ApprovalStatus, QuestionStatus, QuestionView, UserRole
from ..visibility import Viewer


@dataclass(frozen=True)
class UserRecord:
    id: str
    email: str
    full_name: str
    role: UserRole = UserRole.STUDENT


@dataclass(frozen=True)
class CategoryRecord:
    id: str
    name: str
    slug: str


@dataclass(frozen=True)
class TagRecord:
    id: str
    name: str
    slug: str


@dataclass(frozen=True)
class QuestionRecord:
    """A question as written by the application layer."""

    id: str
    title: str
    content: str
    author_id: str
    status: QuestionStatus = QuestionStatus.OPEN
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    category_id: str | None = None
    category_ids: tuple[str, ...] = ()
    tag_ids: tuple[str, ...] = ()
    is_anonymous: bool = False
    views: int = 0
    accepted_answer_id: str | None = None
    duplicate_of_id: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class AnswerRecord:
    id: str
    question_id: str
    author_id: str
    content: str
    created_at: datetime | None = None


@dataclass(frozen=True)
class SourceQuestion:
    """The fields needed to embed and filter a single question."""

    id: str
    title: str
    content: str
    approval_status: ApprovalStatus
    author_id: str

    @property
    def embedding_text(self) -> str:
        return f"{self.title} {extract_plain_text(self.content)}"


@dataclass(frozen=True)
class QuestionFilters:
    """Structured search filters; ``None`` means unfiltered."""

    category_id: str | None = None
    author_id: str | None = None
    status: QuestionStatus | None = None
    approval_status: ApprovalStatus | None = None
    tags: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class EmbeddingStats:
    total_questions: int
    with_embeddings: int
    invalid_dimensions: int

    @property
    def without_embeddings(self) -> int:
        return self.total_questions - self.with_embeddings


class StorageBackend(Protocol):
    """Protocol for persistence operations used by the search pipeline."""

    def initialize(self) -> None:
        """Initialize required tables."""

    def get_question(self, question_id: str) -> SourceQuestion | None:
        """Fetch the fields needed to embed a question."""

    def get_question_embedding(self, question_id: str) -> list[float] | None:
        """Return the stored embedding for a question, if any."""

    def store_question_embedding(self, question_id: str, embedding: list[float]) -> None:
        """Persist an embedding onto a question, replacing any previous one."""

    def keyword_search(
        self,
        *,
        query: str | None,
        viewer: Viewer,
        filters: QuestionFilters | None = None,
    ) -> list[str]:
        """Return ids of visible questions matching *query*, best first."""

    def vector_search(
        self,
        *,
        query_embedding: list[float],
        viewer: Viewer,
        limit: int,
        filters: QuestionFilters | None = None,
        exclude_ids: tuple[str, ...] = (),
    ) -> list[tuple[str, float]]:
        """Return ``(id, similarity)`` pairs ordered by ascending cosine distance."""

    def hydrate_questions(self, question_ids: list[str]) -> list[QuestionView]:
        """Load display records for *question_ids*, preserving their order."""

    def embedding_stats(self, *, dimensions: int) -> EmbeddingStats:
        """Count questions with, without, and with wrong-length embeddings."""

    def questions_missing_embeddings(
        self,
        *,
        dimensions: int,
        limit: int | None = None,
    ) -> list[SourceQuestion]:
        """Questions whose embedding is absent or has the wrong length."""

    def clear_invalid_embeddings(self, *, dimensions: int) -> int:
        """Delete embeddings whose length differs from *dimensions*."""

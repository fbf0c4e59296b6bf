"""
Domain enums and display records returned by the search endpoints.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class QuestionStatus(str, Enum):
    OPEN = "OPEN"
    ANSWERED = "ANSWERED"
    CLOSED = "CLOSED"
    DUPLICATE = "DUPLICATE"


class UserRole(str, Enum):
    STUDENT = "STUDENT"
    ADVISOR = "ADVISOR"
    ADMIN = "ADMIN"


class _CamelModel(BaseModel):
    """Serialized with camelCase keys to match the web client."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class AuthorSummary(_CamelModel):
    id: str
    email: str
    full_name: str
    role: UserRole


ANONYMOUS_AUTHOR = AuthorSummary(
    id="anonymous",
    email="",
    full_name="Anonymous user",
    role=UserRole.STUDENT,
)


class CategorySummary(_CamelModel):
    id: str
    name: str
    slug: str


class TagSummary(_CamelModel):
    id: str
    name: str
    slug: str


class QuestionView(_CamelModel):
    """A question hydrated with author, categories, tags, and answer count."""

    id: str
    title: str
    content: str
    status: QuestionStatus = QuestionStatus.OPEN
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    is_anonymous: bool = False
    author_id: str = Field(exclude=True)
    author: AuthorSummary | None = None
    category: CategorySummary | None = None
    categories: list[CategorySummary] = Field(default_factory=list)
    tags: list[TagSummary] = Field(default_factory=list)
    views: int = 0
    answers_count: int = 0
    accepted_answer_id: str | None = None
    duplicate_of_id: str | None = None
    created_at: datetime
    updated_at: datetime


class SearchResultItem(QuestionView):
    """A hybrid search hit."""

    preview: str = ""
    images: list[str] = Field(default_factory=list)
    score: float = 0.0


class SimilarQuestion(_CamelModel):
    """A nearest-neighbor hit for the similar-questions endpoint."""

    id: str
    title: str
    content: str
    similarity: float
    author: AuthorSummary | None = None
    category: CategorySummary | None = None
    categories: list[CategorySummary] = Field(default_factory=list)
    views: int = 0
    answers_count: int = 0
    created_at: datetime
    updated_at: datetime

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest

from helpdesk_search.cache import EmbeddingCache
from helpdesk_search.config import EmbeddingSettings, ProviderKind
from helpdesk_search.embeddings import EmbeddingService
from helpdesk_search.models import ApprovalStatus, UserRole
from helpdesk_search.storage import (
    AnswerRecord,
    CategoryRecord,
    DuckDBStorage,
    QuestionRecord,
    TagRecord,
    UserRecord,
)

DIM = 4


# ---------------------------------------------------------------------------
# Fake provider clients
# ---------------------------------------------------------------------------


@dataclass
class FakeEmbedding:
    values: list[float]


@dataclass
class FakeEmbedResult:
    embeddings: list[FakeEmbedding]


class MockModels:
    """Returns the vector of the first keyword found in the request text."""

    def __init__(self, vectors: dict[str, list[float]], default: list[float] | None) -> None:
        self.vectors = vectors
        self.default = default
        self.calls: list[dict[str, Any]] = []
        self.error: Exception | None = None

    async def embed_content(self, *, model: str, contents: list[str], config: dict) -> FakeEmbedResult:
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.error is not None:
            raise self.error
        text = contents[0].lower()
        for keyword, vector in self.vectors.items():
            if keyword in text:
                return FakeEmbedResult(embeddings=[FakeEmbedding(values=list(vector))])
        dim = config.get("output_dimensionality", DIM)
        values = list(self.default) if self.default is not None else [0.5] * dim
        return FakeEmbedResult(embeddings=[FakeEmbedding(values=values)])


class MockAio:
    def __init__(self, models: MockModels) -> None:
        self.models = models


class MockGenAIClient:
    def __init__(
        self,
        vectors: dict[str, list[float]] | None = None,
        default: list[float] | None = None,
    ) -> None:
        self.models = MockModels(vectors or {}, default)
        self.aio = MockAio(self.models)

    @property
    def calls(self) -> list[dict[str, Any]]:
        return self.models.calls


@dataclass
class FakeOpenAIItem:
    embedding: list[float]


@dataclass
class FakeOpenAIResponse:
    data: list[FakeOpenAIItem]


class MockOpenAIEmbeddings:
    def __init__(self, dim: int) -> None:
        self.dim = dim
        self.calls: list[dict[str, Any]] = []
        self.error: Exception | None = None

    async def create(self, *, model: str, input: str) -> FakeOpenAIResponse:
        self.calls.append({"model": model, "input": input})
        if self.error is not None:
            raise self.error
        return FakeOpenAIResponse(data=[FakeOpenAIItem(embedding=[0.25] * self.dim)])


class MockOpenAIClient:
    def __init__(self, dim: int = 1536) -> None:
        self.embeddings = MockOpenAIEmbeddings(dim)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


QUERY_VECTORS = {
    "wifi": [1.0, 0.0, 0.0, 0.0],
    "tuition": [0.0, 0.0, 1.0, 0.0],
}


def make_service(
    client: Any | None = None,
    *,
    provider: ProviderKind = ProviderKind.GEMINI,
    openai_client: Any | None = None,
    **settings: Any,
) -> EmbeddingService:
    settings.setdefault("retry_backoff_seconds", 0.0)
    return EmbeddingService(
        EmbeddingSettings(provider=provider, gemini_dimensions=DIM, **settings),
        cache=EmbeddingCache(),
        gemini_client=client,
        openai_client=openai_client,
    )


@pytest.fixture()
def genai_client() -> MockGenAIClient:
    return MockGenAIClient(QUERY_VECTORS)


@pytest.fixture()
def embedding_service(genai_client: MockGenAIClient) -> EmbeddingService:
    return make_service(genai_client)


@pytest.fixture()
def unavailable_service() -> EmbeddingService:
    """Gemini is active but no key or client is configured."""
    return make_service(None)


# ---------------------------------------------------------------------------
# Seeded store
# ---------------------------------------------------------------------------


def _blocks(*blocks: dict[str, Any]) -> str:
    return json.dumps({"time": 1700000000000, "blocks": list(blocks), "version": "2.28.0"})


def _paragraph(text: str) -> dict[str, Any]:
    return {"type": "paragraph", "data": {"text": text}}


def seed(storage: DuckDBStorage) -> None:
    for user in (
        UserRecord(id="u-student", email="an@uni.edu", full_name="An Nguyen"),
        UserRecord(id="u-other", email="binh@uni.edu", full_name="Binh Tran"),
        UserRecord(
            id="u-advisor", email="chi@uni.edu", full_name="Chi Le", role=UserRole.ADVISOR
        ),
        UserRecord(
            id="u-admin", email="admin@uni.edu", full_name="Dung Pham", role=UserRole.ADMIN
        ),
    ):
        storage.upsert_user(user)

    storage.upsert_category(CategoryRecord(id="cat-it", name="IT Services", slug="it"))
    storage.upsert_category(CategoryRecord(id="cat-fin", name="Finance", slug="finance"))
    storage.upsert_tag(TagRecord(id="t-wifi", name="wifi", slug="wifi"))
    storage.upsert_tag(TagRecord(id="t-tuition", name="tuition", slug="tuition"))

    questions = [
        (
            QuestionRecord(
                id="q-wifi",
                title="Campus wifi keeps disconnecting",
                content=_blocks(
                    _paragraph("My laptop drops the <b>eduroam</b> connection every hour."),
                    {"type": "image", "data": {"file": {"url": "https://cdn.uni.edu/wifi.png"}}},
                ),
                author_id="u-student",
                approval_status=ApprovalStatus.APPROVED,
                category_id="cat-it",
                tag_ids=("t-wifi",),
                created_at=datetime(2024, 1, 1),
            ),
            [1.0, 0.0, 0.0, 0.0],
        ),
        (
            QuestionRecord(
                id="q-vpn",
                title="VPN access from home",
                content="<p>How do I reach the university network remotely?</p>",
                author_id="u-other",
                approval_status=ApprovalStatus.APPROVED,
                category_id="cat-it",
                created_at=datetime(2024, 1, 2),
            ),
            [0.9, 0.1, 0.0, 0.0],
        ),
        (
            QuestionRecord(
                id="q-fees",
                title="Tuition payment deadline",
                content=_blocks(_paragraph("When is the tuition payment due this semester?")),
                author_id="u-other",
                approval_status=ApprovalStatus.APPROVED,
                category_id="cat-fin",
                tag_ids=("t-tuition",),
                created_at=datetime(2024, 1, 3),
            ),
            [0.0, 0.0, 1.0, 0.0],
        ),
        (
            QuestionRecord(
                id="q-pending",
                title="Wifi password for dorms",
                content=_blocks(_paragraph("Where can I find the dorm wifi password?")),
                author_id="u-other",
                approval_status=ApprovalStatus.PENDING,
                category_id="cat-it",
                created_at=datetime(2024, 1, 4),
            ),
            [0.95, 0.05, 0.0, 0.0],
        ),
        (
            QuestionRecord(
                id="q-rejected",
                title="Wifi hack request",
                content="How to bypass the wifi login page",
                author_id="u-student",
                approval_status=ApprovalStatus.REJECTED,
                category_id="cat-it",
                created_at=datetime(2024, 1, 5),
            ),
            [1.0, 0.01, 0.0, 0.0],
        ),
        (
            QuestionRecord(
                id="q-noemb",
                title="Printer not working in library",
                content=_blocks(
                    _paragraph("The print queue is stuck."),
                    {"type": "code", "data": {"code": "lpstat -t  # database of jobs"}},
                ),
                author_id="u-student",
                approval_status=ApprovalStatus.APPROVED,
                category_id="cat-it",
                created_at=datetime(2024, 1, 6),
            ),
            None,
        ),
        (
            QuestionRecord(
                id="q-anon",
                title="Scholarship eligibility",
                content=_blocks(_paragraph("Am I eligible for the merit scholarship?")),
                author_id="u-student",
                approval_status=ApprovalStatus.APPROVED,
                category_id="cat-fin",
                category_ids=("cat-it",),
                is_anonymous=True,
                created_at=datetime(2024, 1, 7),
            ),
            [0.0, 0.0, 0.8, 0.2],
        ),
    ]
    for record, embedding in questions:
        storage.upsert_question(record)
        if embedding is not None:
            storage.store_question_embedding(record.id, embedding)

    storage.add_answer(
        AnswerRecord(
            id="a-1",
            question_id="q-vpn",
            author_id="u-advisor",
            content="<p>Install the client from the IT portal.</p>",
        )
    )
    storage.add_answer(
        AnswerRecord(
            id="a-2",
            question_id="q-vpn",
            author_id="u-admin",
            content=_blocks(_paragraph("Use your student credentials to sign in.")),
        )
    )
    storage.add_answer(
        AnswerRecord(
            id="a-3",
            question_id="q-fees",
            author_id="u-advisor",
            content=_blocks(_paragraph("Pay through the finance portal before March 1.")),
        )
    )


@pytest.fixture()
def storage(tmp_path: Path):
    store = DuckDBStorage(str(tmp_path / "helpdesk.duckdb"))
    seed(store)
    yield store
    store.close()

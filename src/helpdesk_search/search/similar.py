"""
Similar-questions lookup for a single source question.

A stored embedding of the configured length is reused. Otherwise one is
generated from the question text and written back best-effort. When no
embedding can be obtained, or the vector query fails, the result is an empty
list with an explanatory message rather than an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..config import debug_enabled
from ..embeddings import EmbeddingService
from ..errors import PersistenceError, QuestionNotFoundError
from ..models import SimilarQuestion
from ..storage import SourceQuestion, StorageBackend
from ..visibility import Viewer, author_for_viewer, is_visible
from .vector import SIMILAR_THRESHOLD, VectorQueryEngine

logger = logging.getLogger(__name__)

MESSAGE_UNAVAILABLE = (
    "Similar-question suggestions are not enabled. "
    "Configure an API key for the embedding provider."
)
MESSAGE_GENERATION_FAILED = (
    "Could not generate an embedding to find similar questions. Please try again later."
)
MESSAGE_QUERY_FAILED = "Could not search for similar questions. Please try again later."
MESSAGE_NONE_FOUND = "No similar questions found"


@dataclass(frozen=True)
class SimilarResult:
    questions: list[SimilarQuestion] = field(default_factory=list)
    message: str | None = None
    error: str | None = None

    @classmethod
    def degraded(cls, message: str, exc: BaseException | None = None) -> "SimilarResult":
        error = str(exc) if exc is not None and debug_enabled() else None
        return cls(message=message, error=error)

    def to_json_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "questions": [question.to_json_dict() for question in self.questions],
        }
        if self.message is not None:
            payload["message"] = self.message
        else:
            payload["count"] = len(self.questions)
        if self.error is not None:
            payload["error"] = self.error
        return payload


class SimilarQuestionsService:
    """Find questions close to a source question in embedding space."""

    def __init__(
        self,
        storage: StorageBackend,
        embedding_service: EmbeddingService,
        vector_engine: VectorQueryEngine | None = None,
    ) -> None:
        self.storage = storage
        self.embedding_service = embedding_service
        self.vector_engine = vector_engine or VectorQueryEngine(
            storage, embedding_service.dimensions
        )

    def _stored_embedding(self, question_id: str) -> list[float] | None:
        embedding = self.storage.get_question_embedding(question_id)
        if embedding is None:
            return None
        if len(embedding) != self.embedding_service.dimensions:
            logger.info(
                "Ignoring stored embedding for %s with %d dimensions (expected %d)",
                question_id,
                len(embedding),
                self.embedding_service.dimensions,
            )
            return None
        return embedding

    def _persist(self, question_id: str, embedding: list[float]) -> None:
        if len(embedding) != self.embedding_service.dimensions:
            logger.info(
                "Not persisting %d-dimension embedding for %s", len(embedding), question_id
            )
            return
        try:
            self.storage.store_question_embedding(question_id, embedding)
        except Exception as exc:
            error = PersistenceError(f"Failed to save embedding for {question_id}: {exc}")
            logger.error("%s", error)
            return
        logger.info("Saved embedding for question %s", question_id)

    async def _generate(self, source: SourceQuestion) -> list[float]:
        logger.info(
            "Generating embedding for question %s (text length: %d)",
            source.id,
            len(source.embedding_text),
        )
        embedding = await self.embedding_service.embed(source.embedding_text)
        self._persist(source.id, embedding)
        return embedding

    async def find_similar(
        self,
        question_id: str,
        viewer: Viewer,
        *,
        limit: int = 5,
        threshold: float = SIMILAR_THRESHOLD,
    ) -> SimilarResult:
        source = self.storage.get_question(question_id)
        if source is None or not is_visible(viewer, source.author_id, source.approval_status):
            raise QuestionNotFoundError(question_id)

        embedding = self._stored_embedding(question_id)
        if embedding is None:
            if not self.embedding_service.is_available():
                logger.warning(
                    "No %s credential configured, similar questions unavailable",
                    self.embedding_service.provider.value,
                )
                return SimilarResult.degraded(MESSAGE_UNAVAILABLE)
            try:
                embedding = await self._generate(source)
            except Exception as exc:
                logger.error("Failed to generate embedding for question %s: %s", question_id, exc)
                return SimilarResult.degraded(MESSAGE_GENERATION_FAILED, exc)

        try:
            matches = self.vector_engine.search(
                embedding,
                viewer,
                threshold=threshold,
                limit=limit,
                exclude_ids=(question_id,),
            )
        except Exception as exc:
            logger.error("Similar-question query failed for %s: %s", question_id, exc)
            return SimilarResult.degraded(MESSAGE_QUERY_FAILED, exc)

        if not matches:
            return SimilarResult(message=MESSAGE_NONE_FOUND)

        similarity_by_id = {match.question_id: match.similarity for match in matches}
        questions = [
            SimilarQuestion(
                id=question.id,
                title=question.title,
                content=question.content,
                similarity=similarity_by_id[question.id],
                author=author_for_viewer(viewer, question),
                category=question.category,
                categories=question.categories,
                views=question.views,
                answers_count=question.answers_count,
                created_at=question.created_at,
                updated_at=question.updated_at,
            )
            for question in self.storage.hydrate_questions(list(similarity_by_id))
        ]
        questions.sort(key=lambda question: question.similarity, reverse=True)
        return SimilarResult(questions=questions)

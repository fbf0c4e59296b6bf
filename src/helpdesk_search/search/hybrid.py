"""
Hybrid question search.

Relational keyword matching always runs. When a query is present and the
embedding provider is usable, vector similarity boosts and extends the
relational hits. Pagination happens only after both channels are fused.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..content import extract_images, extract_text_preview
from ..embeddings import EmbeddingService
from ..models import ApprovalStatus, QuestionStatus, SearchResultItem
from ..storage import QuestionFilters, StorageBackend
from ..visibility import Viewer, author_for_viewer
from .ranker import fuse_scores, paginate, rank_candidates, total_pages
from .vector import HYBRID_THRESHOLD, VectorMatch, VectorQueryEngine

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 150
MESSAGE_NO_RESULTS = "No questions match your search"


@dataclass(frozen=True)
class SearchRequest:
    query: str | None = None
    tags: tuple[str, ...] = ()
    category_id: str | None = None
    author_id: str | None = None
    status: QuestionStatus | None = None
    approval_status: ApprovalStatus | None = None
    page: int = 1
    limit: int = 10
    use_vector: bool = True
    vector_weight: float = 0.5

    @property
    def filters(self) -> QuestionFilters:
        return QuestionFilters(
            category_id=self.category_id,
            author_id=self.author_id,
            status=self.status,
            approval_status=self.approval_status,
            tags=self.tags,
        )

    @property
    def normalized_query(self) -> str:
        return (self.query or "").strip()


@dataclass(frozen=True)
class SearchPage:
    items: list[SearchResultItem]
    total: int
    page: int
    limit: int
    used_vector: bool = False

    @property
    def total_pages(self) -> int:
        return total_pages(self.total, self.limit)

    def to_json_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "questions": [item.to_json_dict() for item in self.items],
            "pagination": {
                "total": self.total,
                "page": self.page,
                "limit": self.limit,
                "totalPages": self.total_pages,
            },
        }
        if not self.items:
            payload["message"] = MESSAGE_NO_RESULTS
        return payload


class HybridSearchEngine:
    """Fuse keyword and vector retrieval into one ranked, paginated list."""

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

    async def _vector_matches(
        self, request: SearchRequest, viewer: Viewer
    ) -> list[VectorMatch] | None:
        query = request.normalized_query
        if not (request.use_vector and query):
            return None
        if not self.embedding_service.is_available():
            logger.info("Embedding provider unavailable, skipping vector search")
            return None

        try:
            query_embedding = await self.embedding_service.embed(query)
            return self.vector_engine.search(
                query_embedding,
                viewer,
                threshold=HYBRID_THRESHOLD,
                limit=request.limit * 2,
                filters=request.filters,
            )
        except Exception as exc:
            logger.warning("Vector search failed, using relational results only: %s", exc)
            return None

    async def search(self, request: SearchRequest, viewer: Viewer) -> SearchPage:
        page = max(request.page, 1)
        limit = max(request.limit, 1)

        relational_ids = self.storage.keyword_search(
            query=request.normalized_query or None,
            viewer=viewer,
            filters=request.filters,
        )
        vector_matches = await self._vector_matches(request, viewer)
        logger.debug(
            "Search %r: %d relational, %s vector matches",
            request.normalized_query,
            len(relational_ids),
            "no" if vector_matches is None else len(vector_matches),
        )

        fused = fuse_scores(
            relational_ids,
            vector_matches or [],
            vector_weight=request.vector_weight,
        )
        hydrated = {
            question.id: question
            for question in self.storage.hydrate_questions(list(fused))
        }
        answer_counts = {
            question_id: question.answers_count for question_id, question in hydrated.items()
        }
        ranked = [
            breakdown
            for breakdown in rank_candidates(fused.values(), answer_counts)
            if breakdown.question_id in hydrated
        ]

        items: list[SearchResultItem] = []
        for breakdown in paginate(ranked, page=page, limit=limit):
            question = hydrated[breakdown.question_id]
            data = question.model_dump()
            data["author_id"] = question.author_id
            data["author"] = author_for_viewer(viewer, question)
            items.append(
                SearchResultItem(
                    **data,
                    preview=extract_text_preview(question.content, PREVIEW_LENGTH),
                    images=extract_images(question.content),
                    score=breakdown.combined_score,
                )
            )

        return SearchPage(
            items=items,
            total=len(ranked),
            page=page,
            limit=limit,
            used_vector=vector_matches is not None,
        )

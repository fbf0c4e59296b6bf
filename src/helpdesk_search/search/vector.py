"""
Nearest-neighbor queries over stored question embeddings.

Distance math is delegated to the store. This engine validates the query
vector, builds the visibility-filtered query, and post-filters the
similarities it gets back.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from ..errors import DimensionMismatchError, VectorQueryError
from ..storage import QuestionFilters, StorageBackend
from ..visibility import Viewer

logger = logging.getLogger(__name__)

SIMILAR_THRESHOLD = 0.7
HYBRID_THRESHOLD = 0.5


@dataclass(frozen=True)
class VectorMatch:
    question_id: str
    similarity: float


class VectorQueryEngine:
    """Run top-K cosine queries restricted to what a viewer may see."""

    def __init__(self, storage: StorageBackend, dimensions: int) -> None:
        self.storage = storage
        self.dimensions = dimensions

    def search(
        self,
        query_vector: list[float],
        viewer: Viewer,
        *,
        threshold: float = SIMILAR_THRESHOLD,
        limit: int = 5,
        exclude_ids: tuple[str, ...] = (),
        filters: QuestionFilters | None = None,
    ) -> list[VectorMatch]:
        """Return up to *limit* matches with ``threshold < similarity <= 1``.

        The store orders by ascending distance and applies *limit*; matches
        below the floor are dropped afterwards, so fewer than *limit* may
        come back.
        """
        if len(query_vector) != self.dimensions:
            raise DimensionMismatchError(self.dimensions, len(query_vector))
        if limit <= 0:
            return []

        try:
            rows = self.storage.vector_search(
                query_embedding=query_vector,
                viewer=viewer,
                limit=limit,
                filters=filters,
                exclude_ids=exclude_ids,
            )
        except Exception as exc:
            raise VectorQueryError(f"Vector query failed: {exc}") from exc

        matches: list[VectorMatch] = []
        for question_id, similarity in rows:
            if math.isnan(similarity) or similarity <= 0 or similarity <= threshold:
                continue
            matches.append(VectorMatch(question_id=question_id, similarity=min(similarity, 1.0)))

        logger.debug(
            "Vector query returned %d rows, %d above threshold %.2f",
            len(rows),
            len(matches),
            threshold,
        )
        return matches

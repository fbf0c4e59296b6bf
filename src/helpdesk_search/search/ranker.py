"""
Ranking helpers for merging relational and vector result sets.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Iterable, Sequence, TypeVar

from .vector import VectorMatch

T = TypeVar("T")

RELATIONAL_TOP_SCORE = 1.0
RELATIONAL_DECAY = 0.3
VECTOR_ONLY_BASELINE = 0.3
TIE_EPSILON = 0.01
DEFAULT_VECTOR_WEIGHT = 0.5


def clamp_vector_weight(weight: float) -> float:
    """Bound a vector weight to [0, 1]; NaN falls back to the default."""
    if math.isnan(weight):
        return DEFAULT_VECTOR_WEIGHT
    return min(max(weight, 0.0), 1.0)


@dataclass(frozen=True)
class ScoreBreakdown:
    """Per-question contributions from each retrieval channel."""

    question_id: str
    relational_score: float | None = None
    vector_similarity: float | None = None
    vector_weight: float = DEFAULT_VECTOR_WEIGHT

    @property
    def vector_score(self) -> float:
        if self.vector_similarity is None:
            return 0.0
        return self.vector_similarity * clamp_vector_weight(self.vector_weight)

    @property
    def combined_score(self) -> float:
        if self.relational_score is not None:
            # Vector contribution is only ever added on top.
            return self.relational_score + self.vector_score
        contribution = self.vector_score
        return contribution if contribution > 0 else VECTOR_ONLY_BASELINE

    @property
    def matched_by(self) -> str:
        if self.relational_score is not None and self.vector_similarity is not None:
            return "relational+vector"
        if self.relational_score is not None:
            return "relational"
        return "vector"


def relational_scores(question_ids: Sequence[str]) -> dict[str, float]:
    """Linear decay from 1.0 for the first match toward 0.7 for the last."""
    count = max(len(question_ids), 1)
    scores: dict[str, float] = {}
    for index, question_id in enumerate(question_ids):
        if question_id in scores:
            continue
        scores[question_id] = RELATIONAL_TOP_SCORE - (index / count) * RELATIONAL_DECAY
    return scores


def fuse_scores(
    relational_ids: Sequence[str],
    vector_matches: Iterable[VectorMatch],
    *,
    vector_weight: float = DEFAULT_VECTOR_WEIGHT,
) -> dict[str, ScoreBreakdown]:
    """Union both channels by question id, relational hits first."""
    vector_weight = clamp_vector_weight(vector_weight)
    fused: dict[str, ScoreBreakdown] = {
        question_id: ScoreBreakdown(
            question_id=question_id,
            relational_score=score,
            vector_weight=vector_weight,
        )
        for question_id, score in relational_scores(relational_ids).items()
    }
    for match in vector_matches:
        existing = fused.get(match.question_id)
        if existing is not None and existing.vector_similarity is not None:
            continue
        fused[match.question_id] = ScoreBreakdown(
            question_id=match.question_id,
            relational_score=existing.relational_score if existing else None,
            vector_similarity=match.similarity,
            vector_weight=vector_weight,
        )
    return fused


def rank_candidates(
    breakdowns: Iterable[ScoreBreakdown],
    answer_counts: dict[str, int] | None = None,
) -> list[ScoreBreakdown]:
    """Sort by combined score; near-ties go to the question with more answers."""
    counts = answer_counts or {}

    def compare(left: ScoreBreakdown, right: ScoreBreakdown) -> int:
        difference = right.combined_score - left.combined_score
        if abs(difference) < TIE_EPSILON:
            return counts.get(right.question_id, 0) - counts.get(left.question_id, 0)
        return -1 if difference < 0 else 1

    # sorted() is stable, so full ties keep their fusion order.
    return sorted(breakdowns, key=cmp_to_key(compare))


def paginate(items: Sequence[T], *, page: int, limit: int) -> list[T]:
    page = max(page, 1)
    limit = max(limit, 1)
    start = (page - 1) * limit
    return list(items[start : start + limit])


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / max(limit, 1)) if total > 0 else 0

"""Search helpers for the question store."""

from .hybrid import HybridSearchEngine, SearchPage, SearchRequest
from .ranker import (
    ScoreBreakdown,
    clamp_vector_weight,
    fuse_scores,
    paginate,
    rank_candidates,
    relational_scores,
    total_pages,
)
from .similar import SimilarQuestionsService, SimilarResult
from .vector import HYBRID_THRESHOLD, SIMILAR_THRESHOLD, VectorMatch, VectorQueryEngine

__all__ = [
    "HybridSearchEngine",
    "SearchPage",
    "SearchRequest",
    "ScoreBreakdown",
    "clamp_vector_weight",
    "fuse_scores",
    "paginate",
    "rank_candidates",
    "relational_scores",
    "total_pages",
    "SimilarQuestionsService",
    "SimilarResult",
    "HYBRID_THRESHOLD",
    "SIMILAR_THRESHOLD",
    "VectorMatch",
    "VectorQueryEngine",
]

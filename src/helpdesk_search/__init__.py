"""
helpdesk_search - hybrid semantic search for a university Q&A helpdesk.

This package ranks helpdesk questions by combining keyword matching with
embedding similarity, and finds questions similar to a given one. Embeddings
come from Google GenAI by default, with OpenAI as the fallback provider.

Example usage:
    >>> from helpdesk_search import DuckDBStorage, EmbeddingService, HybridSearchEngine
    >>> engine = HybridSearchEngine(DuckDBStorage("helpdesk.duckdb"), EmbeddingService())
    >>> page = await engine.search(SearchRequest(query="course registration"), Viewer())
"""

from .cache import EmbeddingCache
from .embeddings import EmbeddingService
from .search import (
    HybridSearchEngine,
    SearchPage,
    SearchRequest,
    SimilarQuestionsService,
    SimilarResult,
    VectorQueryEngine,
)
from .storage import DuckDBStorage
from .visibility import Viewer

__all__ = [
    # Embeddings
    "EmbeddingCache",
    "EmbeddingService",
    # Search
    "HybridSearchEngine",
    "SearchPage",
    "SearchRequest",
    "SimilarQuestionsService",
    "SimilarResult",
    "VectorQueryEngine",
    # Storage
    "DuckDBStorage",
    "Viewer",
]

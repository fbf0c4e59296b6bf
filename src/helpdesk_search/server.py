"""
FastAPI server for helpdesk question search.

Exposes hybrid search, similar-question lookup, and embedding cache
diagnostics. Caller identity comes from the optional ``X-User-Id`` and
``X-User-Role`` headers set by the upstream auth layer.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse

from .cache import EmbeddingCache, default_cache, sweep_periodically
from .config import CacheSettings, resolve_db_path
from .embeddings import EmbeddingService
from .errors import QuestionNotFoundError
from .models import ApprovalStatus, QuestionStatus
from .search import HybridSearchEngine, SearchRequest, SimilarQuestionsService
from .storage import DuckDBStorage, StorageBackend
from .visibility import Viewer

logger = logging.getLogger(__name__)


def _bind_services(app: FastAPI, storage: StorageBackend) -> None:
    embedding_service: EmbeddingService = app.state.embedding_service
    app.state.storage = storage
    app.state.hybrid = HybridSearchEngine(storage, embedding_service)
    app.state.similar = SimilarQuestionsService(storage, embedding_service)


def _parse_enum(enum_cls: type, value: str | None, name: str) -> Any:
    if value is None or not value.strip():
        return None
    try:
        return enum_cls(value.strip().upper())
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValueError(f"Invalid {name}: {value!r} (expected one of {allowed})") from exc


def _parse_tags(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(tag.strip() for tag in raw.split(",") if tag.strip())


def create_app(
    storage: StorageBackend | None = None,
    embedding_service: EmbeddingService | None = None,
    cache: EmbeddingCache | None = None,
) -> FastAPI:
    """Build the application; injected collaborators are used as-is."""
    cache_settings = CacheSettings.from_env()
    resolved_cache = cache if cache is not None else default_cache()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned_storage: DuckDBStorage | None = None
        if getattr(app.state, "storage", None) is None:
            owned_storage = DuckDBStorage(resolve_db_path())
            _bind_services(app, owned_storage)
            logger.info("Opened question store at %s", owned_storage.db_path)

        sweeper = asyncio.create_task(
            sweep_periodically(resolved_cache, cache_settings.sweep_interval_seconds)
        )
        try:
            yield
        finally:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass
            if owned_storage is not None:
                owned_storage.close()
                app.state.storage = None

    app = FastAPI(
        title="Helpdesk Search",
        description="Hybrid keyword and semantic search over helpdesk questions",
        lifespan=lifespan,
    )
    app.state.cache = resolved_cache
    app.state.embedding_service = embedding_service or EmbeddingService(cache=resolved_cache)
    app.state.storage = None
    if storage is not None:
        _bind_services(app, storage)

    @app.get("/api/questions/search")
    async def search_questions(
        request: Request,
        q: str | None = None,
        tags: str | None = None,
        category_id: str | None = Query(None, alias="categoryId"),
        author_id: str | None = Query(None, alias="authorId"),
        status: str | None = None,
        approval_status: str | None = Query(None, alias="approvalStatus"),
        page: int = 1,
        limit: int = 10,
        use_vector: bool = Query(True, alias="useVector"),
        vector_weight: float = Query(
            0.5, ge=0.0, le=1.0, allow_inf_nan=False, alias="vectorWeight"
        ),
        x_user_id: str | None = Header(None),
        x_user_role: str | None = Header(None),
    ):
        """Hybrid keyword and vector search with pagination."""
        try:
            search_request = SearchRequest(
                query=q,
                tags=_parse_tags(tags),
                category_id=category_id or None,
                author_id=author_id or None,
                status=_parse_enum(QuestionStatus, status, "status"),
                approval_status=_parse_enum(ApprovalStatus, approval_status, "approvalStatus"),
                page=max(page, 1),
                limit=max(limit, 1),
                use_vector=use_vector,
                vector_weight=vector_weight,
            )
        except ValueError as exc:
            return JSONResponse({"error": str(exc)}, status_code=400)

        viewer = Viewer.from_headers(x_user_id, x_user_role)
        try:
            result = await request.app.state.hybrid.search(search_request, viewer)
        except Exception as exc:
            logger.exception("Search failed")
            return JSONResponse({"error": str(exc)}, status_code=500)
        return result.to_json_dict()

    @app.get("/api/questions/{question_id}/similar")
    async def similar_questions(
        request: Request,
        question_id: str,
        limit: int = 5,
        threshold: float = 0.7,
        x_user_id: str | None = Header(None),
        x_user_role: str | None = Header(None),
    ):
        """Questions semantically close to *question_id*."""
        if not question_id.strip():
            return JSONResponse({"message": "Invalid question id"}, status_code=400)

        viewer = Viewer.from_headers(x_user_id, x_user_role)
        try:
            result = await request.app.state.similar.find_similar(
                question_id,
                viewer,
                limit=limit,
                threshold=threshold,
            )
        except QuestionNotFoundError:
            return JSONResponse({"message": "Question not found"}, status_code=404)
        except Exception as exc:
            logger.exception("Similar-question lookup failed")
            return JSONResponse({"error": str(exc)}, status_code=500)
        return result.to_json_dict()

    @app.get("/api/embeddings/cache")
    async def cache_stats(request: Request):
        """Embedding cache size and limits."""
        service: EmbeddingService = request.app.state.embedding_service
        return {
            **request.app.state.cache.stats(),
            "provider": service.provider.value,
            "dimensions": service.dimensions,
            "available": service.is_available(),
        }

    return app


app = create_app()


def run_server(host: str = "127.0.0.1", port: int = 8000) -> None:
    """Run the FastAPI server."""
    import uvicorn

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()

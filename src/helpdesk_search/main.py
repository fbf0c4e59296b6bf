import asyncio
import logging
import time

from typer import Argument, Exit, Option, Typer
from typing import Annotated
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import resolve_db_path
from .embeddings import EmbeddingService
from .errors import QuestionNotFoundError
from .search import HybridSearchEngine, SearchRequest, SimilarQuestionsService
from .storage import DuckDBStorage
from .visibility import Viewer

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

app = Typer(help="Hybrid keyword and semantic search for helpdesk questions.")
embeddings_app = Typer(help="Inspect and backfill stored question embeddings.")
app.add_typer(embeddings_app, name="embeddings")

console = Console()


def open_storage(db_path: str | None) -> DuckDBStorage:
    return DuckDBStorage(resolve_db_path(db_path))


def build_embedding_service() -> EmbeddingService:
    return EmbeddingService()


@app.callback()
def configure(
    log_level: Annotated[
        str,
        Option("--log-level", help="Logging level (DEBUG, INFO, WARNING, ERROR)."),
    ] = "WARNING",
) -> None:
    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT)


@app.command()
def serve(
    host: Annotated[str, Option("--host", help="Interface to bind.")] = "127.0.0.1",
    port: Annotated[int, Option("--port", help="Port to listen on.")] = 8000,
) -> None:
    """Run the HTTP API."""
    from .server import run_server

    run_server(host=host, port=port)


@app.command()
def search(
    query: Annotated[str, Argument(help="Free-text search query.")],
    db_path: Annotated[str | None, Option("--db-path", help="DuckDB file.")] = None,
    limit: Annotated[int, Option("--limit", help="Results per page.")] = 10,
    page: Annotated[int, Option("--page", help="Page number, starting at 1.")] = 1,
    no_vector: Annotated[
        bool, Option("--no-vector", help="Skip the vector similarity channel.")
    ] = False,
    vector_weight: Annotated[
        float,
        Option(
            "--vector-weight",
            min=0.0,
            max=1.0,
            help="Weight applied to vector similarity (0-1).",
        ),
    ] = 0.5,
    user_id: Annotated[str | None, Option("--user-id", help="Search as this user.")] = None,
    role: Annotated[str | None, Option("--role", help="Role of --user-id.")] = None,
) -> None:
    """Run a hybrid search and print the ranked page."""
    storage = open_storage(db_path)
    try:
        engine = HybridSearchEngine(storage, build_embedding_service())
        result = asyncio.run(
            engine.search(
                SearchRequest(
                    query=query,
                    page=page,
                    limit=limit,
                    use_vector=not no_vector,
                    vector_weight=vector_weight,
                ),
                Viewer.from_headers(user_id, role),
            )
        )
    finally:
        storage.close()

    table = Table(title=f"Results for {query!r}")
    table.add_column("Score", justify="right")
    table.add_column("Id")
    table.add_column("Title")
    table.add_column("Answers", justify="right")
    for item in result.items:
        table.add_row(f"{item.score:.3f}", item.id, item.title, str(item.answers_count))
    console.print(table)
    console.print(
        f"Page {result.page}/{max(result.total_pages, 1)}, {result.total} total"
        + ("" if result.used_vector else " (keyword only)")
    )


@app.command()
def similar(
    question_id: Annotated[str, Argument(help="Source question id.")],
    db_path: Annotated[str | None, Option("--db-path", help="DuckDB file.")] = None,
    limit: Annotated[int, Option("--limit", help="Maximum matches.")] = 5,
    threshold: Annotated[
        float, Option("--threshold", help="Minimum cosine similarity.")
    ] = 0.7,
    user_id: Annotated[str | None, Option("--user-id", help="Look up as this user.")] = None,
    role: Annotated[str | None, Option("--role", help="Role of --user-id.")] = None,
) -> None:
    """List questions similar to QUESTION_ID."""
    storage = open_storage(db_path)
    try:
        service = SimilarQuestionsService(storage, build_embedding_service())
        result = asyncio.run(
            service.find_similar(
                question_id,
                Viewer.from_headers(user_id, role),
                limit=limit,
                threshold=threshold,
            )
        )
    except QuestionNotFoundError as exc:
        console.print(f"[bold red]{exc}[/]")
        raise Exit(code=1)
    finally:
        storage.close()

    if result.message:
        console.print(Panel(result.message, title="Similar questions", border_style="yellow"))
        return

    table = Table(title=f"Similar to {question_id}")
    table.add_column("Similarity", justify="right")
    table.add_column("Id")
    table.add_column("Title")
    for question in result.questions:
        table.add_row(f"{question.similarity:.3f}", question.id, question.title)
    console.print(table)


@embeddings_app.command("status")
def embeddings_status(
    db_path: Annotated[str | None, Option("--db-path", help="DuckDB file.")] = None,
) -> None:
    """Show how many questions have usable embeddings."""
    service = build_embedding_service()
    storage = open_storage(db_path)
    try:
        stats = storage.embedding_stats(dimensions=service.dimensions)
        missing = storage.questions_missing_embeddings(dimensions=service.dimensions, limit=5)
    finally:
        storage.close()

    table = Table(title="Question embeddings", show_header=False)
    table.add_row("Provider", f"{service.provider.value} ({service.dimensions} dimensions)")
    table.add_row("Total questions", str(stats.total_questions))
    table.add_row("With embeddings", str(stats.with_embeddings))
    table.add_row("Without embeddings", str(stats.without_embeddings))
    table.add_row("Wrong dimensions", str(stats.invalid_dimensions))
    console.print(table)

    if missing:
        console.print("[bold]Questions needing embeddings:[/]")
        for question in missing:
            console.print(f"  {question.id}  {question.title}")


async def _backfill(
    storage: DuckDBStorage,
    service: EmbeddingService,
    *,
    limit: int | None,
    delay: float,
) -> tuple[int, int]:
    questions = storage.questions_missing_embeddings(dimensions=service.dimensions, limit=limit)
    succeeded = 0
    failed = 0
    for index, question in enumerate(questions):
        try:
            embedding = await service.embed(question.embedding_text)
            if len(embedding) != service.dimensions:
                raise ValueError(
                    f"got {len(embedding)} dimensions, expected {service.dimensions}"
                )
            storage.store_question_embedding(question.id, embedding)
            succeeded += 1
            console.print(f"[green]ok[/] {question.id}")
        except Exception as exc:
            failed += 1
            console.print(f"[red]failed[/] {question.id}: {exc}")
        if delay > 0 and index < len(questions) - 1:
            await asyncio.sleep(delay)
    return succeeded, failed


@embeddings_app.command("backfill")
def embeddings_backfill(
    db_path: Annotated[str | None, Option("--db-path", help="DuckDB file.")] = None,
    limit: Annotated[
        int | None, Option("--limit", help="Maximum questions to process.")
    ] = None,
    delay: Annotated[
        float, Option("--delay", help="Seconds to wait between provider calls.")
    ] = 0.1,
    reset_invalid: Annotated[
        bool,
        Option("--reset-invalid", help="Delete wrong-dimension embeddings first."),
    ] = False,
) -> None:
    """Generate embeddings for questions that are missing one."""
    service = build_embedding_service()
    if not service.is_available():
        console.print(
            f"[bold red]No API key configured for {service.provider.value}.[/]"
        )
        raise Exit(code=1)

    storage = open_storage(db_path)
    try:
        if reset_invalid:
            cleared = storage.clear_invalid_embeddings(dimensions=service.dimensions)
            console.print(f"Cleared {cleared} wrong-dimension embeddings")
        started = time.monotonic()
        succeeded, failed = asyncio.run(
            _backfill(storage, service, limit=limit, delay=delay)
        )
    finally:
        storage.close()

    console.print(
        f"Done in {time.monotonic() - started:.1f}s: "
        f"[green]{succeeded} succeeded[/], [red]{failed} failed[/]"
    )

"""Command line interface for policyaudit."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from policyaudit.config import AppConfig, RetrievalConfig
from policyaudit.embedding.query import QueryVectorizer
from policyaudit.errors import DimensionMismatchError, EmbeddingError, IndexLoadError
from policyaudit.index.embeddings import EmbeddingIndexLoader
from policyaudit.index.indexer import PageIndexer, build_embedding_index
from policyaudit.index.search import PageSearcher
from policyaudit.index.storage import SQLitePageStore
from policyaudit.models import Question
from policyaudit.retrieval.engine import AuditEngine, build_provider
from policyaudit.utils.files import iter_pdf_paths, load_questions


console = Console()
app = typer.Typer(help="policyaudit - evidence retrieval for policy compliance questions")

_DEFAULTS = AppConfig(api_key="")
_RETRIEVAL = RetrievalConfig()


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _config(
    db: Optional[Path], index: Optional[Path] = None, provider: str = "gemini", model: Optional[str] = None
) -> AppConfig:
    try:
        return AppConfig(
            db_path=db if db is not None else _DEFAULTS.db_path,
            index_path=index if index is not None else _DEFAULTS.index_path,
            provider=provider,
            model_name=model,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _existing_db(config: AppConfig) -> Path:
    resolved = config.resolve_db_path(Path.cwd())
    if not resolved.exists():
        raise typer.BadParameter(f"Database not found: {resolved}")
    return resolved


@app.command()
def ingest(
    inputs: List[Path] = typer.Argument(..., help="PDF files or folders to ingest.", resolve_path=True),
    db: Path = typer.Option(None, "--db", help="SQLite page database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Extract page text from PDFs into the page database."""
    _setup_logging(verbose)
    resolved_db = _config(db).resolve_db_path(Path.cwd())

    pdf_paths = list(iter_pdf_paths(inputs))
    if not pdf_paths:
        console.print("[yellow]No PDFs found.[/yellow]")
        return

    _ensure_db_parent(resolved_db)
    store = SQLitePageStore(resolved_db)
    try:
        console.print(f"Ingesting into [bold]{resolved_db}[/bold]...")
        stats = PageIndexer(store).index(pdf_paths)
    finally:
        store.close()
    console.print(
        f"Inserted: {stats.inserted}, updated: {stats.updated}, "
        f"skipped: {stats.skipped}, failed: {stats.failed}"
    )


@app.command("export-pages")
def export_pages(
    out: Path = typer.Argument(..., help="Output JSON page map"),
    db: Path = typer.Option(None, "--db", help="SQLite page database path"),
) -> None:
    """Dump the page database as a compact doc#page -> text JSON map."""
    store = SQLitePageStore(_existing_db(_config(db)))
    try:
        count = store.export_json(out)
    finally:
        store.close()
    console.print(f"Wrote {count} pages to [bold]{out}[/bold]")


@app.command("build-index")
def build_index(
    db: Path = typer.Option(None, "--db", help="SQLite page database path"),
    index: Path = typer.Option(None, "--index", help="Embedding index output path"),
    provider: str = typer.Option("gemini", help="Embedding provider: gemini or local"),
    model: Optional[str] = typer.Option(None, help="Embedding model name"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Embed every stored page and write the embedding index."""
    _setup_logging(verbose)
    config = _config(db, index, provider, model)
    store = SQLitePageStore(_existing_db(config))
    out_path = config.resolve_index_path(Path.cwd())
    _ensure_db_parent(out_path)

    async def run() -> int:
        embedder = build_provider(config)
        try:
            return await build_embedding_index(
                store,
                embedder,
                out_path,
                progress=lambda done, total: console.print(f"{done} / {total}", end="\r"),
            )
        finally:
            await embedder.aclose()

    try:
        count = asyncio.run(run())
    except EmbeddingError as exc:
        console.print(f"[red]Embedding failed:[/red] {exc}")
        raise typer.Exit(code=1)
    finally:
        store.close()
    console.print(f"\nWrote {count} vectors to [bold]{out_path}[/bold]")


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    db: Path = typer.Option(None, "--db", help="SQLite page database path"),
    index: Path = typer.Option(None, "--index", help="Embedding index path"),
    provider: str = typer.Option("gemini", help="Embedding provider: gemini or local"),
    model: Optional[str] = typer.Option(None, help="Embedding model name"),
    top_k: int = typer.Option(10, help="Number of results to display"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Show the nearest pages for a query."""
    _setup_logging(verbose)
    config = _config(db, index, provider, model)
    store = SQLitePageStore(_existing_db(config))
    try:
        embedding_index = EmbeddingIndexLoader(config.resolve_index_path(Path.cwd())).load()
    except IndexLoadError as exc:
        store.close()
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)

    async def run():
        embedder = build_provider(config)
        try:
            return await PageSearcher(QueryVectorizer(embedder), embedding_index, store).search(query, top_k=top_k)
        finally:
            await embedder.aclose()

    try:
        results = asyncio.run(run())
    except (EmbeddingError, DimensionMismatchError) as exc:
        console.print(f"[red]Search failed:[/red] {exc}")
        raise typer.Exit(code=1)
    finally:
        store.close()

    if not results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Document")
    table.add_column("Page")
    table.add_column("Snippet")
    for result in results:
        table.add_row(f"{result.score:.4f}", result.document_id, str(result.page), result.preview[:180])
    console.print(table)


@app.command()
def check(
    questions: List[str] = typer.Argument(None, help="Question texts"),
    file: Path = typer.Option(None, "--file", "-f", help="Questions file (.json or one per line)"),
    db: Path = typer.Option(None, "--db", help="SQLite page database path"),
    index: Path = typer.Option(None, "--index", help="Embedding index path"),
    provider: str = typer.Option("gemini", help="Embedding provider: gemini or local"),
    model: Optional[str] = typer.Option(None, help="Embedding model name"),
    top_k: int = typer.Option(_RETRIEVAL.top_k, help="Nearest neighbors per question"),
    budget: int = typer.Option(_RETRIEVAL.char_budget, help="Context character budget"),
    concurrency: int = typer.Option(_RETRIEVAL.concurrency, help="Questions in flight"),
    show_context: bool = typer.Option(False, "--show-context", help="Print packed contexts"),
    as_json: bool = typer.Option(False, "--json", help="Emit results as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Retrieve and pack evidence for each question."""
    _setup_logging(verbose)
    batch = [Question(id=str(i), text=text) for i, text in enumerate(questions or [], start=1)]
    if file is not None:
        batch.extend(load_questions(file, start=len(batch) + 1))
    if not batch:
        raise typer.BadParameter("Provide questions as arguments or with --file")

    config = _config(db, index, provider, model)
    _existing_db(config)
    retrieval = RetrievalConfig(top_k=top_k, char_budget=budget, concurrency=concurrency)
    try:
        engine = AuditEngine.from_config(config, retrieval, base_dir=Path.cwd())
    except (IndexLoadError, EmbeddingError) as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)

    async def run():
        try:
            return await engine.check(batch)
        finally:
            await engine.aclose()

    try:
        results = asyncio.run(run())
    except DimensionMismatchError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)

    if as_json:
        console.print_json(json.dumps({"results": [r.to_dict() for r in results]}))
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Question")
    table.add_column("Evidence")
    table.add_column("Strategy")
    table.add_column("Chunks")
    table.add_column("Chars")
    for question, result in zip(batch, results):
        table.add_row(
            f"{question.id}: {question.text[:80]}",
            "[green]yes[/green]" if result.has_evidence else "[red]no[/red]",
            result.strategy or "-",
            str(result.chunk_count),
            str(len(result.packed_context)),
        )
    console.print(table)

    if show_context:
        for question, result in zip(batch, results):
            console.rule(f"{question.id}")
            console.print(result.packed_context or "[yellow]No evidence.[/yellow]", markup=False)


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
    db: Path = typer.Option(None, "--db", help="SQLite page database path"),
    index: Path = typer.Option(None, "--index", help="Embedding index path"),
    provider: str = typer.Option("gemini", help="Embedding provider: gemini or local"),
) -> None:
    """Start the HTTP API."""
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    from policyaudit.web.app import create_app

    config = _config(db, index, provider)
    console.print(f"Starting API on http://{host}:{port} (database: {config.resolve_db_path(Path.cwd())})")
    uvicorn.run(create_app(config, base_dir=Path.cwd()), host=host, port=port, reload=False, log_level="info")

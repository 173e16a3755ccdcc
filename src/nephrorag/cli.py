"""Command line interface for NephroRAG."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from nephrorag.config import AppConfig
from nephrorag.embedding.cache import EmbeddingCache
from nephrorag.embedding.spaces import build_spaces
from nephrorag.errors import NephroRAGError
from nephrorag.index.indexer import Indexer
from nephrorag.index.registry import DocumentRegistry
from nephrorag.index.search import Retriever
from nephrorag.index.storage import SQLiteVectorStore
from nephrorag.ingestion.pdf_loader import get_pdf_metadata
from nephrorag.models import EMBEDDING_SPACES, Document
from nephrorag.utils.files import compute_sha256, resolve_storage_path

console = Console()
app = typer.Typer(help="NephroRAG - retrieval over nephrology reference documents")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _load_config(db: Path | None) -> AppConfig:
    config = AppConfig.from_env()
    if db is not None:
        config.db_path = db
    return config


def _open_store(config: AppConfig) -> SQLiteVectorStore:
    resolved_db = config.resolve_db_path(Path.cwd())
    _ensure_db_parent(resolved_db)
    return SQLiteVectorStore(resolved_db)


def _parse_document(entry: Any, documents_dir: Path) -> Document:
    if not isinstance(entry, dict):
        raise ValueError(f"expected an object, got {type(entry).__name__}")
    missing = [name for name in ("slug", "path") if not entry.get(name)]
    if missing:
        raise ValueError(f"missing required fields: {', '.join(missing)}")

    embedding_space = entry.get("embedding_space", "remote")
    if embedding_space not in EMBEDDING_SPACES:
        raise ValueError(
            f"invalid embedding_space '{embedding_space}', expected one of "
            f"{', '.join(EMBEDDING_SPACES)}"
        )

    path = resolve_storage_path(entry["path"], documents_dir)
    if not path.is_file():
        raise ValueError(f"file not found: {path}")

    title = entry.get("title")
    if not title:
        title = get_pdf_metadata(path)["title"] if path.suffix.lower() == ".pdf" else path.stem

    extra = entry.get("metadata") or {}
    if not isinstance(extra, dict):
        raise ValueError("metadata must be an object")
    metadata = dict(extra)
    if entry.get("pubmed_id"):
        metadata["pubmed_id"] = entry["pubmed_id"]
        metadata["pubmed_url"] = f"https://pubmed.ncbi.nlm.nih.gov/{entry['pubmed_id']}/"
    if entry.get("year"):
        metadata["year"] = entry["year"]
    metadata["sha256"] = compute_sha256(path)

    return Document(
        slug=entry["slug"],
        title=title,
        storage_path=str(path.resolve()),
        embedding_space=embedding_space,
        active=bool(entry.get("active", True)),
        metadata=metadata,
    )


@app.command()
def register(
    config_file: Path = typer.Argument(..., help="JSON file listing documents to register."),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    documents_dir: Path = typer.Option(None, help="Base directory for relative document paths"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Add or update documents in the registry."""
    _setup_logging(verbose)
    config = _load_config(db)
    base_dir = documents_dir if documents_dir is not None else config.documents_dir

    try:
        entries = json.loads(config_file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise typer.BadParameter(f"Cannot read {config_file}: {exc}") from exc
    if isinstance(entries, dict):
        entries = entries.get("documents", [])
    if not isinstance(entries, list):
        raise typer.BadParameter(f"{config_file} must hold a list of documents")

    store = _open_store(config)
    counts = {"inserted": 0, "updated": 0, "invalid": 0}
    try:
        for position, entry in enumerate(entries, 1):
            try:
                document = _parse_document(entry, base_dir)
                status = store.add_document(document)
            except (ValueError, OSError, NephroRAGError) as exc:
                console.print(f"[red]Document {position} skipped:[/red] {exc}")
                counts["invalid"] += 1
                continue
            counts[status] += 1
            console.print(f"{status.capitalize()} [bold]{document.slug}[/bold] ({document.embedding_space})")
    finally:
        store.close()

    console.print(
        f"Inserted: {counts['inserted']}, updated: {counts['updated']}, "
        f"invalid: {counts['invalid']}"
    )
    if counts["invalid"]:
        raise typer.Exit(code=1)


@app.command()
def ingest(
    slugs: List[str] = typer.Argument(None, help="Document slugs to ingest."),
    all_documents: bool = typer.Option(False, "--all", help="Ingest every active document"),
    space: Optional[str] = typer.Option(
        None, "--space", help="remote, local or both (default: each document's own space)"
    ),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Chunk, embed and store registered documents."""
    _setup_logging(verbose)
    config = _load_config(db)

    if space is not None and space not in (*EMBEDDING_SPACES, "both"):
        raise typer.BadParameter(f"Unknown embedding space: {space}")
    spaces_to_run: list[str | None] = (
        list(EMBEDDING_SPACES) if space == "both" else [space]
    )

    store = _open_store(config)
    try:
        registry = DocumentRegistry(store, ttl_seconds=config.registry_ttl_seconds)
        targets = registry.active_slugs() if all_documents else list(slugs or [])
        if not targets:
            console.print("[yellow]No documents to ingest.[/yellow]")
            return

        indexer = Indexer(
            store,
            registry,
            build_spaces(config),
            chunk_tokens=config.chunk_tokens,
            overlap_tokens=config.overlap_tokens,
            chars_per_token=config.chars_per_token,
            batch_size=config.embed_batch_size,
            batch_delay=config.batch_delay_for,
            insert_batch_size=config.insert_batch_size,
            base_dir=config.documents_dir,
        )
        summaries, failures = asyncio.run(indexer.ingest_many(targets, spaces_to_run))
    except NephroRAGError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        store.close()

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Document")
    table.add_column("Space")
    table.add_column("Chunks")
    table.add_column("Embedded")
    table.add_column("Stored")
    table.add_column("Seconds")
    for summary in summaries:
        table.add_row(
            summary.document_slug,
            summary.embedding_space,
            str(summary.chunks_created),
            str(summary.embeddings_succeeded),
            str(summary.rows_stored),
            f"{summary.duration_ms / 1000:.1f}",
        )
    console.print(table)

    for failure in failures:
        console.print(
            f"[red]Failed:[/red] {failure.document_slug} ({failure.embedding_space}): {failure.error}"
        )
    if failures:
        raise typer.Exit(code=1)


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    doc: str = typer.Option(..., "--doc", help="Document slug to search"),
    space: Optional[str] = typer.Option(None, "--space", help="Embedding space override"),
    top_k: int = typer.Option(None, help="Number of results to display"),
    min_similarity: Optional[float] = typer.Option(None, help="Similarity threshold override"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Retrieve the most relevant excerpts of a document."""
    _setup_logging(verbose)
    config = _load_config(db)
    resolved_db = config.resolve_db_path(Path.cwd())

    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")

    store = SQLiteVectorStore(resolved_db)
    try:
        retriever = Retriever(
            store,
            DocumentRegistry(store, ttl_seconds=config.registry_ttl_seconds),
            build_spaces(config),
            EmbeddingCache(max_size=config.cache_max_size, ttl_seconds=config.cache_ttl_seconds),
            default_top_k=config.top_k,
        )
        results = asyncio.run(
            retriever.retrieve(
                query, doc, space, top_k=top_k, min_similarity=min_similarity
            )
        )
    except NephroRAGError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        store.close()

    if not results:
        console.print("[yellow]No relevant excerpts found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Similarity")
    table.add_column("Chunk")
    table.add_column("Snippet")

    for result in results:
        snippet = result.content.replace("\n", " ")
        table.add_row(f"{result.similarity:.4f}", str(result.chunk_index), snippet[:180])

    console.print(table)


@app.command()
def docs(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """List registered documents with their stored chunk counts."""
    config = _load_config(db)
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        console.print("[yellow]Database not found, no documents registered.[/yellow]")
        return

    store = SQLiteVectorStore(resolved_db)
    try:
        documents = store.list_documents()
        counts = store.chunk_counts()
    finally:
        store.close()

    if not documents:
        console.print("[yellow]No documents registered.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Slug")
    table.add_column("Title")
    table.add_column("Space")
    table.add_column("Active")
    for name in EMBEDDING_SPACES:
        table.add_column(f"{name} chunks")

    for document in documents:
        per_space = counts.get(document.slug, {})
        table.add_row(
            document.slug,
            document.title,
            document.embedding_space,
            "yes" if document.active else "no",
            *(str(per_space.get(name, 0)) for name in EMBEDDING_SPACES),
        )
    console.print(table)


@app.command()
def deactivate(
    slug: str = typer.Argument(..., help="Document slug"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Hide a document from retrieval without deleting its chunks."""
    config = _load_config(db)
    store = _open_store(config)
    try:
        updated = store.set_active(slug, False)
    finally:
        store.close()

    if not updated:
        console.print(f"[red]Document not found: {slug}[/red]")
        raise typer.Exit(code=1)
    console.print(f"Deactivated {slug}.")

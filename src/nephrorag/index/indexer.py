"""Document ingestion pipeline: load, clean, chunk, embed, store."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Sequence, Tuple

import numpy as np

from nephrorag.embedding.spaces import EmbeddingSpace, EmbeddingSpaceRegistry
from nephrorag.errors import ConfigurationError, EmbeddingProviderError, NephroRAGError
from nephrorag.index.registry import DocumentRegistry
from nephrorag.index.storage import DEFAULT_INSERT_BATCH_SIZE, SQLiteVectorStore
from nephrorag.ingestion.pdf_loader import load_document_text
from nephrorag.models import ChunkRecord
from nephrorag.utils.text import (
    DEFAULT_CHARS_PER_TOKEN,
    TextChunk,
    chunk_spans,
    chunk_text,
    clean_document_text,
    estimate_tokens,
)

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class IngestionSummary:
    document_slug: str
    embedding_space: str
    chunks_created: int = 0
    embeddings_succeeded: int = 0
    rows_stored: int = 0
    duration_ms: float = 0.0
    failed_chunk_indices: List[int] = field(default_factory=list)

    @property
    def embeddings_failed(self) -> int:
        return self.chunks_created - self.embeddings_succeeded


@dataclass(slots=True)
class IngestionFailure:
    document_slug: str
    embedding_space: str
    error: str


class Indexer:
    """Coordinates document ingestion and persistence."""

    def __init__(
        self,
        store: SQLiteVectorStore,
        registry: DocumentRegistry,
        spaces: EmbeddingSpaceRegistry,
        *,
        chunk_tokens: int = 500,
        overlap_tokens: int = 100,
        chars_per_token: float = DEFAULT_CHARS_PER_TOKEN,
        batch_size: int = 50,
        batch_delay: float | Callable[[str], float] = 0.1,
        insert_batch_size: int = DEFAULT_INSERT_BATCH_SIZE,
        base_dir: Path | None = None,
        loader: Callable[[Path], str] = load_document_text,
    ) -> None:
        # Fail at construction on degenerate sizing rather than per document.
        chunk_spans(chunk_tokens, overlap_tokens, chars_per_token)
        if batch_size <= 0:
            raise ConfigurationError(f"batch_size must be positive, got {batch_size}")

        self.store = store
        self.registry = registry
        self.spaces = spaces
        self.chunk_tokens = chunk_tokens
        self.overlap_tokens = overlap_tokens
        self.chars_per_token = chars_per_token
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.insert_batch_size = insert_batch_size
        self.base_dir = base_dir
        self.loader = loader

    def _delay_for(self, embedding_space: str) -> float:
        if callable(self.batch_delay):
            return self.batch_delay(embedding_space)
        return self.batch_delay

    async def _embed_one(self, space: EmbeddingSpace, chunk: TextChunk) -> np.ndarray | None:
        try:
            return await space.provider.embed(chunk.content)
        except NephroRAGError as exc:
            LOGGER.warning("Failed to embed chunk %d: %s", chunk.index, exc)
            return None

    async def embed_chunks(
        self, space: EmbeddingSpace, chunks: Sequence[TextChunk]
    ) -> List[Tuple[TextChunk, np.ndarray | None]]:
        """Embed chunks in fixed-size batches, pausing between batches.

        A failed chunk yields ``None`` instead of aborting the run.
        """
        results: List[Tuple[TextChunk, np.ndarray | None]] = []
        total_batches = (len(chunks) + self.batch_size - 1) // self.batch_size
        for batch_number, start in enumerate(range(0, len(chunks), self.batch_size), 1):
            batch = chunks[start : start + self.batch_size]
            vectors = await asyncio.gather(*(self._embed_one(space, chunk) for chunk in batch))
            results.extend(zip(batch, vectors))
            LOGGER.info(
                "Batch %d/%d: embedded %d chunks (%s)",
                batch_number,
                total_batches,
                sum(vector is not None for vector in vectors),
                space.name,
            )
            if start + self.batch_size < len(chunks):
                await asyncio.sleep(self._delay_for(space.name))
        return results

    async def ingest(self, slug: str, embedding_space: str | None = None) -> IngestionSummary:
        """Chunk, embed and store one registered document, replacing prior chunks."""
        started = time.perf_counter()
        document = self.registry.get_by_slug(slug)
        space = self.spaces.get_space(embedding_space or document.embedding_space)
        summary = IngestionSummary(document_slug=slug, embedding_space=space.name)

        path = self.registry.resolve_path(document, self.base_dir)
        LOGGER.info("Processing %s (%s) from %s", slug, space.name, path)
        text = clean_document_text(self.loader(path))
        LOGGER.info("Loaded %d characters", len(text))

        chunks = chunk_text(
            text, self.chunk_tokens, self.overlap_tokens, chars_per_token=self.chars_per_token
        )
        summary.chunks_created = len(chunks)
        LOGGER.info("Created %d chunks", len(chunks))

        embedded = await self.embed_chunks(space, chunks)
        records: List[ChunkRecord] = []
        vectors: List[np.ndarray] = []
        for chunk, vector in sorted(embedded, key=lambda item: item[0].index):
            if vector is None:
                summary.failed_chunk_indices.append(chunk.index)
                continue
            records.append(
                ChunkRecord(
                    document_slug=slug,
                    index=chunk.index,
                    text=chunk.content,
                    start_offset=chunk.start_offset,
                    end_offset=chunk.end_offset,
                    token_estimate=estimate_tokens(chunk.content, self.chars_per_token),
                    metadata={"title": document.title, "model": space.info.name},
                )
            )
            vectors.append(vector)
        summary.embeddings_succeeded = len(records)
        if chunks and not records:
            raise EmbeddingProviderError(
                f"Every chunk of {slug} failed to embed; stored chunks left unchanged",
                provider_name=space.info.name,
            )
        if summary.failed_chunk_indices:
            LOGGER.warning(
                "%d of %d chunks failed to embed for %s",
                len(summary.failed_chunk_indices),
                len(chunks),
                slug,
            )

        matrix = (
            np.vstack(vectors).astype("float32")
            if vectors
            else np.zeros((0, space.dimensions), dtype="float32")
        )
        summary.rows_stored = self.store.upsert_chunks(
            slug, space.name, records, matrix, batch_size=self.insert_batch_size
        )
        summary.duration_ms = (time.perf_counter() - started) * 1000
        LOGGER.info(
            "Completed %s in %.1fs: %d chunks, %d embeddings, %d rows stored",
            slug,
            summary.duration_ms / 1000,
            summary.chunks_created,
            summary.embeddings_succeeded,
            summary.rows_stored,
        )
        return summary

    async def ingest_many(
        self, slugs: Sequence[str], embedding_spaces: Sequence[str | None] = (None,)
    ) -> Tuple[List[IngestionSummary], List[IngestionFailure]]:
        """Ingest several documents, continuing past documents that fail."""
        summaries: List[IngestionSummary] = []
        failures: List[IngestionFailure] = []
        for slug in slugs:
            for embedding_space in embedding_spaces:
                try:
                    summaries.append(await self.ingest(slug, embedding_space))
                except NephroRAGError as exc:
                    LOGGER.error("Failed to ingest %s: %s", slug, exc)
                    failures.append(
                        IngestionFailure(
                            document_slug=slug,
                            embedding_space=embedding_space or "default",
                            error=str(exc),
                        )
                    )
        return summaries, failures

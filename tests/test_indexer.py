"""Tests for the ingestion pipeline."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from nephrorag.errors import ConfigurationError, EmbeddingProviderError, StorageError
from nephrorag.index.indexer import Indexer, IngestionSummary
from nephrorag.utils.text import chunk_text, clean_document_text

DOC1_TEXT = "".join(f"Sentence number {i} about kidney function.\n" for i in range(40))
DOC2_TEXT = "Page 1\nHemodialysis access planning.\n\n\n\nPage 2\nFistula maturation takes weeks."


def _expected_chunks(text: str):
    return chunk_text(clean_document_text(text), 25, 5)


@pytest.fixture
def texts() -> dict[str, str]:
    return {"doc1.txt": DOC1_TEXT, "doc2.txt": DOC2_TEXT}


@pytest.fixture
def indexer(store, registry, spaces, texts) -> Indexer:
    return Indexer(
        store,
        registry,
        spaces,
        chunk_tokens=25,
        overlap_tokens=5,
        batch_size=4,
        batch_delay=0.0,
        loader=lambda path: texts[Path(path).name],
    )


class TestIngest:
    """Test single-document ingestion."""

    @pytest.mark.asyncio
    async def test_summary_counts(self, store, indexer) -> None:
        """Every chunk is embedded and stored."""
        expected = _expected_chunks(DOC1_TEXT)

        summary = await indexer.ingest("doc1")

        assert isinstance(summary, IngestionSummary)
        assert summary.embedding_space == "remote"
        assert summary.chunks_created == len(expected)
        assert summary.embeddings_succeeded == len(expected)
        assert summary.embeddings_failed == 0
        assert summary.rows_stored == len(expected)
        assert summary.duration_ms >= 0
        assert store.count_chunks("doc1", "remote") == len(expected)

    @pytest.mark.asyncio
    async def test_uses_document_space(self, store, indexer, providers) -> None:
        summary = await indexer.ingest("doc2")

        assert summary.embedding_space == "local"
        assert store.count_chunks("doc2", "local") == summary.rows_stored
        assert providers["remote"].calls == []

    @pytest.mark.asyncio
    async def test_space_override(self, store, indexer) -> None:
        await indexer.ingest("doc1", "local")

        assert store.count_chunks("doc1", "local") > 0
        assert store.count_chunks("doc1", "remote") == 0

    @pytest.mark.asyncio
    async def test_text_is_cleaned(self, indexer, providers) -> None:
        await indexer.ingest("doc2")

        embedded = " ".join(providers["local"].calls)
        assert "Page 1" not in embedded
        assert "Hemodialysis access planning." in embedded

    @pytest.mark.asyncio
    async def test_reingest_is_idempotent(self, store, indexer) -> None:
        """Running ingestion twice does not double the stored chunks."""
        first = await indexer.ingest("doc1")
        second = await indexer.ingest("doc1")

        assert first.rows_stored == second.rows_stored
        assert store.count_chunks("doc1", "remote") == first.rows_stored

    @pytest.mark.asyncio
    async def test_partial_embedding_failure(self, store, indexer, providers) -> None:
        """Chunks that fail to embed are skipped, the rest are stored."""
        providers["remote"].fail_marker = "number 7 "
        failing = [c.index for c in _expected_chunks(DOC1_TEXT) if "number 7 " in c.content]
        assert failing

        summary = await indexer.ingest("doc1")

        assert summary.failed_chunk_indices == failing
        assert summary.embeddings_failed == len(failing)
        assert summary.rows_stored == summary.chunks_created - len(failing)
        assert store.count_chunks("doc1", "remote") == summary.rows_stored

    @pytest.mark.asyncio
    async def test_all_embeddings_fail(self, store, indexer, providers, monkeypatch) -> None:
        """A total embedding failure leaves previously stored chunks alone."""
        before = (await indexer.ingest("doc1")).rows_stored

        async def unavailable(text: str) -> np.ndarray:
            raise EmbeddingProviderError("service unavailable", retryable=True)

        monkeypatch.setattr(providers["remote"], "embed", unavailable)

        with pytest.raises(EmbeddingProviderError):
            await indexer.ingest("doc1")

        assert store.count_chunks("doc1", "remote") == before

    @pytest.mark.asyncio
    async def test_empty_document_clears_chunks(self, store, indexer, texts) -> None:
        await indexer.ingest("doc1")
        texts["doc1.txt"] = "   \n\n  "

        summary = await indexer.ingest("doc1")

        assert summary.chunks_created == 0
        assert summary.rows_stored == 0
        assert store.count_chunks("doc1", "remote") == 0

    @pytest.mark.asyncio
    async def test_chunk_metadata(self, store, indexer) -> None:
        await indexer.ingest("doc1")

        [result] = store.search(np.array([1.0, 0.0, 0.0]), "doc1", "remote", top_k=1)
        assert result.metadata["title"] == "CKD Primer"
        assert result.metadata["model"] == "remote-stub"
        assert result.chunk_index == 0

    @pytest.mark.asyncio
    async def test_storage_failure_propagates(self, indexer, monkeypatch) -> None:
        def broken(*args, **kwargs):
            raise StorageError("disk full")

        monkeypatch.setattr(indexer.store, "upsert_chunks", broken)

        with pytest.raises(StorageError, match="disk full"):
            await indexer.ingest("doc1")


class TestBatching:
    @pytest.mark.asyncio
    async def test_delay_between_batches(self, store, registry, spaces, texts) -> None:
        """The per-space delay runs between batches, not after the last one."""
        delays: list[str] = []

        def delay_for(space: str) -> float:
            delays.append(space)
            return 0.0

        indexer = Indexer(
            store,
            registry,
            spaces,
            chunk_tokens=25,
            overlap_tokens=5,
            batch_size=4,
            batch_delay=delay_for,
            loader=lambda path: texts[Path(path).name],
        )
        summary = await indexer.ingest("doc1")

        batches = (summary.chunks_created + 3) // 4
        assert delays == ["remote"] * (batches - 1)

    def test_degenerate_sizing_rejected(self, store, registry, spaces) -> None:
        with pytest.raises(ConfigurationError):
            Indexer(store, registry, spaces, chunk_tokens=100, overlap_tokens=100)

    def test_batch_size_must_be_positive(self, store, registry, spaces) -> None:
        with pytest.raises(ConfigurationError):
            Indexer(store, registry, spaces, batch_size=0)


class TestIngestMany:
    """Test batch ingestion across documents."""

    @pytest.mark.asyncio
    async def test_continues_past_failures(self, indexer) -> None:
        summaries, failures = await indexer.ingest_many(["doc1", "missing", "doc2"])

        assert [s.document_slug for s in summaries] == ["doc1", "doc2"]
        assert len(failures) == 1
        assert failures[0].document_slug == "missing"
        assert "missing" in failures[0].error

    @pytest.mark.asyncio
    async def test_both_spaces(self, store, indexer) -> None:
        summaries, failures = await indexer.ingest_many(["doc1"], ("remote", "local"))

        assert failures == []
        assert [s.embedding_space for s in summaries] == ["remote", "local"]
        assert store.chunk_counts()["doc1"] == {
            "remote": summaries[0].rows_stored,
            "local": summaries[1].rows_stored,
        }

    @pytest.mark.asyncio
    async def test_unreadable_file_recorded(self, store, registry, spaces, tmp_path) -> None:
        """A file that cannot be decoded fails alone and the next document still runs."""
        (tmp_path / "doc1.txt").write_bytes(b"\xff\xfe kidney \x80")
        (tmp_path / "doc2.txt").write_text(DOC2_TEXT, encoding="utf-8")
        indexer = Indexer(
            store,
            registry,
            spaces,
            chunk_tokens=25,
            overlap_tokens=5,
            batch_delay=0.0,
            base_dir=tmp_path,
        )

        summaries, failures = await indexer.ingest_many(["doc1", "doc2"])

        assert [f.document_slug for f in failures] == ["doc1"]
        assert [s.document_slug for s in summaries] == ["doc2"]
        assert store.count_chunks("doc2", "local") == summaries[0].rows_stored

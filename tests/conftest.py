"""Shared fixtures for retrieval and ingestion tests."""

from __future__ import annotations

from typing import Sequence

import numpy as np
import pytest

from nephrorag.embedding.base import ProviderInfo
from nephrorag.embedding.spaces import EmbeddingSpace, EmbeddingSpaceRegistry
from nephrorag.errors import EmbeddingProviderError
from nephrorag.index.registry import DocumentRegistry
from nephrorag.index.storage import SQLiteVectorStore
from nephrorag.models import Document


class StubProvider:
    """Deterministic provider: every text maps to a fixed unit vector.

    Texts containing ``fail_marker`` raise a provider error.
    """

    def __init__(self, name: str = "stub-model", dimensions: int = 3, fail_marker: str | None = None):
        self.name = name
        self.dimensions = dimensions
        self.fail_marker = fail_marker
        self.calls: list[str] = []

    def describe(self) -> ProviderInfo:
        return ProviderInfo(name=self.name, dimensions=self.dimensions)

    async def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        if self.fail_marker and self.fail_marker in text:
            raise EmbeddingProviderError("stub failure", provider_name=self.name, retryable=True)
        vector = np.zeros(self.dimensions, dtype="float32")
        vector[0] = 1.0
        return vector

    async def embed_batch(self, texts: Sequence[str]) -> np.ndarray:
        return np.vstack([await self.embed(text) for text in texts])


@pytest.fixture
def store(tmp_path):
    store = SQLiteVectorStore(tmp_path / "nephrorag.db")
    yield store
    store.close()


@pytest.fixture
def registry(store: SQLiteVectorStore) -> DocumentRegistry:
    store.add_document(
        Document(slug="doc1", title="CKD Primer", storage_path="doc1.txt", embedding_space="remote")
    )
    store.add_document(
        Document(slug="doc2", title="Dialysis Notes", storage_path="doc2.txt", embedding_space="local")
    )
    return DocumentRegistry(store)


@pytest.fixture
def providers() -> dict[str, StubProvider]:
    return {"remote": StubProvider("remote-stub"), "local": StubProvider("local-stub", dimensions=4)}


@pytest.fixture
def spaces(providers: dict[str, StubProvider]) -> EmbeddingSpaceRegistry:
    return EmbeddingSpaceRegistry(
        {
            "remote": EmbeddingSpace("remote", providers["remote"], 0.3),
            "local": EmbeddingSpace("local", providers["local"], 0.05),
        }
    )

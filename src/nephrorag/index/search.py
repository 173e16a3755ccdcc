"""Semantic retrieval interface."""

from __future__ import annotations

import logging
import time
from typing import List

from nephrorag.embedding.cache import EmbeddingCache
from nephrorag.embedding.spaces import EmbeddingSpaceRegistry
from nephrorag.index.registry import DocumentRegistry
from nephrorag.index.storage import SQLiteVectorStore
from nephrorag.models import ScoredChunk

LOGGER = logging.getLogger(__name__)

DEFAULT_TOP_K = 5


class Retriever:
    """Embeds a question and ranks one document's chunks against it."""

    def __init__(
        self,
        store: SQLiteVectorStore,
        registry: DocumentRegistry,
        spaces: EmbeddingSpaceRegistry,
        cache: EmbeddingCache,
        *,
        default_top_k: int = DEFAULT_TOP_K,
    ) -> None:
        self.store = store
        self.registry = registry
        self.spaces = spaces
        self.cache = cache
        self.default_top_k = default_top_k

    async def retrieve(
        self,
        query: str,
        document_slug: str,
        embedding_space: str | None = None,
        *,
        top_k: int | None = None,
        min_similarity: float | None = None,
    ) -> List[ScoredChunk]:
        """Return the chunks of ``document_slug`` most similar to ``query``.

        The space defaults to the document's own, and the threshold to the
        space's default. An empty list means nothing met the threshold.
        Embedding failures propagate.
        """
        query = query.strip()
        if not query:
            raise ValueError("Empty query")

        document = self.registry.get_by_slug(document_slug)
        space = self.spaces.get_space(embedding_space or document.embedding_space)
        threshold = space.default_min_similarity if min_similarity is None else min_similarity
        limit = self.default_top_k if top_k is None else top_k

        start = time.perf_counter()
        vector = await self.cache.get_or_compute(query, space.name, space.provider.embed)
        results = self.store.search(
            vector,
            document.slug,
            space.name,
            top_k=limit,
            min_similarity=threshold,
        )
        LOGGER.info(
            "Found %d relevant chunks for %s in %.0fms (%s, threshold %.2f)",
            len(results),
            document.slug,
            (time.perf_counter() - start) * 1000,
            space.name,
            threshold,
        )
        return results

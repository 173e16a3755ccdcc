"""In-process document registry backed by the durable document table."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Protocol, Sequence, Tuple

from nephrorag.errors import DocumentNotFoundError, StorageError
from nephrorag.models import Document
from nephrorag.utils.files import resolve_storage_path

LOGGER = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60


class DocumentSource(Protocol):
    def list_active_documents(self) -> Sequence[Document]:
        ...


@dataclass(frozen=True, slots=True)
class RegistryStats:
    documents_count: int
    loaded_at: float | None
    ttl_seconds: float
    is_stale: bool


class DocumentRegistry:
    """Cached snapshot of the active documents.

    The snapshot is replaced as a whole on every successful refresh. When the
    backing store fails and an older snapshot exists, that snapshot is served.
    """

    def __init__(
        self,
        source: DocumentSource,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.source = source
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._documents: Tuple[Document, ...] = ()
        self._loaded_at: float | None = None

    def _is_fresh(self, now: float) -> bool:
        return self._loaded_at is not None and now - self._loaded_at < self.ttl_seconds

    def refresh(self, force: bool = False) -> List[Document]:
        now = self._clock()
        if not force and self._is_fresh(now):
            LOGGER.debug("Using cached document registry")
            return list(self._documents)

        try:
            LOGGER.info("Loading documents from database...")
            documents = tuple(self.source.list_active_documents())
        except Exception as exc:
            if self._loaded_at is not None:
                LOGGER.warning("Using stale document registry after load failure: %s", exc)
                return list(self._documents)
            if isinstance(exc, StorageError):
                raise
            raise StorageError(f"Failed to load document registry: {exc}") from exc

        self._documents = documents
        self._loaded_at = now
        LOGGER.info("Loaded %d active documents from registry", len(documents))
        for doc in documents:
            LOGGER.debug("  - %s: %s (%s)", doc.slug, doc.title, doc.embedding_space)
        return list(documents)

    def get_active(self) -> List[Document]:
        return self.refresh(force=False)

    def find_by_slug(self, slug: str) -> Document | None:
        for doc in self.get_active():
            if doc.slug == slug:
                return doc
        return None

    def get_by_slug(self, slug: str) -> Document:
        doc = self.find_by_slug(slug)
        if doc is None:
            LOGGER.warning("Document not found: %s", slug)
            raise DocumentNotFoundError(slug)
        return doc

    def active_slugs(self) -> List[str]:
        return [doc.slug for doc in self.get_active()]

    def is_valid(self, slug: str) -> bool:
        return slug in self.active_slugs()

    def by_embedding_space(self, embedding_space: str) -> List[Document]:
        return [doc for doc in self.get_active() if doc.embedding_space == embedding_space]

    def resolve_path(self, document: Document, base_dir: Path | None = None) -> Path:
        return resolve_storage_path(document.storage_path, base_dir)

    def clear(self) -> None:
        self._documents = ()
        self._loaded_at = None
        LOGGER.info("Document registry cache cleared")

    def stats(self) -> RegistryStats:
        return RegistryStats(
            documents_count=len(self._documents),
            loaded_at=self._loaded_at,
            ttl_seconds=self.ttl_seconds,
            is_stale=not self._is_fresh(self._clock()),
        )

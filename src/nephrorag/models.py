"""Core NephroRAG data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping

EMBEDDING_SPACES = ("remote", "local")


@dataclass(frozen=True, slots=True)
class Document:
    """A registered reference document.

    ``metadata`` is copied into a read-only mapping, so a document handed
    out from a shared snapshot cannot be changed by its readers.
    """

    slug: str
    title: str
    storage_path: str
    embedding_space: str = "remote"
    active: bool = True
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))


@dataclass(slots=True)
class ChunkRecord:
    """Chunk of document text paired with metadata, ready to be stored."""

    document_slug: str
    index: int
    text: str
    start_offset: int
    end_offset: int
    token_estimate: int
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ScoredChunk:
    """A stored chunk returned by similarity search."""

    document_slug: str
    chunk_index: int
    content: str
    similarity: float
    metadata: Dict[str, Any] = field(default_factory=dict)

"""Embedding provider capability shared by the remote and local spaces."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence, runtime_checkable

import numpy as np


@dataclass(frozen=True, slots=True)
class ProviderInfo:
    """Identity of an embedding provider, recorded in chunk metadata and logs."""

    name: str
    dimensions: int


@runtime_checkable
class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> np.ndarray:
        """Return a float32 vector of ``describe().dimensions`` values."""
        ...

    async def embed_batch(self, texts: Sequence[str]) -> np.ndarray:
        """Return a ``(len(texts), dimensions)`` float32 matrix."""
        ...

    def describe(self) -> ProviderInfo:
        ...

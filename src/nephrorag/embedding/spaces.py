"""Named embedding spaces: a provider plus its retrieval defaults."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, Mapping

from nephrorag.config import AppConfig
from nephrorag.embedding.base import EmbeddingProvider, ProviderInfo
from nephrorag.embedding.encoder import EmbeddingConfig, LocalEmbeddingProvider
from nephrorag.embedding.remote import RemoteEmbeddingProvider
from nephrorag.errors import ConfigurationError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EmbeddingSpace:
    """Retrieval strategy for one embedding space.

    Vectors of different spaces are never compared, and each space keeps its
    own similarity threshold because score distributions differ per model.
    """

    name: str
    provider: EmbeddingProvider
    default_min_similarity: float

    @property
    def info(self) -> ProviderInfo:
        return self.provider.describe()

    @property
    def dimensions(self) -> int:
        return self.info.dimensions


class EmbeddingSpaceRegistry(Mapping[str, EmbeddingSpace]):
    def __init__(self, spaces: Mapping[str, EmbeddingSpace] | None = None) -> None:
        self._spaces: Dict[str, EmbeddingSpace] = dict(spaces or {})

    def add(self, space: EmbeddingSpace) -> None:
        self._spaces[space.name] = space

    def get_space(self, name: str) -> EmbeddingSpace:
        try:
            return self._spaces[name]
        except KeyError:
            available = ", ".join(sorted(self._spaces)) or "none"
            raise ConfigurationError(
                f"Embedding space '{name}' is not configured (available: {available})"
            ) from None

    def __getitem__(self, name: str) -> EmbeddingSpace:
        return self._spaces[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._spaces)

    def __len__(self) -> int:
        return len(self._spaces)


def build_spaces(config: AppConfig) -> EmbeddingSpaceRegistry:
    """Create the local space, and the remote one when an API key is set."""
    registry = EmbeddingSpaceRegistry()
    registry.add(
        EmbeddingSpace(
            name="local",
            provider=LocalEmbeddingProvider(
                EmbeddingConfig(
                    model_name=config.local_model_name,
                    load_timeout=config.model_load_timeout,
                    timeout=config.provider_timeout,
                )
            ),
            default_min_similarity=config.local_min_similarity,
        )
    )
    if config.openai_api_key:
        registry.add(
            EmbeddingSpace(
                name="remote",
                provider=RemoteEmbeddingProvider(
                    config.openai_api_key,
                    model=config.remote_model_name,
                    timeout=config.provider_timeout,
                ),
                default_min_similarity=config.remote_min_similarity,
            )
        )
    else:
        LOGGER.warning("OPENAI_API_KEY not set; remote embedding space disabled")
    return registry

"""Remote embedding provider backed by the OpenAI embeddings API."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

import numpy as np
import openai

from nephrorag.embedding.base import ProviderInfo
from nephrorag.errors import (
    AuthenticationError,
    ConfigurationError,
    EmbeddingProviderError,
    EmbeddingTimeoutError,
    RateLimitError,
)

DEFAULT_REMOTE_MODEL = "text-embedding-3-small"

KNOWN_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}

LOGGER = logging.getLogger(__name__)


class RemoteEmbeddingProvider:
    """Embeds text with one API call per request.

    Errors are translated into the provider error taxonomy with a
    ``retryable`` flag; no retries happen here.
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        model: str = DEFAULT_REMOTE_MODEL,
        dimensions: int | None = None,
        timeout: float = 30.0,
        base_url: str | None = None,
        client: openai.AsyncOpenAI | None = None,
    ) -> None:
        if client is None and not api_key:
            raise ConfigurationError("OPENAI_API_KEY is required for the remote embedding space")

        resolved = dimensions or KNOWN_DIMENSIONS.get(model)
        if resolved is None:
            raise ConfigurationError(
                f"Unknown output dimension for remote model '{model}'; pass dimensions"
            )

        self.model = model
        self.dimension = resolved
        self.timeout = timeout
        self._client = client or openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
        )

    def describe(self) -> ProviderInfo:
        return ProviderInfo(name=self.model, dimensions=self.dimension)

    async def embed_batch(self, texts: Sequence[str]) -> np.ndarray:
        inputs = list(texts)
        if not inputs:
            return np.zeros((0, self.dimension), dtype="float32")

        try:
            response = await asyncio.wait_for(
                self._client.embeddings.create(
                    model=self.model,
                    input=inputs,
                    encoding_format="float",
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise EmbeddingTimeoutError(
                f"Embedding request exceeded {self.timeout}s", provider_name=self.model
            ) from exc
        except openai.APITimeoutError as exc:
            raise EmbeddingTimeoutError(str(exc), provider_name=self.model) from exc
        except openai.RateLimitError as exc:
            raise RateLimitError(str(exc), provider_name=self.model) from exc
        except (openai.AuthenticationError, openai.PermissionDeniedError) as exc:
            raise AuthenticationError(str(exc), provider_name=self.model) from exc
        except openai.APIConnectionError as exc:
            raise EmbeddingProviderError(
                f"Connection error: {exc}", provider_name=self.model, retryable=True
            ) from exc
        except openai.APIStatusError as exc:
            raise EmbeddingProviderError(
                f"API error {exc.status_code}: {exc}",
                provider_name=self.model,
                retryable=exc.status_code >= 500,
            ) from exc
        except openai.APIError as exc:
            raise EmbeddingProviderError(str(exc), provider_name=self.model) from exc

        vectors = np.asarray([item.embedding for item in response.data], dtype="float32")
        if vectors.shape != (len(inputs), self.dimension):
            raise EmbeddingProviderError(
                f"Unexpected embedding shape {vectors.shape}, expected "
                f"({len(inputs)}, {self.dimension})",
                provider_name=self.model,
            )
        return vectors

    async def embed(self, text: str) -> np.ndarray:
        return (await self.embed_batch([text]))[0]

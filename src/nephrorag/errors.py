"""Exception hierarchy for the retrieval core."""

from __future__ import annotations


class NephroRAGError(Exception):
    """Base class for all errors raised by nephrorag."""


class ConfigurationError(NephroRAGError):
    """Invalid settings: chunk sizing, missing credentials, unknown spaces."""


class ProviderError(NephroRAGError):
    """Failure reported by an external provider.

    ``retryable`` tells callers whether repeating the call may succeed
    (timeouts, rate limits) or not (authentication, malformed input). The
    core never retries on its own.
    """

    def __init__(
        self,
        message: str,
        *,
        provider_name: str | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.provider_name = provider_name
        self.retryable = retryable

    def __str__(self) -> str:
        if self.provider_name:
            return f"[{self.provider_name}] {self.message}"
        return self.message


class EmbeddingProviderError(ProviderError):
    """An embedding provider failed to produce a vector."""


class EmbeddingTimeoutError(EmbeddingProviderError):
    def __init__(self, message: str, *, provider_name: str | None = None) -> None:
        super().__init__(message, provider_name=provider_name, retryable=True)


class RateLimitError(EmbeddingProviderError):
    def __init__(self, message: str, *, provider_name: str | None = None) -> None:
        super().__init__(message, provider_name=provider_name, retryable=True)


class AuthenticationError(EmbeddingProviderError):
    def __init__(self, message: str, *, provider_name: str | None = None) -> None:
        super().__init__(message, provider_name=provider_name, retryable=False)


class NotFoundError(NephroRAGError):
    """Requested entity does not exist."""


class DocumentNotFoundError(NotFoundError):
    def __init__(self, slug: str) -> None:
        super().__init__(f"Document not found: {slug}")
        self.slug = slug


class StorageError(NephroRAGError):
    """Durable store read or write failure."""

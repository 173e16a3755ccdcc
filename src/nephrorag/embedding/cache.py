"""Query embedding cache backed by ``cachetools.TTLCache``.

Entries expire a fixed time after creation; over capacity the least
recently used entry is dropped.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List

import numpy as np
from cachetools import Cache, TTLCache

from nephrorag.errors import ConfigurationError

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 1000
DEFAULT_TTL_SECONDS = 24 * 60 * 60
DEFAULT_CLEANUP_INTERVAL_SECONDS = 60 * 60

ProviderFn = Callable[[str], Awaitable[np.ndarray]]


def cache_key(text: str, embedding_space: str) -> str:
    """Key for a query: whitespace and case variants map to the same entry."""
    digest = hashlib.sha256(text.strip().lower().encode("utf-8")).hexdigest()
    return f"{embedding_space}:{digest}"


@dataclass(slots=True)
class CacheEntry:
    embedding: np.ndarray
    embedding_space: str
    created_at: float
    last_accessed: float
    access_count: int = 0


@dataclass(frozen=True, slots=True)
class CacheStats:
    hits: int
    misses: int
    evictions: int
    size: int
    max_size: int
    ttl_seconds: float

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


@dataclass(frozen=True, slots=True)
class CacheEntryInfo:
    key: str
    embedding_space: str
    age_seconds: float
    idle_seconds: float
    access_count: int


class _CountingTTLCache(TTLCache):
    """TTLCache that counts entries removed by expiry or capacity eviction."""

    def __init__(self, maxsize: int, ttl: float, timer: Callable[[], float]) -> None:
        super().__init__(maxsize=maxsize, ttl=ttl, timer=timer)
        self.evictions = 0

    def expire(self, time=None):
        before = self.currsize
        expired = super().expire(time)
        self.evictions += before - self.currsize
        return expired

    def popitem(self):
        key, value = super().popitem()
        self.evictions += 1
        LOGGER.debug("Embedding cache: evicted least recently used entry %s", key)
        return key, value

    def peek(self, key: str) -> CacheEntry:
        """Read an entry without refreshing its recency."""
        return Cache.__getitem__(self, key)


class EmbeddingCache:
    """Memoizes query vectors per embedding space.

    Construct once per process and share it; ``clock`` is injectable so
    expiry can be tested without sleeping.
    """

    def __init__(
        self,
        *,
        max_size: int = DEFAULT_MAX_SIZE,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size <= 0:
            raise ConfigurationError(f"Cache max_size must be positive, got {max_size}")
        if ttl_seconds < 0:
            raise ConfigurationError(f"Cache TTL must not be negative, got {ttl_seconds}")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries = self._new_store()
        self._hits = 0
        self._misses = 0
        self._cleanup_task: asyncio.Task[None] | None = None

    def _new_store(self) -> _CountingTTLCache:
        return _CountingTTLCache(self.max_size, self.ttl_seconds, self._clock)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, text: str, embedding_space: str) -> np.ndarray | None:
        """Return a copy of the cached vector, or None on a miss."""
        # Expired entries are removed before lookup so they count as evictions.
        self._entries.expire()
        key = cache_key(text, embedding_space)
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        entry.access_count += 1
        entry.last_accessed = self._clock()
        self._hits += 1
        LOGGER.debug("Embedding cache hit: %s (%d uses)", key, entry.access_count)
        return entry.embedding.copy()

    def put(self, text: str, embedding_space: str, embedding: np.ndarray) -> None:
        now = self._clock()
        self._entries[cache_key(text, embedding_space)] = CacheEntry(
            embedding=np.array(embedding, dtype="float32", copy=True),
            embedding_space=embedding_space,
            created_at=now,
            last_accessed=now,
        )

    async def get_or_compute(
        self, text: str, embedding_space: str, provider_fn: ProviderFn
    ) -> np.ndarray:
        """Return the cached vector for ``text`` or compute and cache it.

        Errors raised by ``provider_fn`` propagate and nothing is stored.
        """
        cached = self.get(text, embedding_space)
        if cached is not None:
            return cached

        start = time.perf_counter()
        embedding = await provider_fn(text)
        LOGGER.debug(
            "Generated %s embedding in %.0fms",
            embedding_space,
            (time.perf_counter() - start) * 1000,
        )
        self.put(text, embedding_space, embedding)
        return np.array(embedding, dtype="float32", copy=True)

    def evict(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        before = self._entries.evictions
        self._entries.expire()
        evicted = self._entries.evictions - before
        if evicted:
            LOGGER.info("Embedding cache: evicted %d expired entries", evicted)
        return evicted

    async def _cleanup_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            self.evict()

    def schedule_cleanup(
        self, interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS
    ) -> asyncio.Task[None]:
        """Sweep expired entries periodically on the running event loop.

        Lookups and inserts already sweep; this keeps memory bounded for
        long-lived hosts that go quiet. Calling it again returns the running task.
        """
        if interval_seconds <= 0:
            raise ConfigurationError(
                f"Cleanup interval must be positive, got {interval_seconds}"
            )
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.get_running_loop().create_task(
                self._cleanup_loop(interval_seconds)
            )
            LOGGER.info(
                "Embedding cache cleanup scheduled every %.0f seconds", interval_seconds
            )
        return self._cleanup_task

    def cancel_cleanup(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None

    def stats(self) -> CacheStats:
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            evictions=self._entries.evictions,
            size=len(self._entries),
            max_size=self.max_size,
            ttl_seconds=self.ttl_seconds,
        )

    def entries(self) -> List[CacheEntryInfo]:
        now = self._clock()
        infos = []
        for key in list(self._entries):
            entry = self._entries.peek(key)
            infos.append(
                CacheEntryInfo(
                    key=key,
                    embedding_space=entry.embedding_space,
                    age_seconds=now - entry.created_at,
                    idle_seconds=now - entry.last_accessed,
                    access_count=entry.access_count,
                )
            )
        return infos

    def clear(self) -> None:
        removed = len(self._entries)
        self._entries = self._new_store()
        self._hits = 0
        self._misses = 0
        LOGGER.info("Embedding cache cleared (%d entries removed)", removed)

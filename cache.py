"""
cache.py: in-process result cache and single-flight request sharing.

Both structures live on the event loop and are written only by the
analysis pipeline; route handlers only read. With cooperative scheduling
there is no await between a check and the matching write, so no lock is
needed. A multi-process deployment would need an external key-value store
instead.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger("seo-analyzer")

T = TypeVar("T")

CACHE_TTL_SECONDS = 30 * 60
CACHE_CLEANUP_THRESHOLD = 100


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    result: T
    created_at: float
    expires_at: float


class ResultCache(Generic[T]):
    """TTL cache keyed by normalized domain. Staleness is the only eviction signal."""

    def __init__(
        self,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        cleanup_threshold: int = CACHE_CLEANUP_THRESHOLD,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.cleanup_threshold = cleanup_threshold
        self._clock = clock
        self._entries: dict[str, CacheEntry[T]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, domain: str) -> Optional[T]:
        entry = self._entries.get(domain)
        if entry is None:
            logger.info(f"Cache miss for {domain}")
            return None
        if self._clock() > entry.expires_at:
            del self._entries[domain]
            logger.info(f"Cache entry for {domain} expired")
            return None
        logger.info(f"Cache hit for {domain}")
        return entry.result

    def set(self, domain: str, result: T) -> None:
        now = self._clock()
        self._entries[domain] = CacheEntry(result=result, created_at=now, expires_at=now + self.ttl_seconds)
        logger.info(f"Cached analysis for {domain} (expires in {self.ttl_seconds / 60:.0f} min)")
        if len(self._entries) > self.cleanup_threshold:
            self.cleanup()

    def cleanup(self) -> int:
        """Drop expired entries only. Returns how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
        for key in expired:
            del self._entries[key]
        logger.info(f"Cache cleanup removed {len(expired)} entries, {len(self._entries)} remain")
        return len(expired)


class SingleFlight(Generic[T]):
    """
    Share one in-flight computation between concurrent callers with the same key.

    The first caller for a key starts the work; later callers await the same
    future. The key is released as soon as the work finishes, successfully or
    not, so failures are never cached.
    """

    def __init__(self):
        self._inflight: dict[str, asyncio.Future] = {}

    async def do(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        existing = self._inflight.get(key)
        if existing is not None:
            logger.info(f"Joining in-flight analysis for {key}")
            return await asyncio.shield(existing)

        task = asyncio.ensure_future(fn())
        self._inflight[key] = task
        try:
            return await asyncio.shield(task)
        finally:
            if task.done():
                self._inflight.pop(key, None)
            else:
                # The leader was cancelled but others may still be waiting.
                task.add_done_callback(lambda _t: self._inflight.pop(key, None))

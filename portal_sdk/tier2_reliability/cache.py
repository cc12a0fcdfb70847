"""
portal_sdk.tier2_reliability.cache
───────────────────────────────────────
In-process TTL cache with single-flight request coalescing.

A miss starts exactly one fetch task per key; callers arriving while it is
running await the same task. Failures are never cached. Invalidation bumps a
per-key generation so a fetch that was already in flight when its key was
invalidated still answers its own callers but never lands in the cache.
"""
from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar, Union

from portal_sdk.tier0_core.errors import ConfigurationError
from portal_sdk.tier0_core.logging import get_logger
from portal_sdk.tier0_core.metrics import cache_lookups
from portal_sdk.tier1_runtime.clock import Clock, get_clock

V = TypeVar("V")

FetchFn = Callable[[], Union[Awaitable[V], V]]

logger = get_logger("portal_sdk.cache")


def _retrieve_exception(task: asyncio.Task[Any]) -> None:
    # Every caller may have been cancelled before the fetch failed.
    if not task.cancelled():
        task.exception()


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    key: str
    value: V
    stored_at: float

    def is_fresh(self, now: float, ttl: float) -> bool:
        return now - self.stored_at < ttl


class TTLCache:
    """Keyed cache with expiry and in-flight deduplication."""

    def __init__(self, name: str = "data", *, clock: Clock | None = None) -> None:
        self.name = name
        self._clock = clock or get_clock()
        self._entries: dict[str, CacheEntry[Any]] = {}
        self._inflight: dict[str, asyncio.Task[Any]] = {}
        self._generations: dict[str, int] = {}
        self._disposed = False

    # ── reads ────────────────────────────────────────────────────────────────

    def peek(self, key: str, ttl: float) -> Any | None:
        """Return the cached value if still fresh, without fetching."""
        entry = self._entries.get(key)
        if entry is None or not entry.is_fresh(self._clock.monotonic(), ttl):
            return None
        return entry.value

    def pending(self, key: str) -> bool:
        return key in self._inflight

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_fetch(self, key: str, ttl: float, fetch_fn: FetchFn[V]) -> V:
        """
        Return the fresh cached value for *key*, or the result of the single
        in-flight fetch for it, starting one if none is running.
        """
        if self._disposed:
            raise ConfigurationError("cache_disposed", detail=f"cache {self.name!r} is disposed")

        entry = self._entries.get(key)
        if entry is not None:
            if entry.is_fresh(self._clock.monotonic(), ttl):
                cache_lookups(cache=self.name, result="hit").inc()
                return entry.value
            del self._entries[key]

        task = self._inflight.get(key)
        if task is not None:
            cache_lookups(cache=self.name, result="coalesced").inc()
            logger.debug("cache.coalesced", cache=self.name, key=key)
        else:
            cache_lookups(cache=self.name, result="miss").inc()
            logger.debug("cache.miss", cache=self.name, key=key)
            generation = self._generations.get(key, 0)
            task = asyncio.ensure_future(self._fetch(key, generation, fetch_fn))
            task.add_done_callback(_retrieve_exception)
            self._inflight[key] = task

        # A cancelled caller must not cancel the fetch other callers share.
        return await asyncio.shield(task)

    async def _fetch(self, key: str, generation: int, fetch_fn: FetchFn[V]) -> V:
        me = asyncio.current_task()
        try:
            result = fetch_fn()
            value = await result if inspect.isawaitable(result) else result
        finally:
            # Drop our own slot before waiters resume; an invalidation may
            # already have replaced it with a newer fetch.
            if self._inflight.get(key) is me:
                del self._inflight[key]
        if self._generations.get(key, 0) == generation and not self._disposed:
            self._entries[key] = CacheEntry(key, value, self._clock.monotonic())
        else:
            logger.debug("cache.discarded_stale", cache=self.name, key=key)
        return value

    # ── invalidation ─────────────────────────────────────────────────────────

    def invalidate(self, key: str) -> None:
        """Evict *key*; the next ``get_or_fetch`` is guaranteed to fetch."""
        self._entries.pop(key, None)
        self._inflight.pop(key, None)
        self._generations[key] = self._generations.get(key, 0) + 1
        logger.debug("cache.invalidated", cache=self.name, key=key)

    def invalidate_prefix(self, prefix: str) -> int:
        """Evict every key under *prefix*. Returns the number of keys touched."""
        keys = {k for k in (*self._entries, *self._inflight) if k.startswith(prefix)}
        for key in keys:
            self.invalidate(key)
        return len(keys)

    def invalidate_all(self) -> None:
        """Clear the whole keyspace."""
        for key in {*self._entries, *self._inflight}:
            self._generations[key] = self._generations.get(key, 0) + 1
        self._entries.clear()
        self._inflight.clear()
        logger.info("cache.cleared", cache=self.name)

    # ── lifecycle ────────────────────────────────────────────────────────────

    def dispose(self) -> None:
        """Clear all state and cancel fetches still running. Further use fails."""
        tasks = list(self._inflight.values())
        self.invalidate_all()
        for task in tasks:
            task.cancel()
        self._disposed = True

    @property
    def disposed(self) -> bool:
        return self._disposed


__all__ = ["CacheEntry", "TTLCache"]

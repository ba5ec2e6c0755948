"""
Two-tier page cache.

Tier 1 is an in-process dict with a short wall-clock TTL; tier 2 is Redis,
the cross-process source of truth, with a long TTL enforced by Redis itself.
Durable-store failures are counted and logged but never raised: the local
tier keeps serving, so every write is at least locally durable.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional

import structlog

from docfetch.cache.compression import decompress, maybe_compress
from docfetch.cache.keys import cache_key, lock_key
from docfetch.cache.models import CacheEntry, CacheStats, StoredValue
from docfetch.errors import CacheError
from docfetch.observability.metrics import increment

if TYPE_CHECKING:
    import redis.asyncio as redis

    from docfetch.config.config import CacheConfig

logger = structlog.get_logger(__name__)


class TwoTierCache:
    """
    Page content cache keyed by normalized URL.

    The local tier is mutated only between awaits, so the single event loop
    serializes every update and no lock is needed.
    """

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        ttl: int = 30 * 24 * 60 * 60,
        compression_threshold: int = 1024,
        local_ttl: float = 5 * 60,
        lock_ttl: int = 120,
        lock_wait_timeout: float = 60.0,
        lock_poll_interval: float = 0.5,
    ) -> None:
        self.redis = redis_client
        self.ttl = ttl
        self.compression_threshold = compression_threshold
        self.local_ttl = local_ttl
        self.lock_ttl = lock_ttl
        self.lock_wait_timeout = lock_wait_timeout
        self.lock_poll_interval = lock_poll_interval

        self._local: Dict[str, CacheEntry] = {}
        self._local_locks: Dict[str, tuple[str, float]] = {}
        self._last_sweep = time.time()
        self._stats = CacheStats()

        if self.redis is None:
            logger.warning("Durable store not available, cache is in-memory only")

    @classmethod
    def from_config(cls, config: CacheConfig, redis_client: Optional[redis.Redis] = None) -> TwoTierCache:
        return cls(
            redis_client=redis_client,
            ttl=config.ttl,
            compression_threshold=config.compression_threshold,
            local_ttl=config.local_ttl,
            lock_ttl=config.lock_ttl,
            lock_wait_timeout=config.lock_wait_timeout,
            lock_poll_interval=config.lock_poll_interval,
        )

    # --- accounting ---

    def _hit(self) -> None:
        self._stats.hits += 1
        increment("cache_lookups_total", labels={"outcome": "hit"})

    def _miss(self) -> None:
        self._stats.misses += 1
        increment("cache_lookups_total", labels={"outcome": "miss"})

    def _error(self, error: CacheError) -> None:
        self._stats.errors += 1
        increment("cache_errors_total", labels={"operation": error.operation})
        logger.warning("Durable cache operation failed", **error.context, error=error.message)

    # --- local tier ---

    def _local_get(self, key: str) -> Optional[str]:
        entry = self._local.get(key)
        if entry is None:
            return None
        if entry.is_expired(time.time(), self.local_ttl):
            del self._local[key]
            return None
        return entry.value

    def _local_set(self, key: str, value: str, compressed: bool) -> None:
        now = time.time()
        if now - self._last_sweep >= self.local_ttl:
            self._sweep_local(now)
        self._local[key] = CacheEntry(value=value, timestamp=now, compressed=compressed)

    def _sweep_local(self, now: float) -> None:
        """Drop expired entries; runs at most once per local TTL."""
        expired = [key for key, entry in self._local.items() if entry.is_expired(now, self.local_ttl)]
        for key in expired:
            del self._local[key]
        self._last_sweep = now

    # --- public API ---

    async def get(self, url: str) -> Optional[str]:
        """Return cached content for ``url`` or None."""
        key = cache_key(url)

        value = self._local_get(key)
        if value is not None:
            self._hit()
            return value

        if self.redis is not None:
            try:
                stored = StoredValue.from_json(await self.redis.get(key))
                if stored is not None:
                    value = decompress(stored.data) if stored.compressed else stored.data
                    self._local_set(key, value, stored.compressed)
                    self._hit()
                    return value
            except Exception as e:
                self._error(CacheError(str(e), "get", {"url": url}))

        self._miss()
        return None

    async def set(self, url: str, value: str, ttl: Optional[int] = None) -> None:
        key = cache_key(url)
        data, compressed = maybe_compress(value, self.compression_threshold)

        self._local_set(key, value, compressed)

        if self.redis is not None:
            try:
                await self.redis.set(key, StoredValue(data, compressed).to_json(), ex=ttl or self.ttl)
            except Exception as e:
                self._error(CacheError(str(e), "set", {"url": url}))

    async def mget(self, urls: Iterable[str]) -> Dict[str, Optional[str]]:
        """Batch lookup; the returned dict preserves the order of ``urls``."""
        urls = list(urls)
        results: Dict[str, Optional[str]] = {url: None for url in urls}
        missing: List[str] = []

        for url in urls:
            value = self._local_get(cache_key(url))
            if value is not None:
                results[url] = value
                self._hit()
            else:
                missing.append(url)

        if not missing:
            return results

        if self.redis is None:
            for _ in missing:
                self._miss()
            return results

        keys = [cache_key(url) for url in missing]
        try:
            raw_values = await self.redis.mget(keys)
        except Exception as e:
            self._error(CacheError(str(e), "mget", {"count": len(keys)}))
            for _ in missing:
                self._miss()
            return results

        for url, key, raw in zip(missing, keys, raw_values):
            try:
                stored = StoredValue.from_json(raw)
            except Exception as e:
                self._error(CacheError(str(e), "mget", {"url": url}))
                stored = None

            if stored is None:
                self._miss()
                continue

            try:
                value = decompress(stored.data) if stored.compressed else stored.data
            except Exception as e:
                self._error(CacheError(str(e), "mget", {"url": url}))
                self._miss()
                continue

            self._local_set(key, value, stored.compressed)
            results[url] = value
            self._hit()

        return results

    async def mset(self, entries: Mapping[str, str], ttl: Optional[int] = None) -> None:
        """Batch write; local writes are applied before the durable pipeline runs."""
        payloads: List[tuple[str, str]] = []
        for url, value in entries.items():
            key = cache_key(url)
            data, compressed = maybe_compress(value, self.compression_threshold)
            self._local_set(key, value, compressed)
            payloads.append((key, StoredValue(data, compressed).to_json()))

        if self.redis is None or not payloads:
            return

        try:
            async with self.redis.pipeline(transaction=False) as pipe:
                for key, payload in payloads:
                    pipe.set(key, payload, ex=ttl or self.ttl)
                await pipe.execute()
        except Exception as e:
            self._error(CacheError(str(e), "mset", {"count": len(payloads)}))

    async def delete(self, url: str) -> None:
        key = cache_key(url)
        self._local.pop(key, None)

        if self.redis is not None:
            try:
                await self.redis.delete(key)
            except Exception as e:
                self._error(CacheError(str(e), "delete", {"url": url}))

    # --- scrape lock ---

    async def acquire_lock(self, url: str, ttl: Optional[int] = None) -> Optional[str]:
        """
        Try to take the scrape lock for ``url``.

        Returns the lock id, or None when another worker holds it. A failing
        durable store never blocks scraping: the lock is treated as acquired.
        """
        key = lock_key(url)
        lock_id = uuid.uuid4().hex
        ttl = ttl or self.lock_ttl

        if self.redis is None:
            held = self._local_locks.get(key)
            if held is not None and held[1] > time.time():
                return None
            self._local_locks[key] = (lock_id, time.time() + ttl)
            return lock_id

        try:
            acquired = await self.redis.set(key, lock_id, nx=True, ex=ttl)
        except Exception as e:
            self._error(CacheError(str(e), "lock", {"url": url}))
            return lock_id

        return lock_id if acquired else None

    async def release_lock(self, url: str, lock_id: str) -> bool:
        """Release the lock if it is still held by ``lock_id``."""
        key = lock_key(url)

        if self.redis is None:
            held = self._local_locks.get(key)
            if held is not None and held[0] == lock_id:
                del self._local_locks[key]
                return True
            return False

        try:
            if await self.redis.get(key) == lock_id:
                await self.redis.delete(key)
                return True
        except Exception as e:
            self._error(CacheError(str(e), "lock", {"url": url}))
        return False

    async def is_locked(self, url: str) -> bool:
        key = lock_key(url)
        if self.redis is None:
            held = self._local_locks.get(key)
            return held is not None and held[1] > time.time()
        try:
            return bool(await self.redis.exists(key))
        except Exception as e:
            self._error(CacheError(str(e), "lock", {"url": url}))
            return False

    async def wait_for_lock(
        self,
        url: str,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> bool:
        """Wait until nobody holds the lock for ``url``; False on timeout."""
        timeout = self.lock_wait_timeout if timeout is None else timeout
        poll_interval = poll_interval or self.lock_poll_interval
        deadline = time.monotonic() + timeout

        while await self.is_locked(url):
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(poll_interval)
        return True

    # --- housekeeping ---

    def clear_local_cache(self) -> None:
        self._local.clear()

    def get_stats(self) -> Dict[str, Any]:
        stats = self._stats.as_dict()
        stats["local_cache_size"] = len(self._local)
        return stats

    def reset_stats(self) -> None:
        self._stats = CacheStats()

    def is_redis_available(self) -> bool:
        return self.redis is not None

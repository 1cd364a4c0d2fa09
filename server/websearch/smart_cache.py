"""
Smart Cache - size-bounded TTL cache with score-based eviction

In-memory cache used for provider outcomes, embeddings and whole
intelligent-search decisions.

- TTL measured from creation time (reads never extend an entry's life)
- Byte budget measured from the JSON serialization of each payload
- Eviction by lowest combined score of age, access frequency, recency and
  priority (frequently read, high-priority entries survive longest)
- Optional background cleanup loop

Usage:
    from websearch.smart_cache import SmartCache, CacheConfig

    cache = SmartCache(CacheConfig(max_size_mb=10))
    await cache.set("key", {"a": 1}, ttl=timedelta(minutes=5))
    value = await cache.get("key")
"""

import asyncio
import hashlib
import json
import logging
import math
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger("websearch.smart_cache")

# Search results are expensive to recompute, keep them over ordinary entries
SEARCH_RESULT_PRIORITY = 7.0
DEFAULT_PRIORITY = 5.0
MAX_PRIORITY = 10.0


@dataclass
class CacheConfig:
    """Cache sizing and timing."""
    max_size_mb: float = 50.0
    default_ttl_minutes: float = 60.0
    cleanup_interval_minutes: float = 15.0

    @property
    def max_size_bytes(self) -> int:
        return int(self.max_size_mb * 1024 * 1024)

    @classmethod
    def from_settings(cls, settings) -> "CacheConfig":
        return cls(
            max_size_mb=settings.cache_max_size_mb,
            default_ttl_minutes=settings.cache_default_ttl_minutes,
            cleanup_interval_minutes=settings.cache_cleanup_interval_minutes,
        )


@dataclass
class CacheEntry:
    """One cached value plus the bookkeeping used for eviction."""
    data: Any
    created: float
    last_access: float
    ttl: float            # seconds
    size: int             # bytes
    access_count: int = 0
    priority: float = DEFAULT_PRIORITY

    def is_expired(self, now: float) -> bool:
        return now - self.created > self.ttl

    def record_access(self, now: float) -> None:
        self.last_access = now
        self.access_count += 1
        self.priority = min(MAX_PRIORITY, self.priority + 0.1)

    def lru_score(self, now: float) -> float:
        """Higher survives longer. Age normalized per day, idle time per hour."""
        age_minutes = (now - self.created) / 60.0
        idle_minutes = (now - self.last_access) / 60.0

        age_weight = max(0.1, 1.0 - age_minutes / 1440.0)
        access_weight = min(2.0, math.log(self.access_count + 1))
        recency_weight = max(0.1, 1.0 - idle_minutes / 60.0)

        return (
            age_weight * 0.3
            + access_weight * 0.4
            + recency_weight * 0.2
            + self.priority * 0.1
        )


def hash_key(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def payload_size(value: Any) -> int:
    """Approximate footprint in bytes, from the JSON serialization."""
    return len(json.dumps(value, default=str).encode("utf-8"))


class SmartCache:
    """
    Size-bounded TTL cache.

    All mutation runs under one asyncio.Lock per cache instance.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        name: str = "cache",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CacheConfig()
        self.name = name
        self._clock = clock

        self._entries: Dict[str, CacheEntry] = {}
        self._size_bytes = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._lock = asyncio.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # internal helpers (caller holds the lock)
    # ------------------------------------------------------------------

    def _drop(self, hashed: str) -> Optional[CacheEntry]:
        entry = self._entries.pop(hashed, None)
        if entry is not None:
            self._size_bytes -= entry.size
        return entry

    def _purge_expired(self, now: float) -> int:
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for hashed in expired:
            self._drop(hashed)
        self._evictions += len(expired)
        return len(expired)

    def _evict_lowest(self, count: int, now: float) -> int:
        ranked = sorted(self._entries.items(), key=lambda item: item[1].lru_score(now))
        removed = 0
        for hashed, _ in ranked[:count]:
            self._drop(hashed)
            removed += 1
        self._evictions += removed
        return removed

    def _make_room(self, required: int, now: float) -> None:
        budget = self.config.max_size_bytes
        if self._size_bytes + required <= budget:
            return
        self._purge_expired(now)
        while self._entries and self._size_bytes + required > budget:
            self._evict_lowest(1, now)

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[timedelta] = None,
        priority: float = DEFAULT_PRIORITY,
    ) -> bool:
        """
        Store `value` under `key`.

        Returns:
            False when the payload alone exceeds the cache budget (not cached)
        """
        size = payload_size(value)
        if size > self.config.max_size_bytes:
            logger.warning(
                f"SmartCache '{self.name}': entry of {size} bytes exceeds "
                f"budget of {self.config.max_size_bytes} bytes, not cached"
            )
            return False

        ttl_seconds = ttl.total_seconds() if ttl is not None else self.config.default_ttl_minutes * 60
        hashed = hash_key(key)

        async with self._lock:
            now = self._clock()
            self._drop(hashed)
            self._make_room(size, now)
            self._entries[hashed] = CacheEntry(
                data=value,
                created=now,
                last_access=now,
                ttl=ttl_seconds,
                size=size,
                priority=max(0.0, min(MAX_PRIORITY, priority)),
            )
            self._size_bytes += size
        return True

    async def get(self, key: str) -> Optional[Any]:
        """Value for `key`, or None on a miss. Expired entries are evicted."""
        hashed = hash_key(key)
        async with self._lock:
            now = self._clock()
            entry = self._entries.get(hashed)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(now):
                self._drop(hashed)
                self._evictions += 1
                self._misses += 1
                return None
            entry.record_access(now)
            self._hits += 1
            return entry.data

    async def contains(self, key: str) -> bool:
        """Presence check that neither counts as a hit nor bumps access."""
        hashed = hash_key(key)
        async with self._lock:
            entry = self._entries.get(hashed)
            return entry is not None and not entry.is_expired(self._clock())

    async def remove(self, key: str) -> bool:
        async with self._lock:
            return self._drop(hash_key(key)) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()
            self._size_bytes = 0
            logger.info(f"SmartCache '{self.name}': cleared")

    async def cleanup(self) -> int:
        """Remove expired entries. Returns how many were removed."""
        async with self._lock:
            removed = self._purge_expired(self._clock())
        if removed:
            logger.debug(f"SmartCache '{self.name}': cleanup removed {removed} expired entries")
        return removed

    async def optimize(self) -> int:
        """Evict the lowest-scoring quarter of entries (at least one)."""
        async with self._lock:
            if not self._entries:
                return 0
            count = max(1, len(self._entries) // 4)
            removed = self._evict_lowest(count, self._clock())
        logger.info(f"SmartCache '{self.name}': optimize evicted {removed} entries")
        return removed

    def get_stats(self) -> Dict[str, Any]:
        total = self._hits + self._misses
        return {
            "name": self.name,
            "entries": len(self._entries),
            "size_bytes": self._size_bytes,
            "size_mb": round(self._size_bytes / (1024 * 1024), 4),
            "max_size_mb": self.config.max_size_mb,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "hit_rate": (self._hits / total) if total > 0 else 0.0,
        }

    # ------------------------------------------------------------------
    # search-result helpers
    # ------------------------------------------------------------------

    async def set_search_results(
        self,
        query_key: str,
        results: List[Any],
        ttl: Optional[timedelta] = None,
    ) -> bool:
        return await self.set(f"search:{query_key}", list(results), ttl=ttl, priority=SEARCH_RESULT_PRIORITY)

    async def get_search_results(self, query_key: str) -> Optional[List[Any]]:
        return await self.get(f"search:{query_key}")

    # ------------------------------------------------------------------
    # background cleanup
    # ------------------------------------------------------------------

    async def start_cleanup_loop(self) -> None:
        """Start background cleanup task"""
        if self._cleanup_task is not None:
            return

        interval = self.config.cleanup_interval_minutes * 60

        async def cleanup_loop():
            while True:
                try:
                    await asyncio.sleep(interval)
                    await self.cleanup()
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    logger.error(f"SmartCache '{self.name}': error in cleanup loop: {e}")

        self._cleanup_task = asyncio.create_task(cleanup_loop())
        logger.info(f"SmartCache '{self.name}': started cleanup loop ({interval:.0f}s)")

    async def stop_cleanup_loop(self) -> None:
        """Stop background cleanup task"""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
            logger.info(f"SmartCache '{self.name}': stopped cleanup loop")

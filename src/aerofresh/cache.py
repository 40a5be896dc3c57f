"""In-memory cache for GET responses.

Entries are keyed by ``METHOD:path:query`` and expire ``ttl_ms`` after they
were stored. When the cache is full, the entry closest to expiry is evicted
to make room; since every entry shares the same TTL this approximates
oldest-first eviction rather than true LRU.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .config import CacheConfig

logger = logging.getLogger("aerofresh.cache")


def _now_ms() -> float:
    return time.time() * 1000.0


@dataclass
class CacheEntry:
    body: bytes
    media_type: Optional[str]
    expires_at: float  # epoch milliseconds
    status_code: int = 200
    route: Optional[str] = None  # route template that produced the body

    @property
    def size(self) -> int:
        return len(self.body)


class ResponseCache:
    """Thread-safe TTL cache of response bodies.

    ``get`` and ``set`` keep hit/miss/eviction counters so callers can report
    a hit ratio without bookkeeping of their own.
    """

    def __init__(self, config: Optional[CacheConfig] = None, clock: Callable[[], float] = _now_ms):
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()

        # Statistics
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def ttl_ms(self) -> int:
        return self.config.ttl_ms

    @property
    def max_size(self) -> int:
        return self.config.max_size

    @staticmethod
    def make_key(method: str, path: str, query: str = "") -> str:
        return f"{method.upper()}:{path}:{query}"

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for ``key``; expired entries are dropped."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                return None
            return entry

    def set(
        self,
        key: str,
        body: bytes,
        media_type: Optional[str] = None,
        status_code: int = 200,
        route: Optional[str] = None,
    ) -> CacheEntry:
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._evict_nearest_expiry()
            entry = CacheEntry(
                body=body, media_type=media_type, expires_at=self._clock() + self.ttl_ms,
                status_code=status_code, route=route,
            )
            self._entries[key] = entry
            return entry

    def record_hit(self) -> None:
        with self._lock:
            self._hits += 1

    def record_miss(self) -> None:
        with self._lock:
            self._misses += 1

    def _evict_nearest_expiry(self) -> None:
        if not self._entries:
            return
        key = min(self._entries, key=lambda k: self._entries[k].expires_at)
        del self._entries[key]
        self._evictions += 1
        logger.debug("Evicted cache entry %s", key)

    def clear(self) -> None:
        """Drop every entry and reset hit/miss counters."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    @property
    def hit_rate(self) -> float:
        """Percentage of cacheable lookups answered from the cache."""
        total = self._hits + self._misses
        return round(self._hits / total * 100, 2) if total else 0.0

    def stats(self) -> dict:
        with self._lock:
            memory = sum(len(k) + e.size for k, e in self._entries.items())
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "ttl_ms": self.ttl_ms,
                "enabled": self.enabled,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self.hit_rate,
                "evictions": self._evictions,
                "memory_usage": memory,
            }


__all__ = ["CacheEntry", "ResponseCache"]

"""
In-memory TTL cache of barcode -> ProductMapping.

A time-boxed shadow of the Mapping Store, never authoritative past its TTL.
The clock is injected so tests can move time; one instance is shared
by every sync run in the process.
"""

import threading
import time
from typing import Callable, Optional

from models.mapping import CacheStats, ProductMapping

DEFAULT_TTL_SECONDS = 300


class MappingCache:
    """Thread-safe TTL map. Expired entries are evicted when touched."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, ProductMapping]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, barcode: str) -> Optional[ProductMapping]:
        """Return the cached mapping, or None if absent/expired."""
        with self._lock:
            entry = self._entries.get(barcode)
            if entry is None:
                self._misses += 1
                return None
            expires_at, mapping = entry
            if self._clock() >= expires_at:
                del self._entries[barcode]
                self._misses += 1
                return None
            self._hits += 1
            return mapping

    def put(self, mapping: ProductMapping) -> None:
        with self._lock:
            self._entries[mapping.barcode] = (self._clock() + self.ttl_seconds, mapping)
            self._cleanup_expired()

    def invalidate(self, barcode: str) -> bool:
        """Drop one entry. Returns True if it was present."""
        with self._lock:
            return self._entries.pop(barcode, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> CacheStats:
        with self._lock:
            self._cleanup_expired()
            return CacheStats(
                size=len(self._entries),
                hits=self._hits,
                misses=self._misses,
                ttl_seconds=self.ttl_seconds,
            )

    def _cleanup_expired(self) -> None:
        """Remove all expired entries. Caller holds the lock."""
        now = self._clock()
        expired = [k for k, (exp, _) in self._entries.items() if now >= exp]
        for k in expired:
            del self._entries[k]


# Singleton instance for convenience
_mapping_cache: Optional[MappingCache] = None


def get_mapping_cache() -> MappingCache:
    """Get or create the process-wide MappingCache."""
    global _mapping_cache
    if _mapping_cache is None:
        from config import settings
        _mapping_cache = MappingCache(ttl_seconds=settings.mapping_cache_ttl_seconds)
    return _mapping_cache

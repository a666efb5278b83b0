"""
In-process TTL cache used to memoize composed Pokemon details.

Entries expire a fixed wall-clock duration after they were set. When the
cache grows past `max_entries`, the least-recently-*set* entries are evicted
first; reads do not refresh an entry's position.
"""

import logging
import time
from collections import OrderedDict
from typing import Callable, Generic, Hashable, Optional, Tuple, TypeVar

from utils.api_models import CacheStats

logger = logging.getLogger("pokedex.cache")

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Bounded mapping with per-entry expiry and insertion-order eviction."""

    def __init__(
        self,
        ttl: float,
        max_entries: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")

        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[Hashable, Tuple[float, V]]" = OrderedDict()

        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def get(self, key: Hashable) -> Optional[V]:
        """Return the live value for `key`, dropping it if expired."""
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        stored_at, value = entry
        if self._clock() - stored_at >= self.ttl:
            del self._entries[key]
            self.misses += 1
            logger.debug("Memo entry expired", extra={"cache_key": str(key)})
            return None

        self.hits += 1
        return value

    def set(self, key: Hashable, value: V) -> None:
        """Store `value`; re-setting a key moves it to the newest position."""
        self._entries.pop(key, None)
        self._entries[key] = (self._clock(), value)

        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self.evictions += 1
            logger.debug("Memo entry evicted", extra={"cache_key": str(evicted)})

    def delete(self, key: Hashable) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        expired = [k for k, (stored_at, _) in self._entries.items() if now - stored_at >= self.ttl]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __contains__(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self._clock() - entry[0] < self.ttl

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> CacheStats:
        total = self.hits + self.misses
        hit_rate = (self.hits / total * 100) if total > 0 else 0
        return {
            "size": len(self._entries),
            "max_size": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": f"{hit_rate:.1f}%",
        }

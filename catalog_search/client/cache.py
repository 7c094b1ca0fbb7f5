from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

from catalog_search.client.options import FacetOption

CacheKey = Tuple[str, str]


@dataclass(frozen=True)
class CacheEntry:
    options: Tuple[FacetOption, ...]
    fetched_at: float


class FilterSessionCache:
    """Session-scoped facet option cache.

    Entries past the TTL are kept: a stale list is still a better fallback
    than nothing when a refresh fails. There is no eviction; the key space is
    a handful of lookup tables times the queries typed into them.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}

    def get(self, key: CacheKey) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def put(self, key: CacheKey, entry: CacheEntry) -> None:
        self._entries[key] = entry

    def store(self, key: CacheKey, options: Iterable[FacetOption]) -> CacheEntry:
        entry = CacheEntry(options=tuple(options), fetched_at=self._clock())
        self.put(key, entry)
        return entry

    def is_fresh(self, entry: Optional[CacheEntry]) -> bool:
        if entry is None:
            return False
        return (self._clock() - entry.fetched_at) < self.ttl_seconds

    def invalidate(self, entity: Optional[str] = None) -> None:
        if entity is None:
            self._entries.clear()
            return
        for key in [key for key in self._entries if key[0] == entity]:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

"""
Result Cache

Bounded LRU cache of SearchResults keyed by normalized query, resolved
filters and options.

Entries are invalidated two ways:
- eagerly, when the index reports a change to a bucket the entry depends on
- lazily, when a lookup finds a dependency bucket newer than the entry
"""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import Callable, Dict, FrozenSet, Iterable, Optional

from .models import Performance, SearchOptions, SearchPath, SearchResult

logger = logging.getLogger("docmemory.retriever.cache")


@dataclass
class CacheEntry:
    """A cached result with its dependencies"""
    key: str
    result: SearchResult
    created_at: float
    depends_on_buckets: FrozenSet[str]
    snapshot_version: int


class ResultCache:
    """
    LRU result cache with bucket-based invalidation.

    Args:
        max_entries: Capacity; the least recently used entry is evicted first
        version_of: Returns the snapshot version of a bucket's last change
            (MemoryIndex.bucket_version); enables the lazy staleness check
    """

    def __init__(
        self,
        max_entries: int = 256,
        version_of: Optional[Callable[[str], int]] = None,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._max_entries = max_entries
        self._version_of = version_of
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    @staticmethod
    def make_key(normalized: str, options: SearchOptions, filters: str = "") -> str:
        return f"{normalized}\n{filters}\n{options.cache_token()}"

    def bind(self, version_of: Callable[[str], int]) -> None:
        self._version_of = version_of

    def _is_stale(self, entry: CacheEntry) -> bool:
        if self._version_of is None:
            return False
        return any(self._version_of(b) > entry.snapshot_version for b in entry.depends_on_buckets)

    def get(self, key: str) -> Optional[SearchResult]:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        if self._is_stale(entry):
            del self._entries[key]
            self._evictions += 1
            self._misses += 1
            logger.debug("Stale cache entry evicted on lookup")
            return None
        self._entries.move_to_end(key)
        self._hits += 1
        return entry.result

    def put(
        self,
        key: str,
        result: SearchResult,
        depends_on: Iterable[str],
        snapshot_version: int,
    ) -> CacheEntry:
        entry = CacheEntry(
            key=key,
            result=result,
            created_at=time.time(),
            depends_on_buckets=frozenset(depends_on),
            snapshot_version=snapshot_version,
        )
        self._entries[key] = entry
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)
            self._evictions += 1
        return entry

    def invalidate(self, buckets: Iterable[str]) -> int:
        """Evict every entry depending on any of buckets. Returns the eviction count."""
        changed = frozenset(buckets)
        if not changed:
            return 0
        stale = [k for k, e in self._entries.items() if e.depends_on_buckets & changed]
        for key in stale:
            del self._entries[key]
        self._evictions += len(stale)
        if stale:
            logger.debug("Invalidated %d cache entries for buckets %s", len(stale), sorted(changed))
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> Dict[str, int]:
        return {
            "entries": len(self._entries),
            "max_entries": self._max_entries,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
        }


def as_cache_hit(result: SearchResult, performance: Performance) -> SearchResult:
    """Copy of a cached result reporting the cache path"""
    return replace(result, search_path=SearchPath.CACHE, performance=performance)

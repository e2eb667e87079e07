"""
Result caching module for interpretation evaluations.

Memoizes (scope, interpretation name, property data) -> InterpretationResult with
LRU eviction and a time-to-live, so repeated requests for the same subject
skip the tree walk.
"""

import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from src import config
from src.interpretation.models import InterpretationResult, PropertyData

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A cached result with its creation time and hit count."""

    result: InterpretationResult
    timestamp: float
    hits: int = 0


def generate_cache_key(
    interpretation_name: str,
    property_data: PropertyData,
    scope: str = "",
) -> str:
    """
    Build a cache key from the interpretation name and property data.

    Property keys are sorted before serialization, so the same data in a
    different key order maps to the same key. A non-empty scope (catalog
    version and evaluation settings) prefixes the key, so results computed
    under different settings never share an entry.

    Example:
        >>> generate_cache_key("Septic", {"b": 2, "a": 1})
        'Septic:{"a": 1, "b": 2}'
    """
    payload = json.dumps(dict(property_data), sort_keys=True, default=str)
    key = f"{interpretation_name}:{payload}"
    return f"{scope}|{key}" if scope else key


class ResultCache:
    """
    In-memory LRU cache of interpretation results with TTL expiry.

    - get/set move an entry to the most-recently-used position
    - inserting a new key into a full cache evicts the single oldest entry
    - entries older than ttl are misses on get, and are swept by prune()

    All operations hold a lock, so one cache can serve concurrent batch
    workers.

    Attributes:
        max_size: Maximum number of entries
        ttl: Entry lifetime in seconds
    """

    def __init__(
        self,
        max_size: int = config.DEFAULT_CACHE_MAX_SIZE,
        ttl: float = config.DEFAULT_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize result cache.

        Args:
            max_size: Maximum number of entries (default: 1000)
            ttl: Time to live in seconds (default: 30 minutes)
            clock: Time source in seconds; injectable for tests
        """
        self.max_size = max_size
        self.ttl = ttl
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.timestamp > self.ttl

    def get(
        self,
        interpretation_name: str,
        property_data: PropertyData,
        scope: str = "",
    ) -> Optional[InterpretationResult]:
        """
        Get a cached result.

        Args:
            interpretation_name: Interpretation the result belongs to
            property_data: Subject property values
            scope: Catalog version and settings the result was computed under

        Returns:
            The cached result, or None on a miss (absent or expired)
        """
        key = generate_cache_key(interpretation_name, property_data, scope)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None

            if self._is_expired(entry, self._clock()):
                del self._entries[key]
                self.misses += 1
                logger.debug(f"Cache entry expired: {interpretation_name}")
                return None

            entry.hits += 1
            self.hits += 1
            self._entries.move_to_end(key)
            return entry.result

    def set(
        self,
        interpretation_name: str,
        property_data: PropertyData,
        result: InterpretationResult,
        scope: str = "",
    ) -> None:
        """Store a result, evicting the least recently used entry if full."""
        key = generate_cache_key(interpretation_name, property_data, scope)
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                oldest, _ = self._entries.popitem(last=False)
                self.evictions += 1
                logger.debug(f"Evicted cache entry: {oldest[:80]}")

            self._entries[key] = CacheEntry(result=result, timestamp=self._clock())
            self._entries.move_to_end(key)

    def has(self, interpretation_name: str, property_data: PropertyData, scope: str = "") -> bool:
        """Check for an entry without touching LRU order or statistics."""
        key = generate_cache_key(interpretation_name, property_data, scope)
        with self._lock:
            return key in self._entries

    def prune(self) -> int:
        """
        Remove all expired entries.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if self._is_expired(e, now)]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.info(f"Pruned {len(expired)} expired cache entries")
        return len(expired)

    def clear(self) -> None:
        """Remove all entries and reset statistics."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self.hits = 0
            self.misses = 0
            self.evictions = 0
        logger.info(f"Cleared {count} cached results")

    def set_ttl(self, ttl: float) -> None:
        with self._lock:
            self.ttl = ttl

    def set_max_size(self, max_size: int) -> None:
        """Change the size bound, evicting oldest entries if now over it."""
        with self._lock:
            self.max_size = max_size
            while len(self._entries) > max_size:
                self._entries.popitem(last=False)
                self.evictions += 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> dict:
        """
        Get cache statistics.

        Returns:
            Dictionary with size, max_size, hits, misses, hit_rate, evictions
        """
        with self._lock:
            total = self.hits + self.misses
            hit_rate = self.hits / total if total > 0 else 0.0
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "ttl": self.ttl,
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": round(hit_rate, 4),
                "evictions": self.evictions,
            }

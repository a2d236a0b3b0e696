"""
Query Result Cache for ModelGate

In-process cache of QueryResults produced by the database gateway.

KEY DESIGN PRINCIPLES:
----------------------
1. Cache is an OPTIMIZATION, not a source of truth
2. Graceful degradation: a cache failure is a miss, never a failed query
3. Explicit instance: one ResultCache is built at startup and passed to
   whatever executes compiled queries. There is no module-level cache.

CACHE KEY STRUCTURE:
--------------------
CacheKey(datasource_id, sql_hash, params_hash)

- sql_hash: sha256 of the SQL text, trimmed and lower-cased
- params_hash: sha256 of "k1=v1,k2=v2" with parameters sorted by key

Hashing keeps keys at a bounded size whatever the SQL length.

EVICTION:
---------
- At most `max_entries` entries; the least recently used goes first
- Each entry lives `ttl_seconds` from its write
- Every put replaces the previous entry for that key

CONCURRENCY:
------------
All state sits behind one lock. The gateway call on a miss runs outside
the lock, so a slow query never blocks other cache users.
"""

import hashlib
import logging
import os
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from modelgate.adapters.base import QueryResult

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class CacheConfig:
    """
    Cache configuration.

    Environment variables:
    - CACHE_ENABLED: Enable/disable caching (default: true)
    - CACHE_MAX_ENTRIES: Maximum cached results (default: 500)
    - CACHE_TTL_SECONDS: Time-to-live from write (default: 300)
    """
    enabled: bool = True
    max_entries: int = 500
    ttl_seconds: int = 300

    @classmethod
    def from_env(cls) -> "CacheConfig":
        """Load configuration from environment variables."""
        return cls(
            enabled=os.environ.get("CACHE_ENABLED", "true").lower() == "true",
            max_entries=int(os.environ.get("CACHE_MAX_ENTRIES", "500")),
            ttl_seconds=int(os.environ.get("CACHE_TTL_SECONDS", "300")),
        )

    @classmethod
    def from_settings(cls, settings) -> "CacheConfig":
        return cls(
            enabled=settings.cache_enabled,
            max_entries=settings.cache_max_entries,
            ttl_seconds=settings.cache_ttl_seconds,
        )


# =============================================================================
# CACHE KEY
# =============================================================================

@dataclass(frozen=True)
class CacheKey:
    datasource_id: str
    sql_hash: str
    params_hash: str


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def normalize_sql(sql: str) -> str:
    return sql.strip().lower()


def serialize_params(params: Optional[Mapping[str, Any]]) -> str:
    if not params:
        return ""
    return ",".join(f"{k}={params[k]}" for k in sorted(params, key=str))


def fingerprint(
    datasource_id: Any,
    sql: str,
    params: Optional[Mapping[str, Any]] = None
) -> CacheKey:
    """
    Build the cache key for a query.

    Invariant to parameter insertion order and to SQL case and
    surrounding whitespace; any parameter value change changes the key.
    """
    return CacheKey(
        datasource_id=str(datasource_id),
        sql_hash=_sha256(normalize_sql(sql)),
        params_hash=_sha256(serialize_params(params)),
    )


def estimate_size(result: QueryResult) -> int:
    """
    Approximate memory footprint of a result, for observability only.

    Two bytes per character of column names, plus per row two bytes per
    character of each stringified cell and 16 bytes overhead per cell.
    """
    size = sum(len(name) * 2 for name in result.column_names)
    for row in result.rows:
        if isinstance(row, (list, tuple)):
            size += sum((len(str(cell)) if cell is not None else 0) * 2 + 16 for cell in row)
        else:
            size += 200
    return size


# =============================================================================
# CACHE
# =============================================================================

@dataclass
class CacheEntry:
    result: QueryResult
    captured_at: float
    size_bytes: int


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    size_bytes: int = 0
    entry_count: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hitRate": self.hit_rate,
            "evictions": self.evictions,
            "entryCount": self.entry_count,
            "estimatedBytes": self.size_bytes,
        }


class ResultCache:
    """
    Bounded LRU + TTL cache of query results.

    Usage:
        cache = ResultCache(CacheConfig(max_entries=500, ttl_seconds=300))
        result, hit = cache.execute_with_cache(
            "warehouse", sql, {"limit": 100},
            lambda: gateway.execute("warehouse", sql, 100),
        )
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: "OrderedDict[CacheKey, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._stats = CacheStats()
        self._enabled = self.config.enabled

    # -------------------------------------------------------------------------
    # Internal (call with lock held)
    # -------------------------------------------------------------------------

    def _expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.captured_at >= self.config.ttl_seconds

    def _remove(self, key: CacheKey, eviction: bool) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        self._stats.size_bytes -= entry.size_bytes
        self._stats.entry_count = len(self._entries)
        if eviction:
            self._stats.evictions += 1

    def _purge_expired(self) -> None:
        for key in [k for k, e in self._entries.items() if self._expired(e)]:
            self._remove(key, eviction=True)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def is_enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        """Toggle caching. Disabling clears the cache immediately."""
        with self._lock:
            self._enabled = enabled
            if not enabled:
                self.invalidate_all()
        logger.info(f"Result cache {'enabled' if enabled else 'disabled'}")

    def get(
        self,
        datasource_id: Any,
        sql: str,
        params: Optional[Mapping[str, Any]] = None
    ) -> Optional[QueryResult]:
        """Return the cached result, or None on a miss (or when disabled)."""
        if not self._enabled:
            return None

        try:
            key = fingerprint(datasource_id, sql, params)
        except Exception as e:
            logger.warning(f"Cache fingerprint failed, treating as miss: {e}")
            with self._lock:
                self._stats.misses += 1
            return None

        with self._lock:
            entry = self._entries.get(key)

            if entry is None:
                self._stats.misses += 1
                return None

            if self._expired(entry):
                self._remove(key, eviction=True)
                self._stats.misses += 1
                return None

            self._entries.move_to_end(key)
            self._stats.hits += 1
            return entry.result

    def put(
        self,
        datasource_id: Any,
        sql: str,
        params: Optional[Mapping[str, Any]],
        result: QueryResult
    ) -> bool:
        """Store a result, replacing any previous entry. Returns True if stored."""
        if not self._enabled:
            return False

        try:
            key = fingerprint(datasource_id, sql, params)
            size = estimate_size(result)
        except Exception as e:
            logger.warning(f"Cache put skipped: {e}")
            return False

        with self._lock:
            self._remove(key, eviction=False)
            self._purge_expired()

            while len(self._entries) >= self.config.max_entries and self._entries:
                oldest = next(iter(self._entries))
                self._remove(oldest, eviction=True)

            if self.config.max_entries <= 0:
                return False

            self._entries[key] = CacheEntry(
                result=result,
                captured_at=self._clock(),
                size_bytes=size,
            )
            self._stats.size_bytes += size
            self._stats.entry_count = len(self._entries)

        return True

    def invalidate(self, datasource_id: Any, sql: Optional[str] = None) -> int:
        """
        Drop entries for a datasource, or for one SQL text on it.

        Returns:
            Number of entries removed
        """
        ds = str(datasource_id)
        sql_hash = _sha256(normalize_sql(sql)) if sql is not None else None

        with self._lock:
            keys = [
                k for k in self._entries
                if k.datasource_id == ds and (sql_hash is None or k.sql_hash == sql_hash)
            ]
            for key in keys:
                self._remove(key, eviction=False)

        if keys:
            scope = f"sql {sql_hash[:12]}" if sql_hash else "all queries"
            logger.info(f"Invalidated {len(keys)} cache entries for datasource {ds} ({scope})")
        return len(keys)

    def invalidate_all(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._stats.size_bytes = 0
            self._stats.entry_count = 0

        if count:
            logger.info(f"Invalidated all {count} cache entries")
        return count

    def stats(self) -> Dict[str, Any]:
        """Snapshot of counters plus current configuration."""
        with self._lock:
            data = self._stats.to_dict()
            data["entryCount"] = len(self._entries)
        data["enabled"] = self._enabled
        data["maxEntries"] = self.config.max_entries
        data["ttlSeconds"] = self.config.ttl_seconds
        return data

    def execute_with_cache(
        self,
        datasource_id: Any,
        sql: str,
        params: Optional[Mapping[str, Any]],
        execute_fn: Callable[[], QueryResult]
    ) -> Tuple[QueryResult, bool]:
        """
        Return a cached result or run `execute_fn` and cache its result.

        Failures of `execute_fn` propagate and nothing is cached.

        Returns:
            (result, cache_hit)
        """
        cached = self.get(datasource_id, sql, params)
        if cached is not None:
            logger.debug(f"Cache HIT for datasource {datasource_id}")
            return cached, True

        result = execute_fn()
        self.put(datasource_id, sql, params, result)
        logger.debug(f"Cache MISS for datasource {datasource_id}")
        return result, False

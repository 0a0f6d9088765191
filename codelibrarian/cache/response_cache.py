"""Tiered TTL cache keyed by the exact normalized query shape."""

from dataclasses import dataclass, replace
import hashlib
import json
import logging
import threading
import time

from ..query.config import DEFAULT_ENGINE_CONFIG, CacheConfig
from ..query.tokenize import normalize_whitespace
from ..query.types import CachedResponse, Query
from .serialization import deserialize_response, serialize_response
from .store import CacheStore, MemoryCacheStore, StoredEntry

log = logging.getLogger(__name__)

TIERS = ("l1", "l2")


def build_cache_key(query: Query) -> str:
    """Hash intent text, depth, scope and task type. No fuzzy matching."""
    shape = {
        "intent": normalize_whitespace(query.intent),
        "depth": query.depth.value if query.depth else None,
        "path_prefix": query.path_prefix,
        "language": query.language,
        "task_type": query.task_type,
    }
    canonical = json.dumps(shape, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    expired: int = 0
    corrupt: int = 0
    writes: int = 0


class ResponseCache:
    """Deterministic response cache with l1/l2 tiers and lazy TTL expiry."""

    def __init__(
        self,
        store: CacheStore | None = None,
        config: CacheConfig = DEFAULT_ENGINE_CONFIG.cache,
    ):
        self.store = store or MemoryCacheStore()
        self.config = config
        self._stats = CacheStats()
        self._stats_lock = threading.Lock()

    def _bump(self, counter: str) -> None:
        with self._stats_lock:
            setattr(self._stats, counter, getattr(self._stats, counter) + 1)

    def tier_for(self, query: Query) -> str:
        return self.config.tier_for_depth(query.depth)

    def ttl_for(self, query: Query) -> float:
        return self.config.ttl_for_depth(query.depth)

    def get(self, query: Query, now: float | None = None) -> CachedResponse | None:
        """Return a cached response marked as a hit, or None."""
        tier = self.tier_for(query)
        key = build_cache_key(query)
        current = time.time() if now is None else now

        entry = self.store.get(tier, key)
        if entry is None:
            self._bump("misses")
            return None

        if entry.expires_at <= current:
            self.store.delete(tier, key)
            self._bump("expired")
            self._bump("misses")
            log.debug(f"Cache entry expired in {tier}: {key[:12]}")
            return None

        response = deserialize_response(entry.payload)
        if response is None:
            self.store.delete(tier, key)
            self._bump("corrupt")
            self._bump("misses")
            log.warning(f"Dropped malformed cache entry in {tier}: {key[:12]}")
            return None

        self._bump("hits")
        log.debug(f"Cache hit in {tier}: {key[:12]}")
        return replace(response, cache_hit=True)

    def set(
        self,
        query: Query,
        response: CachedResponse,
        now: float | None = None,
        *,
        expires_at: float | None = None,
    ) -> None:
        """Store a response for its tier TTL.

        ``expires_at`` caps the lifetime for responses computed earlier, such
        as ones copied over from the semantic cache.
        """
        tier = self.tier_for(query)
        ttl = self.ttl_for(query)
        if ttl <= 0:
            return
        current = time.time() if now is None else now
        deadline = current + ttl
        if expires_at is not None:
            deadline = min(deadline, expires_at)
        if deadline <= current:
            return
        entry = StoredEntry(
            payload=serialize_response(replace(response, cache_hit=False)),
            expires_at=deadline,
            stored_at=current,
        )
        self.store.put(tier, build_cache_key(query), entry)
        self._bump("writes")

    def invalidate(self, query: Query) -> None:
        self.store.delete(self.tier_for(query), build_cache_key(query))

    def clear(self, tier: str | None = None) -> None:
        self.store.clear(tier)

    def stats(self) -> dict:
        with self._stats_lock:
            snapshot = replace(self._stats)
        return {
            "hits": snapshot.hits,
            "misses": snapshot.misses,
            "expired": snapshot.expired,
            "corrupt": snapshot.corrupt,
            "writes": snapshot.writes,
            "entries": {tier: self.store.count(tier) for tier in TIERS},
        }

"""Adaptive cache that reuses responses across paraphrased intents."""

from dataclasses import dataclass, replace
import logging
import threading
import time

from ..query.config import DEFAULT_ENGINE_CONFIG, CacheConfig
from ..query.tokenize import keyword_overlap_score
from ..query.types import CachedResponse, Query
from .intent import (
    IntentCategory,
    build_scope_signature,
    classify_category,
    identifier_order_conflicts,
    intent_identifiers,
    normalize_intent,
)
from .serialization import deserialize_response, serialize_response

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SemanticEntry:
    normalized_intent: str
    category: IntentCategory
    payload: str
    expires_at: float
    stored_at: float
    identifiers: tuple[str, ...] = ()


@dataclass(frozen=True)
class SemanticMatch:
    response: CachedResponse
    similarity: float
    matched_intent: str
    expires_at: float


@dataclass(frozen=True)
class _Fingerprint:
    category: IntentCategory
    normalized: str
    identifiers: tuple[str, ...]


def _similarity(left: str, right: str) -> float:
    if left == right:
        return 1.0
    return keyword_overlap_score(left, right)


class SemanticCache:
    """Scope-partitioned cache matched by normalized intent similarity.

    Queries whose intent yields no classification or an empty canonical
    form never match and are never stored.
    """

    def __init__(self, config: CacheConfig = DEFAULT_ENGINE_CONFIG.cache):
        self.config = config
        self._partitions: dict[str, list[SemanticEntry]] = {}
        self._lock = threading.Lock()

    def _fingerprint(self, query: Query) -> _Fingerprint | None:
        category = classify_category(query.intent)
        if category is None:
            return None
        normalized = normalize_intent(query.intent, category)
        if not normalized:
            return None
        return _Fingerprint(category, normalized, intent_identifiers(query.intent))

    def lookup(self, query: Query, now: float | None = None) -> SemanticMatch | None:
        if not self.config.semantic_enabled:
            return None
        fingerprint = self._fingerprint(query)
        if fingerprint is None:
            return None
        category, normalized = fingerprint.category, fingerprint.normalized
        signature = build_scope_signature(query)
        current = time.time() if now is None else now

        with self._lock:
            entries = self._partitions.get(signature)
            if not entries:
                return None
            live = [entry for entry in entries if entry.expires_at > current]
            if len(live) != len(entries):
                self._partitions[signature] = live

            best: SemanticEntry | None = None
            best_score = 0.0
            for entry in live:
                if entry.category is not category:
                    continue
                if identifier_order_conflicts(fingerprint.identifiers, entry.identifiers):
                    continue
                score = _similarity(normalized, entry.normalized_intent)
                if score > best_score:
                    best, best_score = entry, score

            if best is None or best_score < self.config.similarity_threshold:
                return None

            response = deserialize_response(best.payload)
            if response is None:
                self._partitions[signature] = [e for e in live if e is not best]
                log.warning(f"Dropped malformed semantic cache entry in {signature}")
                return None

        log.debug(
            f"Semantic cache hit ({best_score:.2f}) '{normalized}' ~ '{best.normalized_intent}'"
        )
        return SemanticMatch(
            response=replace(response, cache_hit=True),
            similarity=best_score,
            matched_intent=best.normalized_intent,
            expires_at=best.expires_at,
        )

    def store(self, query: Query, response: CachedResponse, now: float | None = None) -> bool:
        """Store a response; returns False when the intent carries no signal."""
        if not self.config.semantic_enabled:
            return False
        fingerprint = self._fingerprint(query)
        if fingerprint is None:
            return False
        category, normalized = fingerprint.category, fingerprint.normalized
        ttl = self.config.ttl_for_depth(query.depth)
        if ttl <= 0:
            return False

        current = time.time() if now is None else now
        entry = SemanticEntry(
            normalized_intent=normalized,
            category=category,
            payload=serialize_response(replace(response, cache_hit=False)),
            expires_at=current + ttl,
            stored_at=current,
            identifiers=fingerprint.identifiers,
        )
        signature = build_scope_signature(query)

        with self._lock:
            entries = [
                existing
                for existing in self._partitions.get(signature, [])
                if existing.expires_at > current
                and not (
                    existing.category is category
                    and existing.normalized_intent == normalized
                )
            ]
            entries.append(entry)
            limit = max(1, self.config.max_entries_per_partition)
            if len(entries) > limit:
                entries = entries[-limit:]
            self._partitions[signature] = entries
        return True

    def clear(self) -> None:
        with self._lock:
            self._partitions.clear()

    def size(self) -> int:
        with self._lock:
            return sum(len(entries) for entries in self._partitions.values())

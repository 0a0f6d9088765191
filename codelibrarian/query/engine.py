"""Query answering pipeline with two-level response caching."""

from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
import logging
from pathlib import Path
import threading
import time
from typing import Iterator, Protocol
from uuid import uuid4

from ..cache.response_cache import ResponseCache, build_cache_key
from ..cache.semantic_cache import SemanticCache
from ..index.bootstrap import Bootstrapper, IndexReadiness, ensure_index_ready
from .biaser import apply_definition_bias, apply_document_bias
from .config import DEFAULT_ENGINE_CONFIG, EngineConfig
from .errors import NoCandidatesError
from .packs import PackUsage, apply_usage, build_context_packs
from .scope import normalize_query_scope
from .scorer import score_candidates
from .types import (
    CachedResponse,
    CandidateSignals,
    ContextPack,
    Depth,
    Query,
    ScoredCandidate,
    Version,
)

log = logging.getLogger(__name__)


class CandidateSource(Protocol):
    def search(self, query: Query, limit: int) -> list[CandidateSignals]: ...


class PackBuilder(Protocol):
    def __call__(
        self,
        ranked: list[ScoredCandidate],
        version: Version,
        *,
        now: datetime | None = None,
    ) -> list[ContextPack]: ...


class VersionSource(Protocol):
    def current_version(self) -> Version: ...


_DEEPER = {Depth.L0: Depth.L1, Depth.L1: Depth.L2}


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000.0, 3)


def rank_candidates(
    candidates: list[CandidateSignals],
    *,
    config: EngineConfig = DEFAULT_ENGINE_CONFIG,
    name_by_id: dict[str, str] | None = None,
    now: datetime | None = None,
) -> list[ScoredCandidate]:
    """Score a batch, then apply document and definition bias.

    The biased similarity replaces ``score`` on the returned copies so the
    list order and the scores agree.
    """
    scored = score_candidates(
        candidates,
        weights=config.weights,
        half_life_days=config.recency_half_life_days,
        default_recency=config.default_recency,
        now=now,
    )
    if not scored or not config.bias.enabled:
        return scored

    by_id = {item.entity_id: item for item in scored}
    results = [replace(item.candidate.result, similarity=item.score) for item in scored]
    names = {
        item.entity_id: item.candidate.result.name
        for item in scored
        if item.candidate.result.name
    }
    names.update(name_by_id or {})

    results = apply_document_bias(results, config.bias.document_boost)
    results = apply_definition_bias(results, config.bias.definition_boost, names)
    return [replace(by_id[result.entity_id], score=result.similarity) for result in results]


class QueryEngine:
    """Normalizes scope, probes both caches, and computes on a miss."""

    def __init__(
        self,
        workspace_root: str | Path,
        candidates: CandidateSource,
        version: Version | VersionSource,
        *,
        config: EngineConfig = DEFAULT_ENGINE_CONFIG,
        response_cache: ResponseCache | None = None,
        semantic_cache: SemanticCache | None = None,
        pack_builder: PackBuilder = build_context_packs,
        readiness: IndexReadiness | None = None,
        bootstrapper: Bootstrapper | None = None,
        name_by_id: dict[str, str] | None = None,
    ):
        self.workspace_root = Path(workspace_root)
        self.candidates = candidates
        self.version = version
        self.config = config
        self.response_cache = response_cache or ResponseCache(config=config.cache)
        self.semantic_cache = semantic_cache or SemanticCache(config=config.cache)
        self.pack_builder = pack_builder
        self.readiness = readiness
        self.bootstrapper = bootstrapper
        self.name_by_id = dict(name_by_id or {})

        self._usage: dict[str, PackUsage] = {}
        self._usage_lock = threading.Lock()
        self._key_locks: dict[str, threading.Lock] = {}
        self._key_locks_guard = threading.Lock()

    def current_version(self) -> Version:
        if isinstance(self.version, Version):
            return self.version
        return self.version.current_version()

    def answer(self, query: Query) -> CachedResponse:
        """Answer a query from cache or by computing a fresh response.

        Raises:
            InvalidScopeError: if the query's scope escapes the workspace.
            BootstrapRequiredError: if the index is not ready.
        """
        start = time.perf_counter()
        if self.readiness is not None:
            ensure_index_ready(self.readiness, self.bootstrapper)

        scope = normalize_query_scope(query, self.workspace_root)
        normalized = scope.query
        disclosures = list(scope.disclosures)

        cached = self._probe(normalized, disclosures, start)
        if cached is not None:
            return cached

        key = build_cache_key(normalized)
        with self._key_lock(key):
            cached = self._probe(normalized, disclosures, start)
            if cached is not None:
                return cached

            response = self._compute(normalized, disclosures, start)
            self.response_cache.set(normalized, response)
            self.semantic_cache.store(normalized, response)
        response = replace(response, packs=self._annotate(response.packs))

        log.info(
            f"Answered '{normalized.intent}' with {len(response.packs)} packs "
            f"in {response.latency_ms:.1f}ms"
        )
        return response

    def record_outcome(self, pack_id: str, success: bool) -> None:
        """Record whether a returned pack helped the caller's task."""
        with self._usage_lock:
            self._usage.setdefault(pack_id, PackUsage()).record_outcome(success)

    def usage(self, pack_id: str) -> PackUsage:
        with self._usage_lock:
            current = self._usage.get(pack_id, PackUsage())
            return replace(current)

    def clear_caches(self) -> None:
        self.response_cache.clear()
        self.semantic_cache.clear()

    @contextmanager
    def _key_lock(self, key: str) -> Iterator[None]:
        with self._key_locks_guard:
            lock = self._key_locks.setdefault(key, threading.Lock())
        try:
            with lock:
                yield
        finally:
            with self._key_locks_guard:
                if self._key_locks.get(key) is lock and not lock.locked():
                    del self._key_locks[key]

    def _annotate(self, packs: list[ContextPack]) -> list[ContextPack]:
        annotated: list[ContextPack] = []
        with self._usage_lock:
            for pack in packs:
                usage = self._usage.setdefault(pack.pack_id, PackUsage())
                usage.record_access()
                annotated.append(apply_usage(pack, usage))
        return annotated

    def _finish(
        self,
        response: CachedResponse,
        query: Query,
        disclosures: list[str],
        start: float,
        cache_hit: bool,
    ) -> CachedResponse:
        return replace(
            response,
            query=query,
            packs=self._annotate(response.packs),
            disclosures=disclosures,
            trace_id=uuid4().hex,
            cache_hit=cache_hit,
            latency_ms=_elapsed_ms(start),
        )

    def _probe(
        self,
        query: Query,
        disclosures: list[str],
        start: float,
    ) -> CachedResponse | None:
        hit = self.response_cache.get(query)
        if hit is not None:
            tier = self.response_cache.tier_for(query)
            return self._finish(hit, query, [*disclosures, f"cache_hit: {tier}"], start, True)

        match = self.semantic_cache.lookup(query)
        if match is not None:
            # Promote so the exact paraphrase hits the deterministic tier next time.
            self.response_cache.set(
                query, replace(match.response, query=query), expires_at=match.expires_at
            )
            return self._finish(
                match.response,
                query,
                [
                    *disclosures,
                    f"cache_hit: semantic ({match.similarity:.2f} ~ '{match.matched_intent}')",
                ],
                start,
                True,
            )
        return None

    def _compute(
        self,
        query: Query,
        disclosures: list[str],
        start: float,
    ) -> CachedResponse:
        limit = self.config.limit_for_depth(query.depth)
        coverage_gaps: list[str] = []
        now = datetime.now(timezone.utc)

        try:
            candidates = self.candidates.search(query, limit)
        except NoCandidatesError as e:
            log.info(f"No candidates for '{query.intent}': {e}")
            candidates = []

        if not candidates:
            coverage_gaps.append("no_candidates: retrieval returned no matching entities")
            if query.path_prefix:
                coverage_gaps.append(f"scope_may_be_too_narrow: {query.path_prefix}")

        ranked = rank_candidates(
            candidates, config=self.config, name_by_id=self.name_by_id, now=now
        )[:limit]

        missing_metrics = sum(1 for item in ranked if item.candidate.metrics is None)
        if missing_metrics:
            coverage_gaps.append(f"centrality_unavailable: {missing_metrics} result(s)")

        version = self.current_version()
        packs = self.pack_builder(ranked, version, now=now)
        total_confidence = (
            sum(pack.confidence for pack in packs) / len(packs) if packs else 0.0
        )

        return CachedResponse(
            query=query,
            packs=packs,
            disclosures=list(disclosures),
            trace_id=uuid4().hex,
            total_confidence=total_confidence,
            cache_hit=False,
            latency_ms=_elapsed_ms(start),
            version=version,
            drill_down_hints=self._drill_down_hints(query, ranked),
            explanation=self._explain(len(ranked), len(candidates)),
            coverage_gaps=coverage_gaps,
        )

    def _drill_down_hints(self, query: Query, ranked: list[ScoredCandidate]) -> list[str]:
        hints: list[str] = []
        deeper = _DEEPER.get(query.depth) if query.depth else None
        if deeper is not None:
            hints.append(f"Re-run at depth {deeper.value} for broader context")
        for item in ranked[:3]:
            hints.append(f"Inspect {item.entity_id}")
        return hints

    def _explain(self, returned: int, retrieved: int) -> str:
        if retrieved == 0:
            return "No candidates were retrieved for this intent."
        bias = self.config.bias
        bias_text = (
            f"document boost {bias.document_boost:.2f}, definition boost {bias.definition_boost:.2f}"
            if bias.enabled
            else "kind bias disabled"
        )
        return (
            f"Ranked {returned} of {retrieved} candidates by weighted relevance "
            f"(similarity, pagerank, centrality, confidence, recency, co-change); {bias_text}."
        )

"""Multi-signal scoring of retrieval candidates."""

from datetime import datetime, timezone
import math

from .config import DEFAULT_ENGINE_CONFIG, ScoringWeights
from .types import CandidateSignals, CentralityMetrics, ScoredCandidate

_MS_PER_DAY = 86_400_000


def clamp_01(value: float | int | None) -> float:
    """Clamp a numeric score into [0, 1]."""
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(score) or score < 0.0:
        return 0.0
    if score > 1.0:
        return 1.0
    return score


def _non_negative(value: float | int | None) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or number < 0.0:
        return 0.0
    return number


def combined_similarity(semantic: float, graph: float) -> float:
    """Trust the stronger of the two retrieval signals."""
    return max(clamp_01(semantic), clamp_01(graph))


def compute_centrality(metrics: CentralityMetrics | None) -> float:
    """Mean of betweenness, closeness and eigenvector.

    Pagerank is excluded; it is weighted as its own dimension.
    """
    if metrics is None:
        return 0.0
    total = (
        clamp_01(metrics.betweenness)
        + clamp_01(metrics.closeness)
        + clamp_01(metrics.eigenvector)
    )
    return total / 3.0


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def compute_recency(
    timestamp: datetime | None,
    default: float,
    half_life_days: float,
    now: datetime | None = None,
) -> float:
    """Exponential recency decay: 1.0 at age 0, exp(-1) at one half-life."""
    if timestamp is None:
        return default
    if half_life_days <= 0:
        return default

    reference = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    age_ms = (reference - _as_utc(timestamp)).total_seconds() * 1000.0
    age_days = max(0.0, age_ms / _MS_PER_DAY)
    return math.exp(-age_days / half_life_days)


def _uniform_score(max_raw: float) -> float:
    return 1.0 if max_raw > 0 else 0.0


def _candidate_sort_key(candidate: ScoredCandidate) -> tuple[float, float, str]:
    return (-candidate.score, -candidate.combined_similarity, candidate.entity_id)


def sort_scored_candidates(candidates: list[ScoredCandidate]) -> list[ScoredCandidate]:
    """Sort with deterministic tie-break rules."""
    return sorted(candidates, key=_candidate_sort_key)


def score_candidates(
    candidates: list[CandidateSignals],
    *,
    weights: ScoringWeights = DEFAULT_ENGINE_CONFIG.weights,
    half_life_days: float = DEFAULT_ENGINE_CONFIG.recency_half_life_days,
    default_recency: float = DEFAULT_ENGINE_CONFIG.default_recency,
    now: datetime | None = None,
) -> list[ScoredCandidate]:
    """Score a batch and min-max normalize within it.

    Scores are relative to this batch only; when every raw score is equal
    the whole batch gets 1.0 (or 0.0 if all raw scores are zero).
    """
    if not candidates:
        return []

    reference = now if now is not None else datetime.now(timezone.utc)
    w_semantic = _non_negative(weights.semantic)
    w_pagerank = _non_negative(weights.pagerank)
    w_centrality = _non_negative(weights.centrality)
    w_confidence = _non_negative(weights.confidence)
    w_recency = _non_negative(weights.recency)
    w_cochange = _non_negative(weights.cochange)

    partial: list[tuple[CandidateSignals, float, float, float, float, float, float]] = []
    for candidate in candidates:
        combined = combined_similarity(
            candidate.semantic_similarity, candidate.graph_similarity
        )
        pagerank = clamp_01(candidate.metrics.pagerank) if candidate.metrics else 0.0
        centrality = compute_centrality(candidate.metrics)
        confidence = clamp_01(candidate.confidence)
        recency = clamp_01(
            compute_recency(
                candidate.timestamp, default_recency, half_life_days, reference
            )
        )
        cochange = clamp_01(candidate.cochange)

        raw_score = (
            w_semantic * combined
            + w_pagerank * pagerank
            + w_centrality * centrality
            + w_confidence * confidence
            + w_recency * recency
            + w_cochange * cochange
        )
        partial.append(
            (candidate, combined, pagerank, centrality, confidence, recency, raw_score)
        )

    raw_scores = [entry[-1] for entry in partial]
    low = min(raw_scores)
    high = max(raw_scores)
    spread = high - low

    scored: list[ScoredCandidate] = []
    for candidate, combined, pagerank, centrality, confidence, recency, raw_score in partial:
        if spread > 0:
            score = clamp_01((raw_score - low) / spread)
        else:
            score = _uniform_score(high)
        scored.append(
            ScoredCandidate(
                candidate=candidate,
                combined_similarity=combined,
                pagerank=pagerank,
                centrality=centrality,
                confidence=confidence,
                recency=recency,
                raw_score=raw_score,
                score=score,
            )
        )

    return sort_scored_candidates(scored)

"""Candidate retrieval over a CodeGraph."""

from datetime import datetime
import logging
from typing import Any, Protocol

from ..query.errors import NoCandidatesError
from ..query.tokenize import keyword_overlap_score, normalize_whitespace
from ..query.types import CandidateSignals, Query, SimilarityResult
from ..vector.similarity import cosine_similarity
from .graph import CodeGraph

log = logging.getLogger(__name__)

MAX_ENTITY_TEXT_CHARS = 500

GRAPH_BONUS_HOP1 = 0.6
GRAPH_BONUS_HOP2 = 0.3


class QueryEmbedder(Protocol):
    def embed(self, text: str) -> list[float]: ...


def _string(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def build_entity_text(entity_id: str, props: dict[str, Any]) -> str:
    """Short text describing an entity, used for embedding and lexical match."""
    parts = [
        _string(props.get("type")),
        _string(props.get("name")) or entity_id.partition(":")[2] or entity_id,
        _string(props.get("file")),
        _string(props.get("summary")),
    ]
    text = ". ".join(part for part in parts if part)
    if len(text) <= MAX_ENTITY_TEXT_CHARS:
        return text
    return text[: MAX_ENTITY_TEXT_CHARS - 3].rstrip() + "..."


def graph_bonus_for_hop(hop_distance: int) -> float:
    """Graph locality factor by hop distance from an anchor."""
    if hop_distance == 1:
        return GRAPH_BONUS_HOP1
    if hop_distance == 2:
        return GRAPH_BONUS_HOP2
    return 0.0


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _in_scope(props: dict[str, Any], query: Query) -> bool:
    prefix = query.path_prefix
    if prefix:
        file = props.get("file")
        if not isinstance(file, str) or not file.startswith(prefix):
            return False
    language = query.language
    if language and props.get("language") and props.get("language") != language:
        return False
    return True


class GraphRetriever:
    """Semantic + graph-locality retrieval against an in-memory graph."""

    def __init__(
        self,
        graph: CodeGraph,
        embedder: QueryEmbedder | None = None,
        *,
        anchor_count: int = 6,
        max_depth: int = 2,
        breadth_factor: int = 2,
    ):
        self.graph = graph
        self.embedder = embedder
        self.anchor_count = anchor_count
        self.max_depth = max_depth
        self.breadth_factor = breadth_factor
        self._embeddings: dict[str, list[float]] = {}

    def _entity_embedding(self, entity_id: str, props: dict[str, Any]) -> list[float]:
        stored = props.get("embedding")
        if isinstance(stored, list) and stored:
            return stored
        cached = self._embeddings.get(entity_id)
        if cached is None:
            cached = self.embedder.embed(build_entity_text(entity_id, props))
            self._embeddings[entity_id] = cached
        return cached

    def _semantic_scores(
        self, intent: str, entities: list[tuple[str, dict[str, Any]]]
    ) -> tuple[dict[str, float], str]:
        if self.embedder is None:
            return (
                {
                    entity_id: keyword_overlap_score(intent, build_entity_text(entity_id, props))
                    for entity_id, props in entities
                },
                "lexical",
            )
        query_embedding = self.embedder.embed(intent)
        scores: dict[str, float] = {}
        for entity_id, props in entities:
            similarity = cosine_similarity(
                query_embedding, self._entity_embedding(entity_id, props)
            )
            scores[entity_id] = min(1.0, max(0.0, similarity))
        return scores, "semantic"

    def _graph_scores(self, semantic: dict[str, float], in_scope: set[str]) -> dict[str, float]:
        ranked = sorted(
            (item for item in semantic.items() if item[1] > 0),
            key=lambda item: (-item[1], item[0]),
        )
        anchors = ranked[: self.anchor_count]
        scores: dict[str, float] = {}
        for anchor_id, anchor_score in anchors:
            hops = self.graph.hops_from([anchor_id], self.max_depth)
            for entity_id, hop in hops.items():
                if entity_id not in in_scope or hop == 0:
                    continue
                value = anchor_score * graph_bonus_for_hop(hop)
                if value > scores.get(entity_id, 0.0):
                    scores[entity_id] = value
        return scores

    def search(self, query: Query, limit: int) -> list[CandidateSignals]:
        """Return up to ``limit * breadth_factor`` candidates for scoring.

        Raises:
            NoCandidatesError: if nothing in scope matches the intent.
        """
        intent = normalize_whitespace(query.intent)
        entities = [
            (entity_id, props)
            for entity_id, props in self.graph.entities()
            if _in_scope(props, query)
        ]
        if not intent or not entities:
            raise NoCandidatesError(f"no entities in scope for '{intent}'")

        semantic, semantic_source = self._semantic_scores(intent, entities)
        graph_scores = self._graph_scores(semantic, {entity_id for entity_id, _ in entities})
        metrics = self.graph.centrality()
        related_files = list(query.affected_files or ())

        candidates: list[CandidateSignals] = []
        for entity_id, props in entities:
            semantic_score = semantic.get(entity_id, 0.0)
            graph_score = graph_scores.get(entity_id, 0.0)
            if semantic_score <= 0 and graph_score <= 0:
                continue
            combined = max(semantic_score, graph_score)
            candidates.append(
                CandidateSignals(
                    result=SimilarityResult(
                        entity_id=entity_id,
                        entity_type=_string(props.get("type")) or "unknown",
                        similarity=combined,
                        source_text=_string(props.get("summary")),
                        source="graph" if graph_score > semantic_score else semantic_source,
                        name=_string(props.get("name")) or None,
                    ),
                    semantic_similarity=semantic_score,
                    graph_similarity=graph_score,
                    metrics=metrics.get(entity_id),
                    confidence=float(props.get("confidence", 0.5)),
                    timestamp=_parse_timestamp(props.get("updated_at")),
                    cochange=self.graph.cochange_strength(entity_id, related_files),
                    file_path=props.get("file"),
                    line=props.get("line"),
                )
            )

        if not candidates:
            raise NoCandidatesError(f"no entities matched '{intent}'")

        candidates.sort(
            key=lambda c: (-max(c.semantic_similarity, c.graph_similarity), c.result.entity_id)
        )
        breadth = max(1, limit) * max(1, self.breadth_factor)
        log.debug(f"Retrieved {len(candidates)} candidates, keeping {breadth}")
        return candidates[:breadth]

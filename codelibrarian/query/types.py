"""Typed contracts for the query answering and caching engine."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Depth(Enum):
    """Query granularity tier."""

    L0 = "L0"
    L1 = "L1"
    L2 = "L2"


@dataclass(frozen=True)
class QueryFilter:
    path_prefix: str | None = None
    language: str | None = None

    def is_empty(self) -> bool:
        return not (self.path_prefix or self.language)


@dataclass(frozen=True)
class Query:
    intent: str
    depth: Depth | None = Depth.L1
    task_type: str | None = None
    working_file: str | None = None
    affected_files: tuple[str, ...] | None = None
    filter: QueryFilter | None = None

    @property
    def path_prefix(self) -> str | None:
        return self.filter.path_prefix if self.filter else None

    @property
    def language(self) -> str | None:
        return self.filter.language if self.filter else None


@dataclass(frozen=True)
class SimilarityResult:
    entity_id: str
    entity_type: str
    similarity: float
    source_text: str = ""
    source: str = "semantic"
    name: str | None = None


@dataclass(frozen=True)
class CentralityMetrics:
    betweenness: float = 0.0
    closeness: float = 0.0
    eigenvector: float = 0.0
    pagerank: float = 0.0
    in_degree: int = 0
    out_degree: int = 0
    total_degree: int = 0
    community_id: int = -1


@dataclass(frozen=True)
class CandidateSignals:
    """Raw per-candidate signals handed to the scorer."""

    result: SimilarityResult
    semantic_similarity: float = 0.0
    graph_similarity: float = 0.0
    metrics: CentralityMetrics | None = None
    confidence: float = 0.5
    timestamp: datetime | None = None
    cochange: float = 0.0
    file_path: str | None = None
    line: int | None = None


@dataclass(frozen=True)
class ScoredCandidate:
    candidate: CandidateSignals
    combined_similarity: float
    pagerank: float
    centrality: float
    confidence: float
    recency: float
    raw_score: float
    score: float

    @property
    def entity_id(self) -> str:
        return self.candidate.result.entity_id


@dataclass(frozen=True)
class CodeSnippet:
    file_path: str
    start_line: int
    end_line: int
    content: str
    language: str | None = None


@dataclass(frozen=True)
class Version:
    major: int
    minor: int
    patch: int
    string: str
    quality_tier: str
    indexed_at: datetime
    indexer_version: str
    features: tuple[str, ...] = ()


@dataclass
class ContextPack:
    pack_id: str
    pack_type: str
    target_id: str
    summary: str
    key_facts: list[str]
    code_snippets: list[CodeSnippet]
    related_files: list[str]
    confidence: float
    created_at: datetime
    version: Version
    access_count: int = 0
    last_outcome: str = "unknown"
    success_count: int = 0
    failure_count: int = 0
    invalidation_triggers: list[str] = field(default_factory=list)


@dataclass
class CachedResponse:
    query: Query
    packs: list[ContextPack]
    disclosures: list[str]
    trace_id: str
    total_confidence: float
    cache_hit: bool
    latency_ms: float
    version: Version
    drill_down_hints: list[str] = field(default_factory=list)
    explanation: str = ""
    coverage_gaps: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ScopeResult:
    query: Query
    disclosures: tuple[str, ...]

"""NetworkX dependency graph with centrality metrics."""

import json
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import networkx as nx

from ..query.types import CentralityMetrics
from .bootstrap import BootstrapCheck
from .symbols import SymbolTable

log = logging.getLogger(__name__)

COCHANGE_RELATION = "cochange"


@dataclass
class GraphStats:
    """Statistics about the graph."""

    nodes: int
    edges: int
    entity_types: dict[str, int]
    relations: dict[str, int]

    def __str__(self) -> str:
        types_str = ", ".join(
            f"{k}: {v}" for k, v in sorted(self.entity_types.items(), key=lambda x: -x[1])
        )
        relations_str = ", ".join(
            f"{k}: {v}" for k, v in sorted(self.relations.items(), key=lambda x: -x[1])
        )
        return (
            f"Graph Stats:\n"
            f"  Nodes: {self.nodes} ({types_str})\n"
            f"  Edges: {self.edges} ({relations_str})"
        )


class CodeGraph:
    """Entity graph for an indexed codebase."""

    def __init__(self):
        self.graph = nx.DiGraph()
        self._metrics: dict[str, CentralityMetrics] | None = None

    def add_entity(
        self,
        entity_id: str,
        entity_type: str,
        *,
        name: str | None = None,
        file: str | None = None,
        line: int | None = None,
        summary: str = "",
        language: str | None = None,
        updated_at: datetime | None = None,
        confidence: float = 0.5,
        exported: bool = False,
        embedding: list[float] | None = None,
    ) -> None:
        attrs: dict[str, Any] = {
            "type": entity_type,
            "summary": summary,
            "confidence": confidence,
            "exported": exported,
        }
        if name:
            attrs["name"] = name
        if file:
            attrs["file"] = file.replace("\\", "/")
        if line is not None:
            attrs["line"] = line
        if language:
            attrs["language"] = language.lower()
        if updated_at is not None:
            attrs["updated_at"] = updated_at.isoformat()
        if embedding is not None:
            attrs["embedding"] = list(embedding)
        self.graph.add_node(entity_id, **attrs)
        self._metrics = None

    def add_edge(self, source: str, target: str, relation: str, weight: float = 1.0) -> None:
        self.graph.add_edge(source, target, type=relation, weight=weight)
        self._metrics = None

    def add_symbols(self, symbols: SymbolTable, language: str | None = None) -> int:
        """Add a module node per file and a symbol node per entry."""
        added = 0
        for entry in symbols:
            module_id = f"module:{entry.file}"
            if not self.graph.has_node(module_id):
                self.add_entity(module_id, "module", file=entry.file, language=language)
            self.add_entity(
                entry.entity_id,
                entry.kind,
                name=entry.name,
                file=entry.file,
                line=entry.line,
                language=language,
                exported=entry.exported,
            )
            self.add_edge(module_id, entry.entity_id, "contains")
            added += 1
        return added

    def node(self, entity_id: str) -> dict[str, Any]:
        if not self.graph.has_node(entity_id):
            return {}
        return dict(self.graph.nodes[entity_id])

    def entities(self) -> list[tuple[str, dict[str, Any]]]:
        return [(node_id, dict(data)) for node_id, data in self.graph.nodes(data=True)]

    def hops_from(self, anchors: list[str], max_depth: int = 2) -> dict[str, int]:
        """Undirected hop distance from the nearest anchor, up to ``max_depth``."""
        undirected = self.graph.to_undirected(as_view=True)
        hops: dict[str, int] = {}
        for anchor in anchors:
            if not self.graph.has_node(anchor):
                continue
            lengths = nx.single_source_shortest_path_length(
                undirected, anchor, cutoff=max_depth
            )
            for node_id, distance in lengths.items():
                if distance < hops.get(node_id, max_depth + 1):
                    hops[node_id] = distance
        return hops

    def cochange_strength(self, entity_id: str, files: list[str]) -> float:
        """Strongest co-change weight between the entity's file and ``files``."""
        own_file = self.node(entity_id).get("file")
        if not own_file or not files:
            return 0.0
        own_module = f"module:{own_file}"
        wanted = {"module:" + f.replace("\\", "/") for f in files}
        if own_module in wanted:
            return 1.0
        best = 0.0
        if not self.graph.has_node(own_module):
            return 0.0
        for _, other, data in self.graph.edges(own_module, data=True):
            if data.get("type") == COCHANGE_RELATION and other in wanted:
                best = max(best, float(data.get("weight", 0.0)))
        for other, _, data in self.graph.in_edges(own_module, data=True):
            if data.get("type") == COCHANGE_RELATION and other in wanted:
                best = max(best, float(data.get("weight", 0.0)))
        return min(1.0, best)

    def centrality(self) -> dict[str, CentralityMetrics]:
        """Per-entity centrality, recomputed after any mutation."""
        if self._metrics is None:
            self._metrics = self._compute_centrality()
        return self._metrics

    def _compute_centrality(self) -> dict[str, CentralityMetrics]:
        graph = self.graph
        if graph.number_of_nodes() == 0:
            return {}

        undirected = graph.to_undirected()
        betweenness = nx.betweenness_centrality(graph, normalized=True)
        closeness = nx.closeness_centrality(graph)
        try:
            eigenvector = nx.eigenvector_centrality(undirected, max_iter=500)
        except (nx.PowerIterationFailedConvergence, nx.NetworkXException) as e:
            log.warning(f"Eigenvector centrality did not converge: {e}")
            eigenvector = {}
        pagerank = nx.pagerank(graph) if graph.number_of_edges() else {
            node_id: 1.0 / graph.number_of_nodes() for node_id in graph.nodes
        }

        community_by_node: dict[str, int] = {}
        if undirected.number_of_edges():
            communities = nx.community.greedy_modularity_communities(undirected)
            for community_id, members in enumerate(communities):
                for node_id in members:
                    community_by_node[node_id] = community_id

        metrics: dict[str, CentralityMetrics] = {}
        for node_id in graph.nodes:
            metrics[node_id] = CentralityMetrics(
                betweenness=float(betweenness.get(node_id, 0.0)),
                closeness=float(closeness.get(node_id, 0.0)),
                eigenvector=float(eigenvector.get(node_id, 0.0)),
                pagerank=float(pagerank.get(node_id, 0.0)),
                in_degree=graph.in_degree(node_id),
                out_degree=graph.out_degree(node_id),
                total_degree=graph.degree(node_id),
                community_id=community_by_node.get(node_id, -1),
            )
        return metrics

    def is_bootstrap_required(self) -> BootstrapCheck:
        if self.graph.number_of_nodes() == 0:
            return BootstrapCheck(required=True, reason="index is empty")
        return BootstrapCheck(required=False)

    def get_stats(self) -> GraphStats:
        """Get statistics about the graph."""
        entity_types = Counter(
            data.get("type", "unknown") for _, data in self.graph.nodes(data=True)
        )
        relations = Counter(
            data.get("type", "unknown") for _, _, data in self.graph.edges(data=True)
        )
        return GraphStats(
            nodes=self.graph.number_of_nodes(),
            edges=self.graph.number_of_edges(),
            entity_types=dict(entity_types),
            relations=dict(relations),
        )

    def save(self, path: Path) -> None:
        """Save graph to JSON file."""
        data = nx.node_link_data(self.graph)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

    @classmethod
    def load(cls, path: Path) -> "CodeGraph":
        """Load graph from JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        code_graph = cls()
        code_graph.graph = nx.node_link_graph(data, directed=True)
        return code_graph

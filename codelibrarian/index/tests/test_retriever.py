from datetime import datetime, timezone

import pytest

from codelibrarian.index.graph import CodeGraph
from codelibrarian.index.retriever import (
    MAX_ENTITY_TEXT_CHARS,
    GraphRetriever,
    build_entity_text,
    graph_bonus_for_hop,
)
from codelibrarian.query.errors import NoCandidatesError
from codelibrarian.query.types import Query, QueryFilter

UPDATED = datetime(2026, 1, 20, tzinfo=timezone.utc)


class _Embedder:
    def __init__(self):
        self.texts: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.texts.append(text)
        lowered = text.lower()
        return [float("token" in lowered), float("database" in lowered), 0.1]


@pytest.fixture
def graph() -> CodeGraph:
    g = CodeGraph()
    g.add_entity(
        "func:src/auth/login.py#login",
        "function",
        name="login",
        file="src/auth/login.py",
        line=12,
        summary="Validate user credentials and issue a login token",
        language="python",
        updated_at=UPDATED,
        confidence=0.9,
    )
    g.add_entity(
        "func:src/auth/token.py#refresh",
        "function",
        name="refresh",
        file="src/auth/token.py",
        line=3,
        summary="Refresh an expired token",
        language="python",
    )
    g.add_entity(
        "func:src/auth/session.py#store",
        "function",
        name="store",
        file="src/auth/session.py",
        summary="Persist session state",
        language="python",
    )
    g.add_entity(
        "func:src/db/pool.py#connect",
        "function",
        name="connect",
        file="src/db/pool.py",
        summary="Open a database connection pool",
        language="python",
    )
    g.add_edge("func:src/auth/login.py#login", "func:src/auth/session.py#store", "calls")
    return g


def test_entity_text_and_hop_bonus():
    text = build_entity_text("func:a", {"type": "function", "name": "a", "summary": "x" * 1000})
    assert text.startswith("function. a. ")
    assert len(text) == MAX_ENTITY_TEXT_CHARS
    assert build_entity_text("type:Config", {}) == "Config"
    assert graph_bonus_for_hop(1) == 0.6
    assert graph_bonus_for_hop(2) == 0.3
    assert graph_bonus_for_hop(3) == 0.0


def test_lexical_search_ranks_and_carries_signals(graph: CodeGraph):
    retriever = GraphRetriever(graph)

    candidates = retriever.search(
        Query(intent="login token", affected_files=("src/auth/token.py",)), limit=5
    )

    ids = [c.result.entity_id for c in candidates]
    assert ids[0] == "func:src/auth/login.py#login"
    assert "func:src/db/pool.py#connect" not in ids

    top = candidates[0]
    assert top.result.source == "lexical"
    assert top.result.name == "login"
    assert top.confidence == 0.9
    assert top.timestamp == UPDATED
    assert top.file_path == "src/auth/login.py"
    assert top.line == 12
    assert top.metrics is not None

    by_id = {c.result.entity_id: c for c in candidates}
    assert by_id["func:src/auth/token.py#refresh"].cochange == 1.0
    assert top.cochange == 0.0


def test_graph_neighbours_are_pulled_in(graph: CodeGraph):
    candidates = GraphRetriever(graph).search(Query(intent="login token"), limit=5)

    neighbour = next(c for c in candidates if c.result.entity_id == "func:src/auth/session.py#store")
    assert neighbour.semantic_similarity == 0.0
    assert neighbour.graph_similarity == pytest.approx(candidates[0].semantic_similarity * 0.6)
    assert neighbour.result.source == "graph"


def test_embedder_scores_are_cosine_similarity(graph: CodeGraph):
    embedder = _Embedder()
    candidates = GraphRetriever(graph, embedder).search(Query(intent="database"), limit=1)

    assert candidates[0].result.entity_id == "func:src/db/pool.py#connect"
    assert candidates[0].semantic_similarity == pytest.approx(1.0)
    assert candidates[0].result.source == "semantic"
    assert len(candidates) <= 2


def test_stored_embeddings_are_not_recomputed(graph: CodeGraph):
    graph.add_entity("doc:README.md", "document", embedding=[0.0, 1.0, 0.1])
    embedder = _Embedder()

    GraphRetriever(graph, embedder).search(Query(intent="database"), limit=5)

    assert not any(text.startswith("document") for text in embedder.texts)


def test_scope_filters_apply(graph: CodeGraph):
    retriever = GraphRetriever(graph)

    scoped = retriever.search(
        Query(intent="login token refresh", filter=QueryFilter(path_prefix="src/auth/token")),
        limit=5,
    )
    assert [c.result.entity_id for c in scoped] == ["func:src/auth/token.py#refresh"]

    with pytest.raises(NoCandidatesError):
        retriever.search(
            Query(intent="login token", filter=QueryFilter(path_prefix="src/db/")), limit=5
        )
    with pytest.raises(NoCandidatesError):
        retriever.search(Query(intent="login", filter=QueryFilter(language="go")), limit=5)


def test_empty_graph_or_intent_has_no_candidates(graph: CodeGraph):
    with pytest.raises(NoCandidatesError):
        GraphRetriever(CodeGraph()).search(Query(intent="anything"), limit=5)
    with pytest.raises(NoCandidatesError):
        GraphRetriever(graph).search(Query(intent="   "), limit=5)

"""Entity and query embeddings from a local sentence-transformers model."""

import logging
import threading
from typing import Any, Iterator

from sentence_transformers import SentenceTransformer

from ..index.retriever import build_entity_text

log = logging.getLogger(__name__)

# Small general-purpose model; code-aware models can be passed by name.
DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
MAX_TEXT_CHARS = 8000
MAX_CACHED_QUERIES = 256


def _truncate(text: str) -> str:
    return text if len(text) <= MAX_TEXT_CHARS else text[:MAX_TEXT_CHARS]


class Embedder:
    """Normalized embeddings for intents and graph entities.

    The model is loaded on first use. ``encoder`` accepts any object with a
    sentence-transformers style ``encode`` method.
    """

    def __init__(self, model_name: str = DEFAULT_MODEL, *, encoder: Any = None):
        self.model_name = model_name
        self._encoder = encoder
        self._load_lock = threading.Lock()
        self._cache_lock = threading.Lock()
        self._query_cache: dict[str, list[float]] = {}

    @property
    def encoder(self) -> Any:
        if self._encoder is None:
            with self._load_lock:
                if self._encoder is None:
                    log.info(f"Loading embedding model: {self.model_name}")
                    self._encoder = SentenceTransformer(self.model_name)
        return self._encoder

    def embed(self, text: str) -> list[float]:
        """Embed one text; repeated intents are served from a small cache."""
        text = _truncate(text)
        with self._cache_lock:
            cached = self._query_cache.get(text)
        if cached is not None:
            return cached
        vector = self.encoder.encode(text, normalize_embeddings=True).tolist()
        with self._cache_lock:
            if text not in self._query_cache and len(self._query_cache) >= MAX_CACHED_QUERIES:
                self._query_cache.pop(next(iter(self._query_cache)))
            self._query_cache[text] = vector
        return vector

    def embed_batch(self, texts: list[str], batch_size: int = 32) -> Iterator[list[float]]:
        """Yield embeddings for ``texts`` in order, encoding ``batch_size`` at a time."""
        texts = [_truncate(t) for t in texts]
        for i in range(0, len(texts), batch_size):
            embeddings = self.encoder.encode(
                texts[i : i + batch_size],
                normalize_embeddings=True,
                show_progress_bar=False,
            )
            for emb in embeddings:
                yield emb.tolist()

    def embed_entities(self, graph, batch_size: int = 32) -> int:
        """Attach embeddings to graph entities that have none; returns how many."""
        pending = [
            (entity_id, build_entity_text(entity_id, props))
            for entity_id, props in graph.entities()
            if not props.get("embedding")
        ]
        if not pending:
            return 0
        vectors = self.embed_batch([text for _, text in pending], batch_size)
        for (entity_id, _), vector in zip(pending, vectors):
            graph.graph.nodes[entity_id]["embedding"] = vector
        log.info(f"Embedded {len(pending)} entities with {self.model_name}")
        return len(pending)

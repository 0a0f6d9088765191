"""Vector similarity and local embeddings."""

from .similarity import cosine_similarity

__all__ = ["cosine_similarity"]

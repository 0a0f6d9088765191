"""Deterministic and semantic response caches."""

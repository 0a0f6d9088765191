"""Scope normalization, scoring, biasing and the query engine."""

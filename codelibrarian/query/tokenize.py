"""Deterministic tokenization and lexical scoring."""

from collections import Counter
import re

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_WS_RE = re.compile(r"\s+")
_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_CAMEL_RE = re.compile(r"[a-z0-9][A-Z]|[A-Z]{2}[a-z]")


def normalize_whitespace(text: str | None) -> str:
    """Collapse whitespace to single spaces."""
    if text is None:
        return ""
    return _WS_RE.sub(" ", text.replace("\n", " ").replace("\t", " ")).strip()


def tokenize(text: str | None) -> tuple[str, ...]:
    """Tokenize text deterministically (lowercase alnum tokens)."""
    normalized = normalize_whitespace(text).lower()
    return tuple(_TOKEN_RE.findall(normalized))


def looks_like_identifier(word: str) -> bool:
    """True for camelCase, PascalCase, snake_case or dotted-call identifiers."""
    if "_" in word.strip("_") and _IDENTIFIER_RE.fullmatch(word):
        return True
    return bool(_IDENTIFIER_RE.fullmatch(word) and _CAMEL_RE.search(word))


def extract_identifiers(text: str | None) -> tuple[str, ...]:
    """Return code-like identifiers in order of appearance.

    Backticked spans and ``name()`` call forms count even when the name is
    a plain lowercase word.
    """
    raw = normalize_whitespace(text)
    found: list[str] = []

    for span in re.findall(r"`([^`]+)`", raw):
        for word in _IDENTIFIER_RE.findall(span):
            found.append(word)
    for word in re.findall(r"([A-Za-z_][A-Za-z0-9_]*)\(\)", raw):
        found.append(word)
    for word in _IDENTIFIER_RE.findall(raw):
        if looks_like_identifier(word):
            found.append(word)

    seen: set[str] = set()
    ordered: list[str] = []
    for word in found:
        if word not in seen:
            seen.add(word)
            ordered.append(word)
    return tuple(ordered)


def keyword_overlap_score(query: str, candidate: str) -> float:
    """Compute deterministic F1-style token overlap in [0, 1]."""
    q_tokens = tokenize(query)
    c_tokens = tokenize(candidate)

    if not q_tokens or not c_tokens:
        return 0.0

    q_counter = Counter(q_tokens)
    c_counter = Counter(c_tokens)
    overlap = sum(
        min(q_counter[t], c_counter[t]) for t in (q_counter.keys() & c_counter.keys())
    )

    if overlap == 0:
        return 0.0

    precision = overlap / len(c_tokens)
    recall = overlap / len(q_tokens)
    denom = precision + recall
    if denom == 0:
        return 0.0

    score = 2.0 * precision * recall / denom
    if score < 0:
        return 0.0
    if score > 1:
        return 1.0
    return score

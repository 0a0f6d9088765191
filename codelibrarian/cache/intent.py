"""Intent classification and canonicalization for the semantic cache."""

from enum import Enum
import re

from ..query.tokenize import (
    extract_identifiers,
    keyword_overlap_score,
    normalize_whitespace,
)
from ..query.types import Query


class IntentCategory(Enum):
    LOOKUP = "lookup"
    CONCEPTUAL = "conceptual"
    DIAGNOSTIC = "diagnostic"


_WORD_RE = re.compile(r"[a-z0-9_]+")

STOPWORDS = frozenset(
    {
        "a", "about", "all", "an", "and", "any", "are", "as", "at", "be", "by",
        "can", "could", "did", "do", "does", "for", "from", "give", "how",
        "i", "in", "into", "is", "it", "its", "me", "my", "of", "on", "or",
        "our", "please", "should", "show", "tell", "that", "the", "there",
        "this", "to", "us", "was", "we", "were", "what", "when", "where",
        "which", "who", "why", "with", "would", "you",
    }
)

ABBREVIATIONS = {
    "auth": "authentication",
    "authn": "authentication",
    "authz": "authorization",
    "cfg": "configuration",
    "config": "configuration",
    "conf": "configuration",
    "db": "database",
    "deps": "dependencies",
    "dep": "dependency",
    "env": "environment",
    "init": "initialization",
    "msg": "message",
    "perf": "performance",
    "repo": "repository",
    "req": "request",
    "res": "response",
    "resp": "response",
}

REFERENCE_KEYWORDS = frozenset(
    {
        "class", "declaration", "declared", "def", "defined", "definition",
        "fn", "func", "function", "impl", "implementation", "implemented",
        "interface", "method", "signature",
    }
)

# Suffix tokens that all refer to "the code that defines this symbol".
LOOKUP_SYNONYMS = {
    "def": "definition",
    "defined": "definition",
    "definition": "definition",
    "fn": "definition",
    "func": "definition",
    "function": "definition",
    "impl": "definition",
    "implementation": "definition",
    "implemented": "definition",
    "method": "definition",
}

FAILURE_TERMS = frozenset(
    {
        "broken", "bug", "bugs", "crash", "crashed", "crashes", "crashing",
        "error", "errors", "exception", "exceptions", "fail", "failed",
        "failing", "fails", "failure", "failures", "flaky", "hang", "hangs",
        "panic", "regression", "timeout", "timeouts", "traceback",
    }
)

DIAGNOSTIC_SYNONYMS = {term: "failure" for term in FAILURE_TERMS}
DIAGNOSTIC_SYNONYMS.update({"timeout": "timeout", "timeouts": "timeout", "hang": "timeout", "hangs": "timeout"})

# "why does X work" asks for an explanation, not a diagnosis.
_EXPLANATORY_MARKERS = frozenset({"work", "works", "design", "designed", "exist", "exists", "architecture"})

_WORK_FORMS = frozenset({"work", "works", "working"})
# Contractions split on the apostrophe, so "doesn't" arrives as "doesn" "t".
_NEGATIONS = frozenset({"not", "never", "no", "cannot", "doesn", "don", "didn", "isn", "aren", "wasn", "won", "t"})
_NEGATION_WINDOW = 3

# Sentence-initial capitals that are not type names.
_LEADING_VERBS = frozenset({"find", "list", "locate", "look", "search"})

CONCEPTUAL_FILLER = frozenset(
    {
        "describe", "explain", "explanation", "flow", "flows", "happen",
        "happens", "overview", "through", "understand", "walk", "work",
        "working", "works",
    }
)


def _words(intent: str | None) -> list[str]:
    return _WORD_RE.findall(normalize_whitespace(intent).lower())


def _is_type_name(word: str, position: int) -> bool:
    if len(word) < 2 or not word[0].isupper():
        return False
    if position > 0:
        return True
    # The first word is capitalized anyway; only a content word counts there.
    lowered = word.lower()
    return lowered not in STOPWORDS and lowered not in CONCEPTUAL_FILLER and lowered not in _LEADING_VERBS


def _has_symbol(intent: str) -> bool:
    if extract_identifiers(intent):
        return True
    raw_words = re.findall(r"[A-Za-z_][A-Za-z0-9_]*", intent)
    return any(_is_type_name(word, i) for i, word in enumerate(raw_words))


def _negated_work(words: list[str]) -> bool:
    for i, word in enumerate(words):
        if word in _WORK_FORMS and _NEGATIONS.intersection(words[max(0, i - _NEGATION_WINDOW) : i]):
            return True
    return False


def intent_identifiers(intent: str | None) -> tuple[str, ...]:
    """Lowercased code identifiers of an intent, in order of appearance."""
    return tuple(name.lower() for name in extract_identifiers(intent))


def identifier_order_conflicts(left: tuple[str, ...], right: tuple[str, ...]) -> bool:
    """True when two intents name the same identifiers in a different order.

    "does a call b" and "does b call a" share every token but not a meaning.
    """
    shared = set(left) & set(right)
    if len(shared) < 2:
        return False
    return [name for name in left if name in shared] != [name for name in right if name in shared]


def classify_category(intent: str | None) -> IntentCategory | None:
    """Bucket an intent; ``None`` when there is nothing to classify."""
    words = _words(intent)
    if not words:
        return None
    vocabulary = set(words)

    if vocabulary & FAILURE_TERMS:
        return IntentCategory.DIAGNOSTIC
    if _negated_work(words):
        return IntentCategory.DIAGNOSTIC
    if "why" in vocabulary and not vocabulary & _EXPLANATORY_MARKERS:
        return IntentCategory.DIAGNOSTIC

    if vocabulary & REFERENCE_KEYWORDS and _has_symbol(normalize_whitespace(intent)):
        return IntentCategory.LOOKUP
    return IntentCategory.CONCEPTUAL


def normalize_intent(intent: str | None, category: IntentCategory | None = None) -> str:
    """Canonical form: identifiers in their original order, then sorted keywords.

    Keywords are lowercased, de-stopworded and synonym-collapsed.
    """
    words = _words(intent)
    if not words:
        return ""
    resolved = category or classify_category(intent)
    identifiers = set(intent_identifiers(intent))

    ordered: list[str] = []
    canonical: set[str] = set()
    for word in words:
        if word in identifiers:
            if word not in ordered:
                ordered.append(word)
            continue
        token = word.strip("_")
        if not token or token in STOPWORDS:
            continue
        token = ABBREVIATIONS.get(token, token)
        if resolved is IntentCategory.LOOKUP:
            token = LOOKUP_SYNONYMS.get(token, token)
        elif resolved is IntentCategory.DIAGNOSTIC:
            token = DIAGNOSTIC_SYNONYMS.get(token, token)
        elif resolved is IntentCategory.CONCEPTUAL and token in CONCEPTUAL_FILLER:
            continue
        canonical.add(token)
    return " ".join([*ordered, *sorted(canonical - set(ordered))])


def compute_intent_similarity(a: str | None, b: str | None) -> float:
    """Token-overlap similarity of two intents after normalization.

    Intents that name the same identifiers in a different order score 0.0.
    """
    left = normalize_intent(a)
    right = normalize_intent(b)
    if not left or not right:
        return 0.0
    if identifier_order_conflicts(intent_identifiers(a), intent_identifiers(b)):
        return 0.0
    if left == right:
        return 1.0
    return keyword_overlap_score(left, right)


def build_scope_signature(query: Query) -> str:
    """Partition key from filters and depth; the intent text is excluded."""
    parts = (
        ("path", query.path_prefix or "*"),
        ("lang", query.language or "*"),
        ("task", query.task_type or "*"),
        ("depth", query.depth.value if query.depth else "*"),
    )
    return "|".join(f"{name}={value}" for name, value in parts)

"""Entity-kind re-ranking of similarity results."""

from dataclasses import replace
from enum import Enum
from pathlib import PurePosixPath
import re

from .scorer import clamp_01
from .types import SimilarityResult

# Documents close a third of the gap a definition would; tunable.
DOCUMENT_BIAS_DAMPING = 1.0 / 3.0
# Named usages lose up to 70% of the boost fraction; tunable.
USAGE_PENALTY_RATIO = 0.7

_DEFINITION_KINDS = frozenset({"type", "interface"})
_MODULE_KINDS = frozenset({"mod", "module", "file"})
_DECLARATION_STEMS = frozenset({"types", "interfaces", "typings", "type_defs", "typedefs"})
_DECLARATION_SUFFIXES = (".d.ts", ".d.mts", ".d.cts", ".pyi")
_INTERFACE_NAME_RE = re.compile(r"^I[A-Z][A-Za-z0-9_]*$")


class EntityRole(Enum):
    """How an entity participates in the code it names."""

    DEFINITION = "definition"
    USAGE = "usage"
    UNKNOWN = "unknown"


def split_entity_id(entity_id: str) -> tuple[str, str]:
    """Split ``kind:locator``; entities without a kind get an empty one."""
    kind, sep, locator = entity_id.partition(":")
    if not sep:
        return "", entity_id
    return kind.strip().lower(), locator


def is_declarations_file(path: str) -> bool:
    """True for files that hold type or interface declarations."""
    name = PurePosixPath(path.replace("\\", "/")).name.lower()
    if not name:
        return False
    if name.endswith(_DECLARATION_SUFFIXES):
        return True
    stem = name.split(".", 1)[0]
    return stem in _DECLARATION_STEMS


def is_interface_name(name: str | None) -> bool:
    """``IStorage`` style names."""
    return bool(name and _INTERFACE_NAME_RE.match(name.strip()))


def classify_entity_role(entity_id: str, name: str | None = None) -> EntityRole:
    kind, locator = split_entity_id(entity_id)
    if kind in _DEFINITION_KINDS:
        return EntityRole.DEFINITION
    if is_interface_name(name):
        return EntityRole.DEFINITION
    if kind in _MODULE_KINDS and is_declarations_file(locator):
        return EntityRole.DEFINITION
    if name and name.strip():
        return EntityRole.USAGE
    return EntityRole.UNKNOWN


def is_definition_entity(entity_id: str, name: str | None = None) -> bool:
    return classify_entity_role(entity_id, name) is EntityRole.DEFINITION


def _sort_by_similarity(results: list[SimilarityResult]) -> list[SimilarityResult]:
    return sorted(results, key=lambda result: -result.similarity)


def apply_document_bias(
    results: list[SimilarityResult],
    boost_factor: float,
) -> list[SimilarityResult]:
    """Pull document similarity toward 1 by a damped share of the boost."""
    boost = clamp_01(boost_factor)
    adjusted: list[SimilarityResult] = []
    for result in results:
        similarity = clamp_01(result.similarity)
        if result.entity_type == "document":
            similarity = clamp_01(
                similarity + (1.0 - similarity) * boost * DOCUMENT_BIAS_DAMPING
            )
        adjusted.append(replace(result, similarity=similarity))
    return _sort_by_similarity(adjusted)


def apply_definition_bias(
    results: list[SimilarityResult],
    boost_factor: float,
    name_by_id: dict[str, str] | None = None,
) -> list[SimilarityResult]:
    """Promote definitions and demote named usage sites.

    Names come from ``name_by_id`` first, then from the result itself.
    Unnamed non-definitions keep their similarity.
    """
    boost = clamp_01(boost_factor)
    names = name_by_id or {}
    adjusted: list[SimilarityResult] = []
    for result in results:
        similarity = clamp_01(result.similarity)
        name = names.get(result.entity_id) or result.name
        role = classify_entity_role(result.entity_id, name)
        if role is EntityRole.DEFINITION:
            similarity = similarity + (1.0 - similarity) * boost
        elif role is EntityRole.USAGE:
            similarity = similarity * (1.0 - boost * USAGE_PENALTY_RATIO)
        adjusted.append(replace(result, similarity=clamp_01(similarity)))
    return _sort_by_similarity(adjusted)

"""Context pack assembly and usage bookkeeping."""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
import hashlib

from .tokenize import normalize_whitespace
from .types import CodeSnippet, ContextPack, ScoredCandidate, Version

MAX_SUMMARY_CHARS = 240

_PACK_TYPES = {
    "function": "function_context",
    "method": "function_context",
    "type": "type_context",
    "interface": "type_context",
    "class": "type_context",
    "module": "module_context",
    "file": "module_context",
    "document": "doc_context",
}

OUTCOME_SUCCESS = "success"
OUTCOME_FAILURE = "failure"


def pack_type_for(entity_type: str) -> str:
    return _PACK_TYPES.get(entity_type, "entity_context")


def pack_id_for(target_id: str, version: Version) -> str:
    digest = hashlib.sha256(f"{target_id}@{version.string}".encode("utf-8")).hexdigest()
    return f"pack:{digest[:16]}"


def _summary(scored: ScoredCandidate) -> str:
    result = scored.candidate.result
    text = normalize_whitespace(result.source_text)
    if not text:
        label = result.name or result.entity_id
        return f"{result.entity_type} {label}"
    if len(text) <= MAX_SUMMARY_CHARS:
        return text
    return text[: MAX_SUMMARY_CHARS - 3].rstrip() + "..."


def _key_facts(scored: ScoredCandidate) -> list[str]:
    candidate = scored.candidate
    facts = [f"kind: {candidate.result.entity_type}"]
    if candidate.file_path:
        location = candidate.file_path
        if candidate.line is not None:
            location = f"{location}:{candidate.line}"
        facts.append(f"location: {location}")
    facts.append(f"retrieved via: {candidate.result.source}")
    facts.append(f"relevance: {scored.score:.2f}")
    if candidate.metrics is not None:
        facts.append(f"centrality: {scored.centrality:.2f}")
        facts.append(f"pagerank: {scored.pagerank:.3f}")
        if candidate.metrics.community_id >= 0:
            facts.append(f"community: {candidate.metrics.community_id}")
    return facts


def _snippets(scored: ScoredCandidate) -> list[CodeSnippet]:
    candidate = scored.candidate
    text = candidate.result.source_text
    if not candidate.file_path or candidate.line is None or not text.strip():
        return []
    line_count = max(1, len(text.splitlines()))
    return [
        CodeSnippet(
            file_path=candidate.file_path,
            start_line=candidate.line,
            end_line=candidate.line + line_count - 1,
            content=text,
        )
    ]


def build_context_pack(
    scored: ScoredCandidate,
    version: Version,
    *,
    now: datetime | None = None,
) -> ContextPack:
    result = scored.candidate.result
    file_path = scored.candidate.file_path
    return ContextPack(
        pack_id=pack_id_for(result.entity_id, version),
        pack_type=pack_type_for(result.entity_type),
        target_id=result.entity_id,
        summary=_summary(scored),
        key_facts=_key_facts(scored),
        code_snippets=_snippets(scored),
        related_files=[file_path] if file_path else [],
        confidence=scored.confidence,
        created_at=now or datetime.now(timezone.utc),
        version=version,
        invalidation_triggers=[file_path] if file_path else [],
    )


def build_context_packs(
    ranked: list[ScoredCandidate],
    version: Version,
    *,
    now: datetime | None = None,
) -> list[ContextPack]:
    """One pack per ranked candidate, in rank order."""
    created = now or datetime.now(timezone.utc)
    return [build_context_pack(scored, version, now=created) for scored in ranked]


@dataclass
class PackUsage:
    """Access and outcome counters tracked per pack id."""

    access_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    last_outcome: str = "unknown"

    def record_access(self) -> None:
        self.access_count += 1

    def record_outcome(self, success: bool) -> None:
        if success:
            self.success_count += 1
            self.last_outcome = OUTCOME_SUCCESS
        else:
            self.failure_count += 1
            self.last_outcome = OUTCOME_FAILURE


def apply_usage(pack: ContextPack, usage: PackUsage) -> ContextPack:
    """Copy of ``pack`` carrying the given counters."""
    return replace(
        pack,
        access_count=usage.access_count,
        success_count=usage.success_count,
        failure_count=usage.failure_count,
        last_outcome=usage.last_outcome,
    )

"""Versioned JSON encoding of cached responses.

Encoding is explicit per record type so that timestamp restoration and
payload rejection are visible steps rather than reflection side effects.
``deserialize_response`` never raises: anything it cannot rebuild yields
``None`` and the caller treats it as a cache miss.
"""

from datetime import datetime, timezone
import json
import logging
from typing import Any

from ..query.errors import MalformedCacheEntryError
from ..query.types import (
    CachedResponse,
    CodeSnippet,
    ContextPack,
    Depth,
    Query,
    QueryFilter,
    Version,
)

log = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_REQUIRED_RESPONSE_FIELDS = ("query", "packs", "version")


def _encode_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _decode_datetime(value: Any, field_name: str) -> datetime:
    if not isinstance(value, str):
        raise MalformedCacheEntryError(f"{field_name} must be an ISO timestamp")
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise MalformedCacheEntryError(f"{field_name} is not a timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _require(data: dict[str, Any], key: str, kind: type | tuple[type, ...]) -> Any:
    if key not in data:
        raise MalformedCacheEntryError(f"missing field {key!r}")
    value = data[key]
    if isinstance(value, bool) and kind in (int, float, (int, float)):
        raise MalformedCacheEntryError(f"field {key!r} has the wrong type")
    if not isinstance(value, kind):
        raise MalformedCacheEntryError(f"field {key!r} has the wrong type")
    return value


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise MalformedCacheEntryError(f"field {key!r} has the wrong type")
    return value


def _str_list(data: dict[str, Any], key: str) -> list[str]:
    values = _require(data, key, list)
    if not all(isinstance(item, str) for item in values):
        raise MalformedCacheEntryError(f"field {key!r} must be a list of strings")
    return list(values)


def _as_mapping(value: Any, field_name: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise MalformedCacheEntryError(f"{field_name} must be an object")
    return value


# ---------------------------------------------------------------------------
# Encoders


def encode_query(query: Query) -> dict[str, Any]:
    return {
        "intent": query.intent,
        "depth": query.depth.value if query.depth else None,
        "task_type": query.task_type,
        "working_file": query.working_file,
        "affected_files": list(query.affected_files)
        if query.affected_files is not None
        else None,
        "filter": {
            "path_prefix": query.filter.path_prefix,
            "language": query.filter.language,
        }
        if query.filter is not None
        else None,
    }


def encode_version(version: Version) -> dict[str, Any]:
    return {
        "major": version.major,
        "minor": version.minor,
        "patch": version.patch,
        "string": version.string,
        "quality_tier": version.quality_tier,
        "indexed_at": _encode_datetime(version.indexed_at),
        "indexer_version": version.indexer_version,
        "features": list(version.features),
    }


def encode_snippet(snippet: CodeSnippet) -> dict[str, Any]:
    return {
        "file_path": snippet.file_path,
        "start_line": snippet.start_line,
        "end_line": snippet.end_line,
        "content": snippet.content,
        "language": snippet.language,
    }


def encode_pack(pack: ContextPack) -> dict[str, Any]:
    return {
        "pack_id": pack.pack_id,
        "pack_type": pack.pack_type,
        "target_id": pack.target_id,
        "summary": pack.summary,
        "key_facts": list(pack.key_facts),
        "code_snippets": [encode_snippet(s) for s in pack.code_snippets],
        "related_files": list(pack.related_files),
        "confidence": pack.confidence,
        "created_at": _encode_datetime(pack.created_at),
        "version": encode_version(pack.version),
        "access_count": pack.access_count,
        "last_outcome": pack.last_outcome,
        "success_count": pack.success_count,
        "failure_count": pack.failure_count,
        "invalidation_triggers": list(pack.invalidation_triggers),
    }


def encode_response(response: CachedResponse) -> dict[str, Any]:
    return {
        "query": encode_query(response.query),
        "packs": [encode_pack(pack) for pack in response.packs],
        "disclosures": list(response.disclosures),
        "trace_id": response.trace_id,
        "total_confidence": response.total_confidence,
        "cache_hit": response.cache_hit,
        "latency_ms": response.latency_ms,
        "version": encode_version(response.version),
        "drill_down_hints": list(response.drill_down_hints),
        "explanation": response.explanation,
        "coverage_gaps": list(response.coverage_gaps),
    }


def serialize_response(response: CachedResponse) -> str:
    """Encode a response as self-describing JSON text."""
    payload = {"schema": SCHEMA_VERSION, "response": encode_response(response)}
    return json.dumps(payload, sort_keys=True, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Decoders


def decode_query(data: Any) -> Query:
    data = _as_mapping(data, "query")
    depth_raw = data.get("depth")
    try:
        depth = Depth(depth_raw) if depth_raw is not None else None
    except ValueError as exc:
        raise MalformedCacheEntryError(f"unknown depth {depth_raw!r}") from exc

    affected = data.get("affected_files")
    if affected is not None:
        if not isinstance(affected, list) or not all(isinstance(f, str) for f in affected):
            raise MalformedCacheEntryError("affected_files must be a list of strings")
        affected = tuple(affected)

    filter_data = data.get("filter")
    query_filter = None
    if filter_data is not None:
        filter_data = _as_mapping(filter_data, "filter")
        query_filter = QueryFilter(
            path_prefix=_optional_str(filter_data, "path_prefix"),
            language=_optional_str(filter_data, "language"),
        )

    return Query(
        intent=_require(data, "intent", str),
        depth=depth,
        task_type=_optional_str(data, "task_type"),
        working_file=_optional_str(data, "working_file"),
        affected_files=affected,
        filter=query_filter,
    )


def decode_version(data: Any) -> Version:
    data = _as_mapping(data, "version")
    return Version(
        major=_require(data, "major", int),
        minor=_require(data, "minor", int),
        patch=_require(data, "patch", int),
        string=_require(data, "string", str),
        quality_tier=_require(data, "quality_tier", str),
        indexed_at=_decode_datetime(data.get("indexed_at"), "version.indexed_at"),
        indexer_version=_require(data, "indexer_version", str),
        features=tuple(_str_list(data, "features")),
    )


def decode_snippet(data: Any) -> CodeSnippet:
    data = _as_mapping(data, "code_snippet")
    return CodeSnippet(
        file_path=_require(data, "file_path", str),
        start_line=_require(data, "start_line", int),
        end_line=_require(data, "end_line", int),
        content=_require(data, "content", str),
        language=_optional_str(data, "language"),
    )


def decode_pack(data: Any) -> ContextPack:
    data = _as_mapping(data, "pack")
    snippets = _require(data, "code_snippets", list)
    return ContextPack(
        pack_id=_require(data, "pack_id", str),
        pack_type=_require(data, "pack_type", str),
        target_id=_require(data, "target_id", str),
        summary=_require(data, "summary", str),
        key_facts=_str_list(data, "key_facts"),
        code_snippets=[decode_snippet(item) for item in snippets],
        related_files=_str_list(data, "related_files"),
        confidence=float(_require(data, "confidence", (int, float))),
        created_at=_decode_datetime(data.get("created_at"), "pack.created_at"),
        version=decode_version(data.get("version")),
        access_count=_require(data, "access_count", int),
        last_outcome=_require(data, "last_outcome", str),
        success_count=_require(data, "success_count", int),
        failure_count=_require(data, "failure_count", int),
        invalidation_triggers=_str_list(data, "invalidation_triggers"),
    )


def decode_response(data: Any) -> CachedResponse:
    data = _as_mapping(data, "response")
    for key in _REQUIRED_RESPONSE_FIELDS:
        if key not in data:
            raise MalformedCacheEntryError(f"missing field {key!r}")

    packs = _require(data, "packs", list)
    return CachedResponse(
        query=decode_query(data["query"]),
        packs=[decode_pack(item) for item in packs],
        disclosures=_str_list(data, "disclosures"),
        trace_id=_require(data, "trace_id", str),
        total_confidence=float(_require(data, "total_confidence", (int, float))),
        cache_hit=_require(data, "cache_hit", bool),
        latency_ms=float(_require(data, "latency_ms", (int, float))),
        version=decode_version(data["version"]),
        drill_down_hints=_str_list(data, "drill_down_hints"),
        explanation=_require(data, "explanation", str),
        coverage_gaps=_str_list(data, "coverage_gaps"),
    )


def deserialize_response(text: str | bytes | None) -> CachedResponse | None:
    """Decode a cached response; ``None`` for anything malformed."""
    if text is None:
        return None
    try:
        payload = json.loads(text)
    except (TypeError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    if payload.get("schema") != SCHEMA_VERSION:
        return None
    try:
        return decode_response(payload.get("response"))
    except MalformedCacheEntryError as e:
        log.debug(f"Rejected cache payload: {e}")
        return None

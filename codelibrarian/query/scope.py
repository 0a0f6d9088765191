"""Workspace-aware scope normalization for incoming queries."""

from dataclasses import replace
from fnmatch import fnmatchcase
import json
import logging
import os
from pathlib import Path, PurePosixPath
import threading
import tomllib

import yaml

from .errors import InvalidScopeError
from .types import Query, QueryFilter, ScopeResult

log = logging.getLogger(__name__)

SCOPE_AUTO_DETECTED = "scope_auto_detected"

_patterns_cache: dict[str, tuple[str, ...]] = {}
_patterns_lock = threading.Lock()


def normalize_path(value: str) -> str:
    """Use forward slashes regardless of platform."""
    return value.replace("\\", "/")


def ensure_trailing_slash(value: str) -> str:
    return value if value.endswith("/") else f"{value}/"


def clear_workspace_cache() -> None:
    """Forget cached workspace manifest patterns."""
    with _patterns_lock:
        _patterns_cache.clear()


def to_workspace_relative(workspace_root: str | Path, candidate: str) -> str | None:
    """Resolve ``candidate`` against the workspace and return a relative posix path.

    Returns ``""`` for the workspace root itself and ``None`` when the path
    escapes the workspace.
    """
    root = Path(workspace_root).resolve()
    raw = Path(candidate.strip())
    resolved = raw.resolve() if raw.is_absolute() else (root / raw).resolve()
    try:
        relative = resolved.relative_to(root)
    except ValueError:
        return None
    text = normalize_path(relative.as_posix())
    return "" if text == "." else text


def _parse_workspace_patterns(workspaces) -> list[str]:
    if isinstance(workspaces, dict):
        workspaces = workspaces.get("packages")
    if not isinstance(workspaces, list):
        return []
    return [
        entry.strip()
        for entry in workspaces
        if isinstance(entry, str) and entry.strip()
    ]


def _read_package_json(root: Path) -> list[str]:
    path = root / "package.json"
    if not path.exists():
        return []
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        log.warning(f"Ignoring unreadable workspace manifest {path}: {e}")
        return []
    if not isinstance(data, dict):
        return []
    return _parse_workspace_patterns(data.get("workspaces"))


def _read_pnpm_workspace(root: Path) -> list[str]:
    path = root / "pnpm-workspace.yaml"
    if not path.exists():
        return []
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        log.warning(f"Ignoring unreadable workspace manifest {path}: {e}")
        return []
    if not isinstance(data, dict):
        return []
    return _parse_workspace_patterns(data.get("packages"))


def _read_pyproject_workspace(root: Path) -> list[str]:
    path = root / "pyproject.toml"
    if not path.exists():
        return []
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as e:
        log.warning(f"Ignoring unreadable workspace manifest {path}: {e}")
        return []
    workspace = data.get("tool", {}).get("uv", {}).get("workspace", {})
    if not isinstance(workspace, dict):
        return []
    return _parse_workspace_patterns(workspace.get("members"))


def load_workspace_patterns(workspace_root: str | Path) -> tuple[str, ...]:
    """Collect sub-package globs declared by the workspace manifests."""
    root = Path(workspace_root).resolve()
    key = str(root)
    with _patterns_lock:
        cached = _patterns_cache.get(key)
    if cached is not None:
        return cached

    patterns: list[str] = []
    for reader in (_read_package_json, _read_pnpm_workspace, _read_pyproject_workspace):
        for pattern in reader(root):
            normalized = normalize_path(pattern).strip("/")
            if normalized.startswith("./"):
                normalized = normalized[2:]
            if normalized and not normalized.startswith("!") and normalized not in patterns:
                patterns.append(normalized)

    resolved = tuple(patterns)
    with _patterns_lock:
        _patterns_cache[key] = resolved
    return resolved


def matches_package_glob(relative_dir: str, pattern: str) -> bool:
    """Match a directory against a workspace glob, one path segment at a time."""
    dir_parts = PurePosixPath(relative_dir).parts
    pattern_parts = PurePosixPath(pattern).parts
    return _match_parts(dir_parts, pattern_parts)


def _match_parts(parts: tuple[str, ...], pattern: tuple[str, ...]) -> bool:
    if not pattern:
        return not parts
    head, rest = pattern[0], pattern[1:]
    if head == "**":
        return any(_match_parts(parts[i:], rest) for i in range(len(parts) + 1))
    if not parts:
        return False
    return fnmatchcase(parts[0], head) and _match_parts(parts[1:], rest)


def derive_package_prefix(workspace_root: str | Path, working_file: str) -> str | None:
    """Find the nearest declared sub-package that contains ``working_file``."""
    relative_file = to_workspace_relative(workspace_root, working_file)
    if not relative_file:
        return None

    patterns = load_workspace_patterns(workspace_root)
    if not patterns:
        return None

    current = PurePosixPath(relative_file).parent
    while str(current) not in ("", "."):
        candidate = current.as_posix()
        if any(matches_package_glob(candidate, pattern) for pattern in patterns):
            return ensure_trailing_slash(candidate)
        current = current.parent
    return None


def _normalize_prefix(prefix: str | None, workspace_root: str | Path) -> str | None:
    if prefix is None or not prefix.strip():
        return None
    relative = to_workspace_relative(workspace_root, prefix)
    if relative is None:
        raise InvalidScopeError(prefix, str(workspace_root))
    if relative == "":
        return None
    return ensure_trailing_slash(relative)


def _normalize_language(language: str | None) -> str | None:
    if not language:
        return None
    cleaned = language.strip().lower()
    return cleaned or None


def _normalize_working_file(working_file: str | None, workspace_root: str | Path) -> str | None:
    if not working_file or not working_file.strip():
        return None
    trimmed = working_file.strip()
    if os.path.isabs(trimmed):
        return str(Path(trimmed).resolve())
    return str((Path(workspace_root) / trimmed).resolve())


def normalize_query_scope(query: Query, workspace_root: str | Path) -> ScopeResult:
    """Rewrite a query's filter and working file into workspace-relative form.

    Raises:
        InvalidScopeError: if an explicit path prefix escapes the workspace.
    """
    disclosures: list[str] = []
    current = query.filter or QueryFilter()

    path_prefix = _normalize_prefix(current.path_prefix, workspace_root)
    language = _normalize_language(current.language)
    working_file = _normalize_working_file(query.working_file, workspace_root)

    if path_prefix is None and working_file:
        derived = derive_package_prefix(workspace_root, working_file)
        if derived:
            path_prefix = derived
            disclosures.append(f"{SCOPE_AUTO_DETECTED}: {derived} (from workingFile)")
            log.info(f"Auto-detected scope {derived} from {working_file}")

    next_filter = QueryFilter(path_prefix=path_prefix, language=language)
    normalized = replace(
        query,
        working_file=working_file,
        filter=None if next_filter.is_empty() else next_filter,
    )
    return ScopeResult(query=normalized, disclosures=tuple(disclosures))

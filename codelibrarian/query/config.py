"""Configuration for scoring, biasing and caching."""

from dataclasses import dataclass, field, fields, replace
import os
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError
from .types import Depth

DEFAULT_CONFIG_FILENAME = ".codelibrarian.yml"
_ENV_PREFIX = "CODELIBRARIAN_"


@dataclass(frozen=True)
class ScoringWeights:
    """Per-signal weights; non-negative, need not sum to 1."""

    semantic: float = 0.45
    pagerank: float = 0.10
    centrality: float = 0.10
    confidence: float = 0.15
    recency: float = 0.10
    cochange: float = 0.10


@dataclass(frozen=True)
class BiasConfig:
    document_boost: float = 0.3
    definition_boost: float = 0.35
    enabled: bool = True


@dataclass(frozen=True)
class CacheConfig:
    l1_ttl_seconds: float = 300.0
    l2_ttl_seconds: float = 3600.0
    semantic_enabled: bool = True
    similarity_threshold: float = 0.85
    max_entries_per_partition: int = 64
    sqlite_path: str | None = None

    def tier_for_depth(self, depth: Depth | None) -> str:
        """Shallow queries live in l1; everything else in l2."""
        return "l1" if depth == Depth.L0 else "l2"

    def ttl_for_depth(self, depth: Depth | None) -> float:
        return self.l1_ttl_seconds if depth == Depth.L0 else self.l2_ttl_seconds


@dataclass(frozen=True)
class EngineConfig:
    """Top-level engine settings."""

    weights: ScoringWeights = field(default_factory=ScoringWeights)
    bias: BiasConfig = field(default_factory=BiasConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)

    recency_half_life_days: float = 30.0
    default_recency: float = 0.5

    limit_l0: int = 5
    limit_l1: int = 10
    limit_l2: int = 20

    def limit_for_depth(self, depth: Depth | None) -> int:
        """Retrieval breadth for a query depth."""
        if depth == Depth.L0:
            return self.limit_l0
        if depth == Depth.L2:
            return self.limit_l2
        return self.limit_l1


DEFAULT_ENGINE_CONFIG = EngineConfig()


def _coerce(value: Any, current: Any, key: str) -> Any:
    if isinstance(current, bool):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() not in {"0", "false", "off", "no"}
        raise ConfigError(f"{key} must be a boolean")
    if isinstance(current, int) and not isinstance(current, bool):
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"{key} must be an integer") from exc
    if isinstance(current, float):
        try:
            number = float(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"{key} must be a number") from exc
        if number < 0:
            raise ConfigError(f"{key} must be non-negative")
        return number
    if value is None:
        return None
    return str(value)


def _apply(section: Any, data: dict[str, Any], prefix: str) -> Any:
    updates: dict[str, Any] = {}
    for item in fields(section):
        if item.name not in data:
            continue
        current = getattr(section, item.name)
        raw = data[item.name]
        if hasattr(current, "__dataclass_fields__"):
            if not isinstance(raw, dict):
                raise ConfigError(f"{prefix}{item.name} must be a mapping")
            updates[item.name] = _apply(current, raw, f"{prefix}{item.name}.")
        else:
            updates[item.name] = _coerce(raw, current, f"{prefix}{item.name}")
    return replace(section, **updates) if updates else section


def _env_overrides(environ: dict[str, str]) -> dict[str, Any]:
    """Map CODELIBRARIAN_CACHE__L1_TTL_SECONDS style variables to nested keys."""
    overrides: dict[str, Any] = {}
    for name, raw in environ.items():
        if not name.startswith(_ENV_PREFIX):
            continue
        path = name[len(_ENV_PREFIX):].lower().split("__")
        target = overrides
        for part in path[:-1]:
            target = target.setdefault(part, {})
        target[path[-1]] = raw
    return overrides


def load_engine_config(
    path: str | Path | None = None,
    *,
    environ: dict[str, str] | None = None,
) -> EngineConfig:
    """Load engine config from YAML, then apply environment overrides."""
    config = DEFAULT_ENGINE_CONFIG

    if path is not None:
        config_file = Path(path)
        if config_file.is_dir():
            config_file = config_file / DEFAULT_CONFIG_FILENAME
        if config_file.exists():
            try:
                data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"Failed to parse {config_file}: {exc}") from exc
            if not isinstance(data, dict):
                raise ConfigError(f"{config_file} must contain a mapping at the root")
            config = _apply(config, data, "")

    env = os.environ if environ is None else environ
    overrides = _env_overrides(dict(env))
    if overrides:
        config = _apply(config, overrides, "")
    return config

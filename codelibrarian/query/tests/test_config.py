from pathlib import Path

import pytest

from codelibrarian.query.config import (
    DEFAULT_CONFIG_FILENAME,
    CacheConfig,
    EngineConfig,
    load_engine_config,
)
from codelibrarian.query.errors import ConfigError
from codelibrarian.query.types import Depth


def test_defaults_without_file(tmp_path: Path):
    config = load_engine_config(tmp_path, environ={})
    assert config == EngineConfig()
    assert config.cache.similarity_threshold == pytest.approx(0.85)


def test_tier_and_ttl_mapping():
    cache = CacheConfig(l1_ttl_seconds=10, l2_ttl_seconds=100)
    assert cache.tier_for_depth(Depth.L0) == "l1"
    assert cache.tier_for_depth(Depth.L1) == "l2"
    assert cache.tier_for_depth(Depth.L2) == "l2"
    assert cache.tier_for_depth(None) == "l2"
    assert cache.ttl_for_depth(Depth.L0) == 10
    assert cache.ttl_for_depth(None) == 100


def test_limit_for_depth():
    config = EngineConfig(limit_l0=1, limit_l1=2, limit_l2=3)
    assert config.limit_for_depth(Depth.L0) == 1
    assert config.limit_for_depth(Depth.L1) == 2
    assert config.limit_for_depth(None) == 2
    assert config.limit_for_depth(Depth.L2) == 3


def test_yaml_file_overrides_nested_sections(tmp_path: Path):
    (tmp_path / DEFAULT_CONFIG_FILENAME).write_text(
        "weights:\n"
        "  semantic: 0.7\n"
        "bias:\n"
        "  enabled: false\n"
        "cache:\n"
        "  l1_ttl_seconds: 60\n"
        "  sqlite_path: .codelibrarian/cache.db\n"
        "recency_half_life_days: 7\n"
    )

    config = load_engine_config(tmp_path, environ={})

    assert config.weights.semantic == pytest.approx(0.7)
    assert config.weights.pagerank == pytest.approx(0.10)
    assert config.bias.enabled is False
    assert config.cache.l1_ttl_seconds == 60.0
    assert config.cache.sqlite_path == ".codelibrarian/cache.db"
    assert config.recency_half_life_days == 7.0


def test_environment_overrides_file(tmp_path: Path):
    config_file = tmp_path / "custom.yml"
    config_file.write_text("limit_l1: 4\n")

    config = load_engine_config(
        config_file,
        environ={
            "CODELIBRARIAN_LIMIT_L1": "12",
            "CODELIBRARIAN_CACHE__SEMANTIC_ENABLED": "false",
            "UNRELATED": "1",
        },
    )

    assert config.limit_l1 == 12
    assert config.cache.semantic_enabled is False


def test_unknown_keys_are_ignored(tmp_path: Path):
    (tmp_path / DEFAULT_CONFIG_FILENAME).write_text("surprise: true\n")
    assert load_engine_config(tmp_path, environ={}) == EngineConfig()


@pytest.mark.parametrize(
    "content",
    [
        "weights: [1, 2\n",
        "- just\n- a list\n",
        "weights: 3\n",
        "weights:\n  semantic: -1\n",
        "limit_l0: many\n",
    ],
)
def test_invalid_config_raises(tmp_path: Path, content: str):
    (tmp_path / DEFAULT_CONFIG_FILENAME).write_text(content)
    with pytest.raises(ConfigError):
        load_engine_config(tmp_path, environ={})

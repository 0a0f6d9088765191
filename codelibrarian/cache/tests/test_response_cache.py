from datetime import datetime, timezone

import pytest

from codelibrarian.cache.response_cache import ResponseCache, build_cache_key
from codelibrarian.cache.store import MemoryCacheStore, SqliteCacheStore, StoredEntry
from codelibrarian.query.config import CacheConfig
from codelibrarian.query.types import CachedResponse, Depth, Query, QueryFilter, Version

VERSION = Version(1, 0, 0, "1.0.0", "mvp", datetime(2026, 1, 1, tzinfo=timezone.utc), "test")
CONFIG = CacheConfig(l1_ttl_seconds=10, l2_ttl_seconds=100)


def _response(query: Query) -> CachedResponse:
    return CachedResponse(
        query=query,
        packs=[],
        disclosures=[],
        trace_id="trace",
        total_confidence=0.0,
        cache_hit=False,
        latency_ms=1.0,
        version=VERSION,
    )


def test_cache_key_ignores_whitespace_but_not_scope():
    base = Query(intent="where is  login")
    assert build_cache_key(base) == build_cache_key(Query(intent=" where is login "))
    assert build_cache_key(base) != build_cache_key(Query(intent="where is login", depth=Depth.L2))
    assert build_cache_key(base) != build_cache_key(
        Query(intent="where is login", filter=QueryFilter(path_prefix="src/"))
    )
    assert build_cache_key(base) != build_cache_key(Query(intent="where is login", task_type="debug"))


def test_depth_selects_tier_and_ttl():
    cache = ResponseCache(config=CONFIG)
    assert cache.tier_for(Query(intent="x", depth=Depth.L0)) == "l1"
    assert cache.ttl_for(Query(intent="x", depth=Depth.L0)) == 10
    for depth in (Depth.L1, Depth.L2, None):
        assert cache.tier_for(Query(intent="x", depth=depth)) == "l2"
        assert cache.ttl_for(Query(intent="x", depth=depth)) == 100


def test_hit_is_marked_and_expires_lazily():
    cache = ResponseCache(config=CONFIG)
    query = Query(intent="where is login", depth=Depth.L0)
    cache.set(query, _response(query), now=1000.0)

    hit = cache.get(query, now=1005.0)
    assert hit is not None
    assert hit.cache_hit is True

    assert cache.get(query, now=1010.0) is None
    assert cache.store.count("l1") == 0
    assert cache.stats()["expired"] == 1


def test_l2_entries_outlive_l1_ttl():
    cache = ResponseCache(config=CONFIG)
    query = Query(intent="where is login", depth=Depth.L2)
    cache.set(query, _response(query), now=0.0)

    assert cache.get(query, now=50.0) is not None
    assert cache.stats()["entries"] == {"l1": 0, "l2": 1}


def test_corrupt_entry_is_a_miss_and_removed():
    store = MemoryCacheStore()
    cache = ResponseCache(store=store, config=CONFIG)
    query = Query(intent="where is login")
    store.put("l2", build_cache_key(query), StoredEntry(payload="{broken", expires_at=1e12, stored_at=0.0))

    assert cache.get(query, now=1.0) is None
    assert store.count() == 0
    stats = cache.stats()
    assert stats["corrupt"] == 1
    assert stats["misses"] == 1


def test_zero_ttl_disables_storage():
    cache = ResponseCache(config=CacheConfig(l1_ttl_seconds=0, l2_ttl_seconds=0))
    query = Query(intent="x")
    cache.set(query, _response(query))
    assert cache.store.count() == 0


def test_invalidate_and_clear():
    cache = ResponseCache(config=CONFIG)
    shallow = Query(intent="a", depth=Depth.L0)
    deep = Query(intent="b", depth=Depth.L2)
    cache.set(shallow, _response(shallow), now=0.0)
    cache.set(deep, _response(deep), now=0.0)

    cache.invalidate(shallow)
    assert cache.get(shallow, now=1.0) is None

    cache.clear("l2")
    assert cache.get(deep, now=1.0) is None
    assert cache.stats()["writes"] == 2


@pytest.fixture
def sqlite_store(tmp_path):
    return SqliteCacheStore(tmp_path / "cache" / "responses.db")


def test_sqlite_store_round_trip(sqlite_store):
    entry = StoredEntry(payload="{}", expires_at=10.0, stored_at=1.0)
    sqlite_store.put("l1", "k", entry)
    sqlite_store.put("l2", "k", entry)

    assert sqlite_store.get("l1", "k") == entry
    assert sqlite_store.count() == 2
    assert sqlite_store.count("l1") == 1

    sqlite_store.delete("l1", "k")
    assert sqlite_store.get("l1", "k") is None

    sqlite_store.clear()
    assert sqlite_store.count() == 0


def test_sqlite_backed_cache_survives_new_instance(tmp_path):
    db_path = tmp_path / "responses.db"
    query = Query(intent="where is login")
    ResponseCache(store=SqliteCacheStore(db_path), config=CONFIG).set(query, _response(query), now=0.0)

    reopened = ResponseCache(store=SqliteCacheStore(db_path), config=CONFIG)
    hit = reopened.get(query, now=1.0)

    assert hit is not None
    assert hit.version == VERSION


def test_expires_at_caps_the_tier_ttl():
    cache = ResponseCache(config=CONFIG)
    query = Query(intent="where is login")

    cache.set(query, _response(query), now=0.0, expires_at=5.0)

    assert cache.get(query, now=4.0) is not None
    assert cache.get(query, now=5.0) is None


def test_already_expired_response_is_not_stored():
    cache = ResponseCache(config=CONFIG)
    query = Query(intent="where is login")

    cache.set(query, _response(query), now=10.0, expires_at=10.0)

    assert cache.stats()["writes"] == 0
    assert cache.get(query, now=10.0) is None

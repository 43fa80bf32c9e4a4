import json

import pytest

from orchestration_service.cache import ResponseCache, cache_key, is_miss


def make_cache(fake_redis, **kw):
    cache = ResponseCache(url="redis://unused", prefix="test", client_factory=lambda url: fake_redis, enabled=True,
                          **kw)
    return cache


def test_cache_key_is_stable_and_order_independent():
    a = cache_key("p", "export", "items", "WM/Common/ExportItems", {"Take": 10, "Skip": 0})
    b = cache_key("p", "export", "items", "WM/Common/ExportItems", {"Skip": 0, "Take": 10})
    c = cache_key("p", "export", "items", "WM/Common/ExportItems", {"Skip": 0, "Take": 11})
    assert a == b
    assert a != c
    assert a.startswith("p:export:items:WM/Common/ExportItems:")


@pytest.mark.asyncio
async def test_set_then_get_roundtrip_with_ttl(fake_redis):
    cache = make_cache(fake_redis)
    assert is_miss(await cache.get("export", "items", "op", {"a": 1}))
    await cache.set("export", "items", "op", {"a": 1}, {"Data": [1]}, ttl=42)
    assert await cache.get("export", "items", "op", {"a": 1}) == {"Data": [1]}
    key = cache_key("test", "export", "items", "op", {"a": 1})
    assert fake_redis.ttls[key] == 42
    assert json.loads(fake_redis.store[key]) == {"Data": [1]}


@pytest.mark.asyncio
async def test_default_ttl_depends_on_kind(fake_redis, settings):
    settings.CACHE_EXPORT_TTL_SECONDS = 300
    settings.CACHE_SERVICE_TTL_SECONDS = 120
    cache = make_cache(fake_redis)
    await cache.set("service", "items", "stock", {}, {"ok": True})
    await cache.set("export", "items", "list", {}, {"ok": True})
    assert fake_redis.ttls[cache_key("test", "service", "items", "stock", {})] == 120
    assert fake_redis.ttls[cache_key("test", "export", "items", "list", {})] == 300


@pytest.mark.asyncio
async def test_invalidate_family_removes_only_that_family(fake_redis):
    cache = make_cache(fake_redis)
    await cache.set("export", "items", "list", {}, [1])
    await cache.set("service", "items", "stock", {"i": 1}, [2])
    await cache.set("export", "contacts", "list", {}, [3])
    removed = await cache.invalidate_family("items")
    assert removed == 2
    assert is_miss(await cache.get("export", "items", "list", {}))
    assert is_miss(await cache.get("service", "items", "stock", {"i": 1}))
    assert await cache.get("export", "contacts", "list", {}) == [3]


@pytest.mark.asyncio
async def test_disabled_cache_never_touches_redis(fake_redis):
    cache = ResponseCache(url="redis://unused", client_factory=lambda url: fake_redis, enabled=False)
    await cache.set("export", "items", "list", {}, [1])
    assert is_miss(await cache.get("export", "items", "list", {}))
    assert await cache.invalidate_family("items") == 0
    assert fake_redis.store == {}


@pytest.mark.asyncio
async def test_unreachable_redis_is_a_miss_and_opens_circuit(settings):
    settings.REDIS_RECONNECT_MAX_ATTEMPTS = 1
    settings.REDIS_CIRCUIT_COOLDOWN_SECONDS = 60
    attempts = {"n": 0}

    class DeadRedis:
        async def ping(self):
            attempts["n"] += 1
            raise ConnectionError("Connection refused")

        async def aclose(self):
            pass

    cache = ResponseCache(url="redis://unused", client_factory=lambda url: DeadRedis(), enabled=True)
    assert is_miss(await cache.get("export", "items", "list", {}))
    await cache.set("export", "items", "list", {}, [1])
    assert await cache.invalidate_family("items") == 0
    # circuit opened after the first failed connect; later calls skip reconnecting
    assert attempts["n"] == 1
    assert cache._redis_circuit_open_until > 0


@pytest.mark.asyncio
async def test_transient_redis_error_is_retried_once(fake_redis, settings):
    settings.REDIS_RECONNECT_JITTER_MS = 0
    cache = make_cache(fake_redis)
    await cache.set("export", "items", "list", {}, [1])
    fake_redis.fail_next = 1
    assert await cache.get("export", "items", "list", {}) == [1]


@pytest.mark.asyncio
async def test_undecodable_entry_is_treated_as_miss(fake_redis):
    cache = make_cache(fake_redis)
    fake_redis.store[cache_key("test", "export", "items", "list", {})] = "not json"
    assert is_miss(await cache.get("export", "items", "list", {}))

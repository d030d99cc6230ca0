from shop.services.cache import CacheKeys, CacheService, cache


async def test_set_get_roundtrip(fake_redis):
    assert await cache.set(CacheKeys.product(1), {"name": "Camisola", "price": 20.0})
    assert await cache.get(CacheKeys.product(1)) == {"name": "Camisola", "price": 20.0}
    assert await cache.exists(CacheKeys.product(1))


async def test_invalidate_pattern(fake_redis):
    await cache.set(CacheKeys.products("page=1"), [1])
    await cache.set(CacheKeys.products("page=2"), [2])
    await cache.set(CacheKeys.categories(), [])

    assert await cache.invalidate_pattern("products:*") == 2
    assert await cache.get(CacheKeys.products("page=1")) is None
    assert await cache.get(CacheKeys.categories()) == []


async def test_get_or_set_calls_fetcher_once(fake_redis):
    calls = []

    async def fetcher():
        calls.append(1)
        return {"total_orders": 3}

    assert await cache.get_or_set(CacheKeys.admin_stats(), fetcher) == {"total_orders": 3}
    assert await cache.get_or_set(CacheKeys.admin_stats(), fetcher) == {"total_orders": 3}
    assert len(calls) == 1


async def test_increment_counter(fake_redis):
    assert await cache.increment("rate:ip:1", ttl=60) == 1
    assert await cache.increment("rate:ip:1", ttl=60) == 2


async def test_disabled_cache_is_noop():
    service = CacheService()
    assert not service.enabled
    assert await service.set("k", 1) is False
    assert await service.get("k") is None
    assert await service.invalidate_pattern("*") == 0


async def test_client_errors_are_treated_as_miss():
    class BrokenRedis:
        async def get(self, key):
            raise ConnectionError("ECONNREFUSED")

        async def setex(self, key, ttl, value):
            raise ConnectionError("ECONNREFUSED")

    service = CacheService(BrokenRedis())
    assert await service.get("k") is None
    assert await service.set("k", 1) is False

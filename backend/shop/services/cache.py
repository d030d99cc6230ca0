"""
缓存服务
基于 Redis（redis.asyncio），所有调用经过 redis 熔断器
缓存失败只记录日志，不影响业务请求：读取失败视为未命中
"""

import json
import logging
from typing import Any, Awaitable, Callable, Optional

from redis import asyncio as aioredis

from shop.services.circuit_breaker import circuit_breakers

logger = logging.getLogger(__name__)


class CacheTTL:
    """缓存过期时间（秒）"""
    SHORT = 60
    MEDIUM = 300
    LONG = 900
    HOUR = 3600
    DAY = 86400
    WEEK = 604800


class CacheKeys:
    """缓存键生成"""

    @staticmethod
    def product(product_id) -> str:
        return f"product:{product_id}"

    @staticmethod
    def products(params: str) -> str:
        return f"products:{params}"

    @staticmethod
    def products_by_category(category_id, page: int) -> str:
        return f"products:category:{category_id}:page:{page}"

    @staticmethod
    def featured_products() -> str:
        return "products:featured"

    @staticmethod
    def category(category_id) -> str:
        return f"category:{category_id}"

    @staticmethod
    def categories() -> str:
        return "categories:all"

    @staticmethod
    def category_hierarchy() -> str:
        return "categories:hierarchy"

    @staticmethod
    def user(user_id) -> str:
        return f"user:{user_id}"

    @staticmethod
    def user_cart(user_id) -> str:
        return f"cart:user:{user_id}"

    @staticmethod
    def user_orders(user_id, page: int) -> str:
        return f"orders:user:{user_id}:page:{page}"

    @staticmethod
    def order(order_id) -> str:
        return f"order:{order_id}"

    @staticmethod
    def order_by_number(order_number: str) -> str:
        return f"order:number:{order_number}"

    @staticmethod
    def admin_stats() -> str:
        return "admin:stats"

    @staticmethod
    def recent_orders() -> str:
        return "admin:orders:recent"

    @staticmethod
    def search(query: str, page: int) -> str:
        return f"search:{query}:page:{page}"


class CacheService:
    """缓存读写

    client 为 None 时（未配置 REDIS_URL）所有操作直接返回空结果
    """

    def __init__(self, client=None):
        self.client = client
        self.breaker = circuit_breakers["redis"]

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def _call(self, fn: Callable[[], Awaitable[Any]]) -> Any:
        return await self.breaker.execute(fn)

    async def get(self, key: str) -> Any:
        if not self.enabled:
            return None
        try:
            raw = await self._call(lambda: self.client.get(key))
            if raw is None:
                return None
            return json.loads(raw)
        except Exception as e:
            logger.warning(f"缓存读取失败 {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int = CacheTTL.MEDIUM) -> bool:
        if not self.enabled:
            return False
        try:
            payload = json.dumps(value, default=str)
            await self._call(lambda: self.client.setex(key, ttl, payload))
            return True
        except Exception as e:
            logger.warning(f"缓存写入失败 {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        if not self.enabled:
            return False
        try:
            await self._call(lambda: self.client.delete(key))
            return True
        except Exception as e:
            logger.warning(f"缓存删除失败 {key}: {e}")
            return False

    async def invalidate_pattern(self, pattern: str) -> int:
        """按通配符批量删除，返回删除数量"""
        if not self.enabled:
            return 0
        try:
            async def _scan_and_delete():
                keys = [key async for key in self.client.scan_iter(match=pattern)]
                if keys:
                    await self.client.delete(*keys)
                return len(keys)

            return await self._call(_scan_and_delete)
        except Exception as e:
            logger.warning(f"缓存批量失效失败 {pattern}: {e}")
            return 0

    async def exists(self, key: str) -> bool:
        if not self.enabled:
            return False
        try:
            return bool(await self._call(lambda: self.client.exists(key)))
        except Exception as e:
            logger.warning(f"缓存检查失败 {key}: {e}")
            return False

    async def increment(self, key: str, ttl: Optional[int] = None) -> int:
        """计数器自增，首次创建时设置过期时间"""
        if not self.enabled:
            return 0
        try:
            value = await self._call(lambda: self.client.incr(key))
            if ttl and value == 1:
                await self._call(lambda: self.client.expire(key, ttl))
            return int(value)
        except Exception as e:
            logger.warning(f"缓存计数失败 {key}: {e}")
            return 0

    async def get_or_set(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[Any]],
        ttl: int = CacheTTL.MEDIUM) -> Any:
        """先读缓存，未命中时调用 fetcher 并写回"""
        cached = await self.get(key)
        if cached is not None:
            return cached
        value = await fetcher()
        if value is not None:
            await self.set(key, value, ttl)
        return value

    async def ping(self) -> bool:
        """健康检查用，异常直接抛出"""
        if not self.enabled:
            raise RuntimeError("Redis 未配置")
        return bool(await self.client.ping())


# 全局缓存实例
cache = CacheService()


def init_cache(redis_url: str) -> None:
    """根据配置创建 Redis 客户端"""
    if not redis_url:
        logger.info("🗄️ 未配置 REDIS_URL，缓存已禁用")
        return
    cache.client = aioredis.from_url(redis_url, decode_responses=True)
    logger.info("🗄️ Redis 缓存已启用")


async def close_cache() -> None:
    if cache.client is not None:
        await cache.client.aclose()
        cache.client = None

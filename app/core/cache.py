import json
from typing import Any, Optional
import redis.asyncio as redis


class RedisCache:
    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    async def get(self, key: str, version: int = None) -> Optional[Any]:
        """Get value from cache, optionally using version"""
        if version is not None:
            key = f"{key}:v{version}"
        data = await self.redis.get(key)
        if data:
            return json.loads(data)
        return None

    async def set(self, key: str, value: Any, expire: int = 3600, version: int = None) -> None:
        """Set value in cache with optional version"""
        if version is not None:
            key = f"{key}:v{version}"
        await self.redis.set(
            key,
            json.dumps(value, default=str),
            ex=expire
        )

    async def incr(self, key: str, expire: Optional[int] = None) -> int:
        """Atomically bump a counter, refreshing its TTL when given"""
        value = await self.redis.incr(key)
        if expire is not None:
            await self.redis.expire(key, expire)
        return value

    async def delete_pattern(self, pattern: str) -> None:
        """Delete all keys matching pattern safely and efficiently"""
        cursor = 0
        while True:
            cursor, keys = await self.redis.scan(cursor=cursor, match=pattern, count=100)
            if keys:
                await self.redis.delete(*keys)
            if int(cursor) == 0:
                break

    @staticmethod
    def build_key(*args) -> str:
        """Build cache key from arguments"""
        return ":".join(str(arg) for arg in args)

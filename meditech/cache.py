"""
MediTech - Revocation Cache

Thin async wrapper over Redis used for short-lived security markers
(logout denylist). Values are JSON encoded.

Usage:
    cache = RevocationCache(redis.asyncio.from_url(settings.REDIS_URL))
    await cache.set("blacklist:<user_id>", 1700000000, ttl=3600)
"""

import json
from typing import Any, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError


class CacheError(Exception):
    """Raised when the cache backend cannot be reached."""


class RevocationCache:
    """
    Async cache over a redis.asyncio client.
    
    Attributes:
        _redis: Async Redis client (fakeredis in tests)
    """
    
    def __init__(self, redis_client: Redis):
        self._redis = redis_client
    
    async def get(self, key: str) -> Optional[Any]:
        """Get a JSON value, None if absent."""
        try:
            value = await self._redis.get(key)
        except RedisError as e:
            raise CacheError(f"Redis GET failed for key '{key}': {e}") from e
        
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return json.loads(value)
    
    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Set a JSON value, with expiry in seconds when ttl is given."""
        serialized = json.dumps(value)
        try:
            if ttl:
                await self._redis.setex(key, ttl, serialized)
            else:
                await self._redis.set(key, serialized)
        except RedisError as e:
            raise CacheError(f"Redis SET failed for key '{key}': {e}") from e
    
    async def exists(self, key: str) -> bool:
        try:
            return await self._redis.exists(key) == 1
        except RedisError as e:
            raise CacheError(f"Redis EXISTS failed for key '{key}': {e}") from e
    
    async def ttl(self, key: str) -> int:
        """Remaining seconds, negative if missing or persistent."""
        try:
            return await self._redis.ttl(key)
        except RedisError as e:
            raise CacheError(f"Redis TTL failed for key '{key}': {e}") from e
    
    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except RedisError as e:
            raise CacheError(f"Redis DELETE failed for key '{key}': {e}") from e
    
    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError:
            return False
    
    async def close(self) -> None:
        await self._redis.aclose()

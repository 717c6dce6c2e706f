"""
Cache backends for redirect snapshots.

The redirect path caches one JSON document per short code (the link plus its
rules and variants). Every backend stores plain strings; `get_json` /
`set_json` wrap the encoding so services never touch raw payloads.
"""

import json
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple


class CacheStrategy(ABC):
    """
    Interface every cache backend implements.

    Backends never raise on I/O trouble: a failed read is a miss and a
    failed write returns False, so a broken cache only costs a DB query.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int = 3600) -> bool:
        """Store `value` for `ttl` seconds."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Returns True if the key existed."""
        pass

    @abstractmethod
    async def clear(self) -> bool:
        pass

    async def get_json(self, key: str) -> Optional[Any]:
        """Decoded JSON value, or None on a miss or an unreadable entry."""
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            print(f"⚠️  Dropping unreadable cache entry: {key}")
            await self.delete(key)
            return None

    async def set_json(self, key: str, value: Any, ttl: int = 3600) -> bool:
        return await self.set(key, json.dumps(value, default=str), ttl)


class RedisCache(CacheStrategy):
    """Shared cache for multi-process deployments. Keys expire via SETEX."""

    def __init__(self, redis_client):
        self.redis = redis_client

    async def get(self, key: str) -> Optional[str]:
        try:
            value = self.redis.get(key)
            return value.decode("utf-8") if value else None
        except Exception as e:
            print(f"Redis get error: {e}")
            return None

    async def set(self, key: str, value: str, ttl: int = 3600) -> bool:
        try:
            return bool(self.redis.setex(key, ttl, value))
        except Exception as e:
            print(f"Redis set error: {e}")
            return False

    async def delete(self, key: str) -> bool:
        try:
            return bool(self.redis.delete(key))
        except Exception as e:
            print(f"Redis delete error: {e}")
            return False

    async def clear(self) -> bool:
        try:
            self.redis.flushdb()
            return True
        except Exception as e:
            print(f"Redis clear error: {e}")
            return False


class InMemoryCache(CacheStrategy):
    """
    Process-local cache for development and tests.

    Entries carry their own expiry and are dropped lazily on read.
    """

    def __init__(self, clock=time.monotonic):
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._clock = clock

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl: int = 3600) -> bool:
        self._entries[key] = (value, self._clock() + ttl)
        return True

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def clear(self) -> bool:
        self._entries.clear()
        return True


class NullCache(CacheStrategy):
    """Caching switched off: every read misses."""

    async def get(self, key: str) -> Optional[str]:
        return None

    async def set(self, key: str, value: str, ttl: int = 3600) -> bool:
        return True

    async def delete(self, key: str) -> bool:
        return False

    async def clear(self) -> bool:
        return True

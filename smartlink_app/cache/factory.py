"""
Builds the configured cache backend once per process.
"""

from enum import Enum
from .strategies import CacheStrategy, RedisCache, InMemoryCache, NullCache


class CacheBackend(Enum):
    """Available cache backends"""
    REDIS = "redis"
    MEMORY = "memory"
    NULL = "null"


def _redis_or_memory() -> CacheStrategy:
    from smartlink_app.redis_client import connect_redis

    try:
        cache = RedisCache(connect_redis())
        print("✅ Redis snapshot cache ready")
        return cache
    except Exception as e:
        print(f"⚠️  Redis unavailable for snapshots ({e}), using in-memory cache")
        return InMemoryCache()


class CacheFactory:
    """
    Holds the process-wide snapshot cache.

    An unreachable Redis downgrades to InMemoryCache rather than stopping startup.
    """

    _instance: CacheStrategy = None

    @classmethod
    def create(cls, backend: CacheBackend) -> CacheStrategy:
        if cls._instance is None:
            if backend == CacheBackend.REDIS:
                cls._instance = _redis_or_memory()
            elif backend == CacheBackend.MEMORY:
                cls._instance = InMemoryCache()
                print("✅ In-memory snapshot cache ready")
            elif backend == CacheBackend.NULL:
                cls._instance = NullCache()
                print("✅ Snapshot cache disabled")
            else:
                raise ValueError(f"Unknown cache backend: {backend}")
        return cls._instance

    @classmethod
    def clear_instance(cls):
        cls._instance = None

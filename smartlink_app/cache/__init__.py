"""
Snapshot cache backends (Redis, in-memory, disabled).
"""

from .strategies import CacheStrategy, RedisCache, InMemoryCache, NullCache
from .factory import CacheBackend, CacheFactory

__all__ = [
    "CacheStrategy",
    "RedisCache",
    "InMemoryCache",
    "NullCache",
    "CacheBackend",
    "CacheFactory",
]

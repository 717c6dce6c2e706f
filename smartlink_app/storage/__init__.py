"""
Click analytics storage.

Kept apart from the transactional database: the main DB holds links, rules,
variants and aggregate counters, this store holds one row per click.
"""

from .strategies import ClickStorageStrategy, SQLiteClickStorage, ClickHouseClickStorage
from .factory import ClickStorageFactory, ClickStorageBackend

__all__ = [
    "ClickStorageStrategy",
    "SQLiteClickStorage",
    "ClickHouseClickStorage",
    "ClickStorageFactory",
    "ClickStorageBackend",
]

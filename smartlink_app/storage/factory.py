"""
Builds the configured click analytics store once per process.
"""

from enum import Enum
from .strategies import ClickStorageStrategy, SQLiteClickStorage, ClickHouseClickStorage
from smartlink_app.config import settings


class ClickStorageBackend(Enum):
    """Available click storage backends"""
    SQLITE = "sqlite"
    CLICKHOUSE = "clickhouse"


class ClickStorageFactory:
    """Singleton factory; configuration comes from settings."""

    _instance: ClickStorageStrategy = None

    @classmethod
    def create(cls, backend: ClickStorageBackend) -> ClickStorageStrategy:
        if cls._instance is not None:
            return cls._instance

        if backend == ClickStorageBackend.SQLITE:
            cls._instance = SQLiteClickStorage(db_path=settings.click_storage_sqlite_path)
        elif backend == ClickStorageBackend.CLICKHOUSE:
            cls._instance = ClickHouseClickStorage(url=settings.click_storage_clickhouse_url)
        else:
            raise ValueError(f"Unknown click storage backend: {backend}")

        return cls._instance

    @classmethod
    def clear_instance(cls):
        """Forget the cached instance (tests)"""
        cls._instance = None

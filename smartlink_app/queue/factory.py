"""
Builds the configured click queue once per process.
"""

from enum import Enum
from .strategies import QueueStrategy, RedisStreamQueue, InMemoryQueue
from smartlink_app.config import settings


class QueueBackend(Enum):
    """Available queue backends"""
    REDIS_STREAMS = "redis_streams"
    MEMORY = "memory"


def _stream_or_memory() -> QueueStrategy:
    from smartlink_app.redis_client import connect_redis

    try:
        queue = RedisStreamQueue(connect_redis(), settings.queue_consumer_group)
        print(f"✅ Redis stream queue ready (group {settings.queue_consumer_group})")
        return queue
    except Exception as e:
        print(f"⚠️  Redis unavailable for clicks ({e}), using in-memory queue")
        return InMemoryQueue()


class QueueFactory:
    """
    Holds the process-wide click queue.

    Without Redis the in-memory queue keeps click counting inside this process.
    """

    _instance: QueueStrategy = None

    @classmethod
    def create(cls, backend: QueueBackend) -> QueueStrategy:
        if cls._instance is None:
            if backend == QueueBackend.REDIS_STREAMS:
                cls._instance = _stream_or_memory()
            elif backend == QueueBackend.MEMORY:
                cls._instance = InMemoryQueue()
                print("✅ In-memory click queue ready")
            else:
                raise ValueError(f"Unknown queue backend: {backend}")
        return cls._instance

    @classmethod
    def clear_instance(cls):
        cls._instance = None

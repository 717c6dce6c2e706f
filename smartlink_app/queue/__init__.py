"""
Click event queue.
Redis Streams in production, in-memory for development and tests.
"""

from .strategies import QueueStrategy, RedisStreamQueue, InMemoryQueue
from .factory import QueueBackend, QueueFactory
from .models import ClickEvent

__all__ = [
    "QueueStrategy",
    "RedisStreamQueue",
    "InMemoryQueue",
    "QueueBackend",
    "QueueFactory",
    "ClickEvent",
]


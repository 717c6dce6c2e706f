"""
Click queue backends.

The redirect route publishes a ClickEvent per visit and returns immediately.
The click worker drains the queue in batches, so counters and analytics are
written off the request path.
"""

import json
import socket
from abc import ABC, abstractmethod
from collections import deque
from itertools import count
from typing import Deque, Dict, List

from .models import ClickEvent


class QueueStrategy(ABC):
    """
    Interface every queue backend implements.

    Like the cache, backends report failures by return value (False / empty
    batch) instead of raising, so a queue outage never breaks a redirect.
    """

    @abstractmethod
    async def publish(self, queue_name: str, message: ClickEvent) -> bool:
        pass

    @abstractmethod
    async def consume(
        self,
        queue_name: str,
        batch_size: int = 100,
        block_time: int = 1000,
    ) -> List[ClickEvent]:
        """
        Read up to `batch_size` events, waiting up to `block_time` ms.

        Events read here stay pending until acknowledged with `ack`.
        """
        pass

    @abstractmethod
    async def ack(self, queue_name: str, message_ids: List[str]) -> bool:
        pass

    @abstractmethod
    async def get_queue_length(self, queue_name: str) -> int:
        pass

    @abstractmethod
    async def get_pending_count(self, queue_name: str) -> int:
        """Events handed out by `consume` and not yet acknowledged."""
        pass


class RedisStreamQueue(QueueStrategy):
    """
    Redis Streams backend: XADD to publish, XREADGROUP/XACK to consume.

    Several click workers can share one consumer group; each event is
    delivered to one of them.
    """

    def __init__(self, redis_client, consumer_group: str = "click_workers"):
        self.redis = redis_client
        self.consumer_group = consumer_group
        self.consumer_name = f"worker-{socket.gethostname()}-{id(self)}"
        self._initialized_streams = set()

    def _ensure_stream_exists(self, queue_name: str):
        if queue_name in self._initialized_streams:
            return
        try:
            self.redis.xgroup_create(
                name=queue_name,
                groupname=self.consumer_group,
                id="0",
                mkstream=True,
            )
            print(f"✅ Created Redis stream: {queue_name}")
        except Exception as e:
            # BUSYGROUP: group already exists
            if "BUSYGROUP" not in str(e):
                print(f"⚠️  Stream creation warning: {e}")
        self._initialized_streams.add(queue_name)

    async def publish(self, queue_name: str, message: ClickEvent) -> bool:
        try:
            self._ensure_stream_exists(queue_name)
            self.redis.xadd(queue_name, {"data": message.model_dump_json()})
            return True
        except Exception as e:
            print(f"❌ Redis publish error: {e}")
            return False

    async def consume(
        self,
        queue_name: str,
        batch_size: int = 100,
        block_time: int = 1000,
    ) -> List[ClickEvent]:
        # This consumer's unacknowledged backlog first, then new entries
        # TODO: reclaim entries left pending by consumers that died (XAUTOCLAIM)
        try:
            self._ensure_stream_exists(queue_name)
            messages = self._read(queue_name, "0", batch_size)
            if not self._has_entries(messages):
                messages = self._read(queue_name, ">", batch_size, block_time)
        except Exception as e:
            print(f"❌ Redis consume error: {e}")
            return []

        events = []
        for _, stream_messages in messages or []:
            for message_id, message_data in stream_messages:
                message_id = message_id.decode("utf-8")
                try:
                    data = json.loads(message_data[b"data"].decode("utf-8"))
                    event = ClickEvent(**data)
                except Exception as e:
                    # Unparseable (or trimmed) entries would otherwise stay pending forever
                    print(f"⚠️  Dropping malformed click event {message_id}: {e}")
                    self.redis.xack(queue_name, self.consumer_group, message_id)
                    continue
                event.message_id = message_id
                events.append(event)
        return events

    def _read(self, queue_name: str, stream_id: str, batch_size: int, block_time: int = None):
        return self.redis.xreadgroup(
            groupname=self.consumer_group,
            consumername=self.consumer_name,
            streams={queue_name: stream_id},
            count=batch_size,
            block=block_time,
        )

    @staticmethod
    def _has_entries(messages) -> bool:
        return any(stream_messages for _, stream_messages in messages or [])

    async def ack(self, queue_name: str, message_ids: List[str]) -> bool:
        if not message_ids:
            return True
        try:
            self.redis.xack(queue_name, self.consumer_group, *message_ids)
            return True
        except Exception as e:
            print(f"❌ Redis ack error: {e}")
            return False

    async def get_queue_length(self, queue_name: str) -> int:
        try:
            return self.redis.xinfo_stream(queue_name)["length"]
        except Exception:
            return 0

    async def get_pending_count(self, queue_name: str) -> int:
        try:
            return self.redis.xpending(queue_name, self.consumer_group)["pending"]
        except Exception:
            return 0


class InMemoryQueue(QueueStrategy):
    """
    Process-local queue for development and tests.

    Consumed events stay pending until acknowledged and are handed out
    again, ahead of new ones, by the next `consume`.
    """

    def __init__(self):
        self._queues: Dict[str, Deque[ClickEvent]] = {}
        self._pending: Dict[str, Dict[str, ClickEvent]] = {}
        self._ids = count(1)

    def _get_queue(self, queue_name: str) -> Deque[ClickEvent]:
        return self._queues.setdefault(queue_name, deque())

    async def publish(self, queue_name: str, message: ClickEvent) -> bool:
        self._get_queue(queue_name).append(message)
        return True

    async def consume(
        self,
        queue_name: str,
        batch_size: int = 100,
        block_time: int = 1000,
    ) -> List[ClickEvent]:
        pending = self._pending.setdefault(queue_name, {})
        if pending:
            return list(pending.values())[:batch_size]

        queue = self._get_queue(queue_name)
        events = []
        for _ in range(min(batch_size, len(queue))):
            event = queue.popleft()
            event.message_id = f"{next(self._ids)}-0"
            pending[event.message_id] = event
            events.append(event)
        return events

    async def ack(self, queue_name: str, message_ids: List[str]) -> bool:
        pending = self._pending.get(queue_name, {})
        for message_id in message_ids:
            pending.pop(message_id, None)
        return True

    async def get_queue_length(self, queue_name: str) -> int:
        return len(self._get_queue(queue_name))

    async def get_pending_count(self, queue_name: str) -> int:
        return len(self._pending.get(queue_name, {}))

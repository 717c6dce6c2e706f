"""
Shared Redis connection setup for the cache and queue factories.
"""

import redis

from smartlink_app.config import settings


def connect_redis(url: str = None) -> redis.Redis:
    """Open a client and PING it. Connection errors propagate to the caller."""
    client = redis.from_url(
        url or settings.redis_url,
        decode_responses=False,
        socket_connect_timeout=2,
        socket_timeout=2,
    )
    client.ping()
    return client

"""
Database models for the transactional store.

Click analytics are written to the separate click store (SQLite/ClickHouse),
not to these tables. Only aggregate counters live here.
"""

from .url import URL
from .routing_rule import RoutingRule
from .variant import URLVariant

__all__ = ["URL", "RoutingRule", "URLVariant"]

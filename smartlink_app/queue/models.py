"""
Data models for queue messages.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClickEvent(BaseModel):
    """
    One redirect, published by the redirect route and consumed by the click worker.

    Carries the routing outcome (mechanism, rule_id, variant_id) so the worker
    can bump per-rule and per-variant counters, plus the visit attributes the
    analytics store keeps.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "short_code": "abc12",
                "url_id": 1,
                "timestamp": "2026-01-07T10:30:00Z",
                "ip_address": "203.0.113.7",
                "user_agent": "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) Mobile Safari/604.1",
                "referer": "https://twitter.com",
                "country": "TW",
                "device_type": "mobile",
                "os": "iOS",
                "browser": "Safari",
                "language": "zh-TW",
                "mechanism": "rule",
                "rule_id": 3,
                "target_url": "https://apps.apple.com/app/id123",
            }
        }
    )

    short_code: str = Field(..., description="The short code that was accessed")
    url_id: int = Field(..., description="ID of the short link")
    timestamp: datetime = Field(default_factory=_utcnow, description="When the click happened")

    # Request metadata
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referer: Optional[str] = None

    # Visit attributes as seen by the router
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    device_type: Optional[str] = None
    os: Optional[str] = None
    browser: Optional[str] = None
    is_bot: bool = False
    language: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_term: Optional[str] = None
    utm_content: Optional[str] = None

    # Routing outcome
    mechanism: str = Field(..., description="rule, variant, control or fallback")
    rule_id: Optional[int] = None
    variant_id: Optional[int] = None
    target_url: Optional[str] = None

    # Set by the queue backend on consume, used for acknowledgement
    message_id: Optional[str] = Field(None, exclude=True)

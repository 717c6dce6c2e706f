"""
Read-only copies of a short link and its routing data.

The redirect path evaluates these instead of live ORM objects, and the whole
RedirectSnapshot is what gets cached per short code.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from .conditions import RoutingConditions, conditions_to_wire, load_conditions
from .context import UTM_PARAMS


def has_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True once `expires_at` has passed. Naive values (SQLite) are read as UTC."""
    if expires_at is None:
        return False
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return (now or datetime.now(timezone.utc)) >= expires_at


class UrlSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    short_code: Optional[str] = None
    original_url: str
    is_active: bool = True
    is_smart_routing: bool = False
    default_url: Optional[str] = None
    is_ab_test: bool = False
    expires_at: Optional[datetime] = None

    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_term: Optional[str] = None
    utm_content: Optional[str] = None

    @property
    def utm_presets(self) -> Dict[str, Optional[str]]:
        return {name: getattr(self, name) for name in UTM_PARAMS}

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return has_expired(self.expires_at, now)


class RuleSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    name: str
    target_url: str
    priority: int = 0
    is_active: bool = True
    conditions: RoutingConditions = Field(default_factory=RoutingConditions)

    @field_validator("conditions", mode="before")
    @classmethod
    def _load_leniently(cls, value):
        conditions, _ = load_conditions(value)
        return conditions

    @field_serializer("conditions")
    def _conditions_wire(self, conditions: RoutingConditions):
        return conditions_to_wire(conditions)


class VariantSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    name: str
    target_url: str
    weight: int = 50
    is_active: bool = True


class RedirectSnapshot(BaseModel):
    """Everything `resolve` needs for one short link."""

    model_config = ConfigDict(frozen=True)

    url: UrlSnapshot
    rules: List[RuleSnapshot] = Field(default_factory=list)
    variants: List[VariantSnapshot] = Field(default_factory=list)

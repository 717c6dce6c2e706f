"""
Visit context: the normalized attributes of one redirect request.

Built once per request by the enrichment layer and read by the condition
evaluator. Time-derived fields (day of week, minutes since midnight) are
computed from `timestamp` in the visitor's timezone.
"""

from datetime import datetime, timezone, tzinfo
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


UTM_PARAMS = ("utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content")


class DeviceType(str, Enum):
    """Device classes produced by user-agent parsing"""
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_zone(name: Optional[str]) -> Optional[tzinfo]:
    """Return tzinfo for an IANA name, or None if the name is unknown."""
    if not name:
        return None
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def minutes_since_midnight(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


def sunday_first_weekday(moment: datetime) -> int:
    """0 = Sunday ... 6 = Saturday (Python's weekday() starts on Monday)."""
    return (moment.weekday() + 1) % 7


class VisitContext(BaseModel):
    """
    Immutable snapshot of who is visiting, from where, and when.

    Every attribute is optional except the timestamp: a field the enrichment
    layer could not determine is simply None, and the evaluator treats that
    as "absent" (see evaluator.evaluate_condition).
    """

    model_config = ConfigDict(frozen=True)

    # Geographic
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None

    # Device & browser
    device_type: Optional[DeviceType] = None
    os: Optional[str] = None
    browser: Optional[str] = None
    is_bot: bool = False

    # Preferences and traffic source
    language: Optional[str] = None
    referer: Optional[str] = None

    # UTM parameters
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_term: Optional[str] = None
    utm_content: Optional[str] = None

    # Time
    timestamp: datetime = Field(default_factory=_utcnow)
    timezone: str = "UTC"

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # Naive timestamps are taken as UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def local_time(self, zone_name: Optional[str] = None) -> Optional[datetime]:
        """
        Visit timestamp converted to a timezone.

        Without `zone_name` the visitor's own timezone is used, falling back
        to UTC when it is unknown. With an explicit `zone_name` an unknown
        zone returns None so the caller can treat the condition as malformed.
        """
        if zone_name is None:
            zone = resolve_zone(self.timezone) or timezone.utc
        else:
            zone = resolve_zone(zone_name)
            if zone is None:
                return None
        return self.timestamp.astimezone(zone)

    @computed_field
    @property
    def day_of_week(self) -> int:
        return sunday_first_weekday(self.local_time())

    @computed_field
    @property
    def time_of_day(self) -> int:
        return minutes_since_midnight(self.local_time())

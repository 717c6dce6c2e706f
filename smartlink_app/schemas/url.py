import ipaddress
from datetime import datetime, timezone
from typing import Annotated, Dict, List, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    PlainSerializer,
    computed_field,
)
from smartlink_app.config import settings


def _reject_internal_host(url: HttpUrl) -> str:
    """Redirect targets must be public http(s) hosts."""
    host = (url.host or "").strip("[]").lower()
    if host == "localhost" or host.endswith(".localhost"):
        raise ValueError("URL must not point to localhost")
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return str(url)
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        address = address.ipv4_mapped
    if address.is_private or address.is_loopback or address.is_link_local or address.is_unspecified:
        raise ValueError("URL must not point to a private or internal address")
    return str(url)


# Validated as an http(s) URL, handed to services as a plain string
SafeUrl = Annotated[
    HttpUrl,
    AfterValidator(_reject_internal_host),
    PlainSerializer(str, return_type=str),
]


def _require_future(value: datetime) -> datetime:
    """Expiry must lie ahead. Naive values are taken as UTC; stored as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    if value <= datetime.now(timezone.utc):
        raise ValueError("expires_at must be in the future")
    return value


FutureDatetime = Annotated[datetime, AfterValidator(_require_future)]
UtmValue = Optional[Annotated[str, Field(max_length=255)]]


class UtmPresets(BaseModel):
    """UTM values a link adds to its redirects; visitor-supplied values win"""
    utm_source: UtmValue = None
    utm_medium: UtmValue = None
    utm_campaign: UtmValue = None
    utm_term: UtmValue = None
    utm_content: UtmValue = None


class URLCreate(UtmPresets):
    original_url: SafeUrl = Field(..., description="The URL to be shortened")
    default_url: Optional[SafeUrl] = Field(
        None, description="Where smart routing sends visits no rule matched"
    )
    expires_at: Optional[FutureDatetime] = Field(None, description="Stop redirecting after this moment")


class URLUpdate(UtmPresets):
    """Partial update; only fields present in the request body change. null clears a field."""
    original_url: Optional[SafeUrl] = None
    default_url: Optional[SafeUrl] = None
    expires_at: Optional[FutureDatetime] = None
    is_active: Optional[bool] = None


class URLResponse(BaseModel):
    """Serializes the URL model straight from the ORM object"""
    id: int
    short_code: str
    original_url: str
    total_hits: int
    is_active: bool
    is_smart_routing: bool
    default_url: Optional[str] = None
    is_ab_test: bool
    expires_at: Optional[datetime] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_term: Optional[str] = None
    utm_content: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @computed_field
    @property
    def short_url(self) -> str:
        return f"{settings.base_url}/{self.short_code}"

    model_config = ConfigDict(from_attributes=True)


class ReferrerCount(BaseModel):
    referer: str
    count: int


class URLStats(BaseModel):
    short_code: str
    total_hits: int
    created_at: datetime
    last_accessed: Optional[datetime] = None
    # From the click store; these trail total_hits until the worker catches up
    clicks_by_mechanism: Dict[str, int] = Field(default_factory=dict)
    clicks_by_device: Dict[str, int] = Field(default_factory=dict)
    clicks_by_country: Dict[str, int] = Field(default_factory=dict)
    top_referers: List[ReferrerCount] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

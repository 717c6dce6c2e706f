"""
Build a VisitContext from raw request data.

Geo data comes from headers set by the CDN / reverse proxy in front of the
service (Cloudflare, Vercel, or a generic X-Country-Code style proxy).
There is no IP database lookup here.
"""

from datetime import datetime
from typing import Dict, Mapping, Optional
from urllib.parse import unquote_plus, urlencode, urlsplit, urlunsplit

from smartlink_app.config import settings
from smartlink_app.routing.context import UTM_PARAMS, VisitContext, resolve_zone

from .user_agent import is_bot, parse_user_agent

COUNTRY_HEADERS = ("cf-ipcountry", "x-vercel-ip-country", "x-country-code")
REGION_HEADERS = ("cf-region-code", "x-vercel-ip-country-region", "x-region-code")
CITY_HEADERS = ("cf-ipcity", "x-vercel-ip-city", "x-city")
TIMEZONE_HEADERS = ("x-timezone", "cf-timezone", "x-vercel-ip-timezone")

# Placeholder values proxies send when they could not geolocate
_UNKNOWN_COUNTRIES = {"XX", "T1", "--"}


def _lower_keys(headers: Mapping[str, str]) -> dict:
    return {str(key).lower(): value for key, value in headers.items()}


def _first_header(headers: dict, names) -> Optional[str]:
    for name in names:
        value = (headers.get(name) or "").strip()
        if value:
            return value
    return None


def primary_language(accept_language: Optional[str]) -> Optional[str]:
    """
    Highest-weighted tag from an Accept-Language header.

    "zh-TW,zh;q=0.9,en;q=0.8" -> "zh-TW". Wildcards are ignored.
    """
    if not accept_language:
        return None

    best_tag, best_q = None, -1.0
    for part in accept_language.split(","):
        pieces = part.strip().split(";")
        tag = pieces[0].strip()
        if not tag or tag == "*":
            continue
        q = 1.0
        for param in pieces[1:]:
            name, _, raw = param.strip().partition("=")
            if name.strip().lower() == "q":
                try:
                    q = float(raw)
                except ValueError:
                    q = 0.0
        if q > best_q:
            best_tag, best_q = tag, q
    return best_tag


def build_visit_context(
    headers: Mapping[str, str],
    query_params: Optional[Mapping[str, str]] = None,
    timestamp: Optional[datetime] = None,
) -> VisitContext:
    """Normalize request headers and query string into a VisitContext."""
    headers = _lower_keys(headers)
    query_params = query_params or {}
    user_agent = headers.get("user-agent")
    parsed = parse_user_agent(user_agent)

    country = _first_header(headers, COUNTRY_HEADERS)
    if country and country.upper() in _UNKNOWN_COUNTRIES:
        country = None

    zone = (query_params.get("tz") or "").strip() or _first_header(headers, TIMEZONE_HEADERS)
    if not resolve_zone(zone):
        zone = settings.default_timezone

    fields = {
        "country": country.upper() if country else None,
        "region": _first_header(headers, REGION_HEADERS),
        "city": _first_header(headers, CITY_HEADERS),
        "device_type": parsed.device_type,
        "os": parsed.os,
        "browser": parsed.browser,
        "is_bot": is_bot(user_agent),
        "language": primary_language(headers.get("accept-language")),
        "referer": (headers.get("referer") or "").strip() or None,
        "timezone": zone,
    }
    for param in UTM_PARAMS:
        value = (query_params.get(param) or "").strip()
        fields[param] = value or None
    if timestamp is not None:
        fields["timestamp"] = timestamp

    return VisitContext(**fields)


def utm_values(
    query_params: Mapping[str, str],
    presets: Optional[Mapping[str, Optional[str]]] = None,
) -> Dict[str, str]:
    """
    UTM values for one visit: the visitor's own, else the link's presets.

    Blank values count as absent. Keys are returned in UTM_PARAMS order.
    """
    presets = presets or {}
    merged = {}
    for param in UTM_PARAMS:
        value = (query_params.get(param) or "").strip() or (presets.get(param) or "").strip()
        if value:
            merged[param] = value
    return merged


def _query_key(segment: str) -> str:
    return unquote_plus(segment.partition("=")[0])


def forward_utm_params(
    target_url: str,
    query_params: Mapping[str, str],
    presets: Optional[Mapping[str, Optional[str]]] = None,
) -> str:
    """
    Put the visit's utm_* values on the redirect target.

    Merged values replace same-named params already on the target. The rest
    of the target's query string and its fragment are left as written.
    """
    merged = utm_values(query_params, presets)
    if not merged:
        return target_url

    parts = urlsplit(target_url)
    kept = [
        segment
        for segment in parts.query.split("&")
        if segment and _query_key(segment) not in merged
    ]
    query = "&".join(kept + [urlencode(merged)])
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))

"""
Lightweight user-agent classification.

Substring matching on the lowercased header, good enough for routing by
device class, OS family and browser family. Order matters: more specific
tokens are checked before the generic ones they contain (e.g. Edge and
Opera UAs also contain "chrome", iPadOS UAs contain "mac os x").
"""

import re
from typing import NamedTuple, Optional

from smartlink_app.routing.context import DeviceType


class ParsedUserAgent(NamedTuple):
    device_type: Optional[DeviceType]
    os: Optional[str]
    browser: Optional[str]


_OS_PATTERNS = (
    ("windows phone", "Windows Phone"),
    ("ipad", "iOS"),
    ("iphone", "iOS"),
    ("ipod", "iOS"),
    ("android", "Android"),
    ("cros", "Chrome OS"),
    ("windows", "Windows"),
    ("mac os x", "Mac OS"),
    ("macintosh", "Mac OS"),
    ("linux", "Linux"),
)

_BROWSER_PATTERNS = (
    ("edg/", "Edge"),
    ("edge/", "Edge"),
    ("opr/", "Opera"),
    ("opera", "Opera"),
    ("samsungbrowser", "Samsung Browser"),
    ("fxios", "Firefox"),
    ("firefox", "Firefox"),
    ("crios", "Chrome"),
    ("chrome", "Chrome"),
    ("chromium", "Chrome"),
    ("safari", "Safari"),
    ("msie", "IE"),
    ("trident/", "IE"),
)

_TABLET_RE = re.compile(r"ipad|tablet|kindle|silk|playbook|nexus (7|9|10)")
_MOBILE_RE = re.compile(r"mobi|iphone|ipod|windows phone|blackberry|opera mini|iemobile")


def _first_match(ua: str, patterns) -> Optional[str]:
    for token, name in patterns:
        if token in ua:
            return name
    return None


def parse_user_agent(user_agent: Optional[str]) -> ParsedUserAgent:
    """
    Classify a User-Agent header.

    Anything that is not recognisably a phone or tablet is a desktop, so a
    missing or empty header gives (None, None, None) but an unknown
    non-empty one gives a desktop with unknown OS/browser.
    """
    if not user_agent or not user_agent.strip():
        return ParsedUserAgent(None, None, None)

    ua = user_agent.lower()
    os_name = _first_match(ua, _OS_PATTERNS)
    browser = _first_match(ua, _BROWSER_PATTERNS)

    if _TABLET_RE.search(ua) or ("android" in ua and "mobile" not in ua):
        device_type = DeviceType.TABLET
    elif _MOBILE_RE.search(ua):
        device_type = DeviceType.MOBILE
    else:
        device_type = DeviceType.DESKTOP

    return ParsedUserAgent(device_type, os_name, browser)


# Crawlers, link unfurlers, monitoring and scripted clients
_BOT_RE = re.compile(
    r"googlebot|bingbot|slurp|duckduckbot|baiduspider|yandexbot|sogou|exabot"
    r"|facebookexternalhit|twitterbot|linkedinbot|whatsapp|telegrambot|slackbot|discordbot"
    r"|ahrefsbot|semrushbot|mj12bot|dotbot|rogerbot|screaming frog|uptimerobot|pingdom|statuscake"
    r"|gptbot|claude-web|anthropic-ai|cohere-ai|meta-externalagent|amazonbot|applebot"
    r"|headlesschrome|phantomjs|selenium|webdriver|playwright|puppeteer|cypress"
    r"|crawler|spider|bot\b|scraper|curl|wget|python-requests|axios|go-http-client|java/"
)


def is_bot(user_agent: Optional[str]) -> bool:
    """True for known crawlers and scripted HTTP clients. A missing header is not a bot."""
    if not user_agent:
        return False
    return _BOT_RE.search(user_agent.lower()) is not None

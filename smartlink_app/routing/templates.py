"""Ready-made rule condition sets offered by the routing API."""

from typing import Dict, NamedTuple

from .conditions import RoutingConditions


class RuleTemplate(NamedTuple):
    name: str
    description: str
    conditions: RoutingConditions


def _template(name: str, description: str, operator: str, *conditions: dict) -> RuleTemplate:
    return RuleTemplate(
        name=name,
        description=description,
        conditions=RoutingConditions.model_validate(
            {"operator": operator, "conditions": list(conditions)}
        ),
    )


RULE_TEMPLATES: Dict[str, RuleTemplate] = {
    "APP_DOWNLOAD_IOS": _template(
        "iOS App Download",
        "Redirect iOS users to the App Store",
        "AND",
        {"type": "os", "operator": "equals", "value": "iOS"},
    ),
    "APP_DOWNLOAD_ANDROID": _template(
        "Android App Download",
        "Redirect Android users to Google Play",
        "AND",
        {"type": "os", "operator": "equals", "value": "Android"},
    ),
    "MULTILANG_TW": _template(
        "Traditional Chinese Users",
        "Redirect users preferring Traditional Chinese",
        "OR",
        {"type": "language", "operator": "contains", "value": "zh-TW"},
        {"type": "language", "operator": "contains", "value": "zh-Hant"},
        {"type": "country", "operator": "equals", "value": "TW"},
    ),
    "MULTILANG_CN": _template(
        "Simplified Chinese Users",
        "Redirect users preferring Simplified Chinese",
        "OR",
        {"type": "language", "operator": "contains", "value": "zh-CN"},
        {"type": "language", "operator": "contains", "value": "zh-Hans"},
        {"type": "country", "operator": "equals", "value": "CN"},
    ),
    "BUSINESS_HOURS": _template(
        "Business Hours",
        "Redirect during business hours (Mon-Fri, 09:00-18:00)",
        "AND",
        {"type": "time", "operator": "between", "value": {"start": "09:00", "end": "18:00"}},
        {"type": "day_of_week", "operator": "in", "value": ["1", "2", "3", "4", "5"]},
    ),
    "MOBILE_ONLY": _template(
        "Mobile Users",
        "Redirect mobile device users",
        "AND",
        {"type": "device", "operator": "equals", "value": "mobile"},
    ),
    "DESKTOP_ONLY": _template(
        "Desktop Users",
        "Redirect desktop users",
        "AND",
        {"type": "device", "operator": "equals", "value": "desktop"},
    ),
}


def get_template(key: str):
    return RULE_TEMPLATES.get(key.upper()) if key else None

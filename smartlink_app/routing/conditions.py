"""
Routing condition types.

On the wire (API payloads, the routing_rules.conditions JSON column, the
redirect cache) a condition value is a string, a list of strings, or a
{"start", "end", "timezone"} object. At creation time it is parsed into one
of three tagged value types, chosen by the operator:

    StringValue  - equals, not_equals, contains, not_contains, starts_with, ends_with
    ListValue    - in, not_in
    RangeValue   - between, before, after  (before/after use `start` as threshold)

Validation happens here, when a rule is written. Stored data that no longer
validates is loaded with `load_conditions`, which keeps the bad items as
never-matching placeholders instead of raising.
"""

import re
from enum import Enum
from typing import Any, List, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    model_validator,
)

from .context import resolve_zone


class ConditionType(str, Enum):
    """Visit attribute a condition looks at"""
    # Geographic
    COUNTRY = "country"
    REGION = "region"
    CITY = "city"
    # Device & browser
    DEVICE = "device"
    OS = "os"
    BROWSER = "browser"
    # Preferences
    LANGUAGE = "language"
    # Traffic source
    REFERER = "referer"
    # UTM parameters
    UTM_SOURCE = "utm_source"
    UTM_MEDIUM = "utm_medium"
    UTM_CAMPAIGN = "utm_campaign"
    UTM_TERM = "utm_term"
    UTM_CONTENT = "utm_content"
    # Time-based
    TIME = "time"
    DAY_OF_WEEK = "day_of_week"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IN = "in"
    NOT_IN = "not_in"
    BETWEEN = "between"
    BEFORE = "before"
    AFTER = "after"


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"


STRING_OPERATORS = frozenset({
    ConditionOperator.EQUALS,
    ConditionOperator.NOT_EQUALS,
    ConditionOperator.CONTAINS,
    ConditionOperator.NOT_CONTAINS,
    ConditionOperator.STARTS_WITH,
    ConditionOperator.ENDS_WITH,
})
LIST_OPERATORS = frozenset({ConditionOperator.IN, ConditionOperator.NOT_IN})
RANGE_OPERATORS = frozenset({
    ConditionOperator.BETWEEN,
    ConditionOperator.BEFORE,
    ConditionOperator.AFTER,
})

TIME_TYPES = frozenset({ConditionType.TIME, ConditionType.DAY_OF_WEEK})

ALLOWED_OPERATORS = {
    condition_type: STRING_OPERATORS | LIST_OPERATORS
    for condition_type in ConditionType
    if condition_type not in TIME_TYPES
}
ALLOWED_OPERATORS[ConditionType.TIME] = RANGE_OPERATORS
ALLOWED_OPERATORS[ConditionType.DAY_OF_WEEK] = RANGE_OPERATORS | frozenset({
    ConditionOperator.EQUALS,
    ConditionOperator.NOT_EQUALS,
    ConditionOperator.IN,
    ConditionOperator.NOT_IN,
})

MINUTES_PER_DAY = 24 * 60
_CLOCK_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def is_compatible(condition_type, operator) -> bool:
    """True if `operator` may be used with `condition_type`."""
    return operator in ALLOWED_OPERATORS.get(condition_type, frozenset())


class StringValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: str


class ListValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    values: List[str]


class RangeValue(BaseModel):
    """
    Bounds for time and day_of_week conditions.

    Time bounds are minutes since midnight, day bounds are 0 (Sunday) to 6.
    `end` is only set for `between`. `timezone` overrides the visitor's zone.
    """
    model_config = ConfigDict(frozen=True)

    start: int
    end: Optional[int] = None
    timezone: Optional[str] = None


ConditionValue = Union[StringValue, ListValue, RangeValue]
_TAGGED_VALUES = (StringValue, ListValue, RangeValue)


def parse_clock(raw: Any) -> int:
    """Parse "HH:MM" or a plain minute count into minutes since midnight."""
    if isinstance(raw, bool):
        raise ValueError("time bound must be 'HH:MM' or minutes since midnight")
    if isinstance(raw, int):
        minutes = raw
    elif isinstance(raw, str):
        text = raw.strip()
        match = _CLOCK_RE.match(text)
        if match:
            minutes = int(match.group(1)) * 60 + int(match.group(2))
        elif text.isdigit():
            minutes = int(text)
        else:
            raise ValueError(f"invalid time '{raw}', expected HH:MM (00:00-23:59)")
    else:
        raise ValueError("time bound must be 'HH:MM' or minutes since midnight")
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValueError(f"time {minutes} is outside 0-{MINUTES_PER_DAY - 1} minutes")
    return minutes


def format_clock(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_day(raw: Any) -> int:
    """Parse a day-of-week number (0 = Sunday ... 6 = Saturday)."""
    if isinstance(raw, bool):
        raise ValueError("day of week must be a number 0-6")
    if isinstance(raw, str) and raw.strip().isdigit():
        raw = int(raw.strip())
    if not isinstance(raw, int) or not 0 <= raw <= 6:
        raise ValueError(f"invalid day of week '{raw}', expected 0-6")
    return raw


def _parse_bound(condition_type: ConditionType, raw: Any) -> int:
    if condition_type == ConditionType.TIME:
        return parse_clock(raw)
    if condition_type == ConditionType.DAY_OF_WEEK:
        return parse_day(raw)
    raise ValueError(f"'{condition_type.value}' conditions do not take a range")


def _as_enum(enum_cls, raw):
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(raw)
    except ValueError:
        return None


def coerce_condition_value(condition_type: Any, operator: Any, raw: Any) -> Any:
    """
    Turn a wire value into the tagged value its operator expects.

    Unknown type/operator values are returned untouched so that field
    validation reports them.
    """
    condition_type = _as_enum(ConditionType, condition_type)
    operator = _as_enum(ConditionOperator, operator)
    if condition_type is None or operator is None or isinstance(raw, _TAGGED_VALUES):
        return raw

    if operator in RANGE_OPERATORS:
        if isinstance(raw, dict):
            if raw.get("start") is None:
                raise ValueError("range value requires 'start'")
            end = raw.get("end")
            return RangeValue(
                start=_parse_bound(condition_type, raw["start"]),
                end=_parse_bound(condition_type, end) if end is not None else None,
                timezone=raw.get("timezone") or None,
            )
        return RangeValue(start=_parse_bound(condition_type, raw))

    if operator in LIST_OPERATORS:
        if isinstance(raw, (list, tuple)):
            items = list(raw)
        elif isinstance(raw, (str, int)) and not isinstance(raw, bool):
            items = [raw]
        else:
            raise ValueError("in/not_in require a list of strings")
        if not all(isinstance(item, (str, int)) and not isinstance(item, bool) for item in items):
            raise ValueError("in/not_in values must be strings")
        return ListValue(values=[str(item) for item in items])

    if isinstance(raw, int) and not isinstance(raw, bool):
        raw = str(raw)
    if not isinstance(raw, str):
        raise ValueError(f"'{operator.value}' requires a string value")
    return StringValue(value=raw)


def value_problem(condition_type, operator, value) -> Optional[str]:
    """Describe why `value` cannot be used with type/operator, or None if it can."""
    if operator in RANGE_OPERATORS:
        if not isinstance(value, RangeValue):
            return f"'{operator.value}' requires a range value"
        if operator == ConditionOperator.BETWEEN and value.end is None:
            return "'between' requires both start and end"
        if value.timezone and resolve_zone(value.timezone) is None:
            return f"unknown timezone '{value.timezone}'"
        return None

    if operator in LIST_OPERATORS:
        if not isinstance(value, ListValue) or not value.values:
            return f"'{operator.value}' requires a non-empty list"
        items = value.values
    elif not isinstance(value, StringValue) or not value.value.strip():
        return f"'{operator.value}' requires a non-empty string"
    else:
        items = [value.value]

    if condition_type == ConditionType.DAY_OF_WEEK:
        try:
            for item in items:
                parse_day(item)
        except ValueError as exc:
            return str(exc)
    return None


def value_to_wire(condition_type, value) -> Any:
    """Inverse of coerce_condition_value."""
    if isinstance(value, StringValue):
        return value.value
    if isinstance(value, ListValue):
        return list(value.values)
    if isinstance(value, RangeValue):
        if condition_type == ConditionType.TIME:
            bounds = {"start": format_clock(value.start)}
            if value.end is not None:
                bounds["end"] = format_clock(value.end)
        else:
            bounds = {"start": value.start}
            if value.end is not None:
                bounds["end"] = value.end
        if value.timezone:
            bounds["timezone"] = value.timezone
        return bounds
    return value


class ConditionItem(BaseModel):
    """One atomic predicate over the visit context."""

    model_config = ConfigDict(frozen=True)

    type: ConditionType
    operator: ConditionOperator
    value: ConditionValue

    @model_validator(mode="before")
    @classmethod
    def _tag_value(cls, data: Any) -> Any:
        if isinstance(data, dict) and "value" in data:
            data = dict(data)
            data["value"] = coerce_condition_value(
                data.get("type"), data.get("operator"), data["value"]
            )
        return data

    @model_validator(mode="after")
    def _check_combination(self) -> "ConditionItem":
        if not is_compatible(self.type, self.operator):
            raise ValueError(
                f"operator '{self.operator.value}' is not valid for '{self.type.value}' conditions"
            )
        problem = value_problem(self.type, self.operator, self.value)
        if problem:
            raise ValueError(problem)
        return self

    @field_serializer("value")
    def _wire_value(self, value):
        return value_to_wire(self.type, value)


class RoutingConditions(BaseModel):
    """Condition list combined with AND/OR. An empty list always matches."""

    model_config = ConfigDict(frozen=True)

    operator: LogicalOperator = LogicalOperator.AND
    conditions: List[ConditionItem] = Field(default_factory=list)


def load_conditions(raw: Any) -> Tuple[RoutingConditions, List[str]]:
    """
    Parse stored conditions without raising.

    Items that fail validation are kept as unvalidated placeholders (value
    None) which the evaluator treats as false. A malformed envelope (not an
    object, unknown logical operator, conditions not a list) keeps the raw
    operator so the whole rule never matches.

    Returns the conditions and a list of problems for the caller to report.
    """
    if isinstance(raw, RoutingConditions):
        return raw, []
    if not isinstance(raw, dict):
        return RoutingConditions.model_construct(operator=None, conditions=[]), [
            "conditions must be an object"
        ]

    problems: List[str] = []
    raw_operator = raw.get("operator", LogicalOperator.AND.value)
    operator = _as_enum(LogicalOperator, str(raw_operator).upper())
    if operator is None:
        problems.append(f"unknown logical operator '{raw_operator}'")

    raw_items = raw.get("conditions", [])
    if not isinstance(raw_items, list):
        problems.append("conditions must be a list")
        return RoutingConditions.model_construct(operator=None, conditions=[]), problems

    items = []
    for index, raw_item in enumerate(raw_items):
        try:
            items.append(ConditionItem.model_validate(raw_item))
        except ValidationError as exc:
            errors = "; ".join(error["msg"] for error in exc.errors())
            problems.append(f"condition #{index + 1}: {errors}")
            fields = raw_item if isinstance(raw_item, dict) else {}
            items.append(ConditionItem.model_construct(
                type=fields.get("type"),
                operator=fields.get("operator"),
                value=None,
            ))

    return RoutingConditions.model_construct(operator=operator, conditions=items), problems


def conditions_to_wire(conditions: RoutingConditions) -> dict:
    """
    JSON form of loaded conditions, including never-matching placeholders.

    Placeholders keep their raw type/operator and a null value, so loading
    the result again yields the same placeholders.
    """
    operator = conditions.operator
    return {
        "operator": getattr(operator, "value", operator),
        "conditions": [
            {
                "type": getattr(item.type, "value", item.type),
                "operator": getattr(item.operator, "value", item.operator),
                "value": value_to_wire(item.type, item.value),
            }
            for item in conditions.conditions
        ],
    }

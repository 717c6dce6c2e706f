"""
Smart routing evaluation.

Pure functions: no I/O, no logging, no counters. Anything that cannot be
evaluated (unknown type, wrong value shape, unknown timezone) is a
non-match, never an exception.
"""

from typing import Iterable, List, Optional, Sequence

from .conditions import (
    ALLOWED_OPERATORS,
    ConditionItem,
    ConditionOperator,
    ConditionType,
    ListValue,
    LogicalOperator,
    RangeValue,
    RoutingConditions,
    StringValue,
    parse_day,
)
from .context import VisitContext, minutes_since_midnight, sunday_first_weekday

# Condition type -> VisitContext attribute
CONTEXT_FIELDS = {
    ConditionType.COUNTRY: "country",
    ConditionType.REGION: "region",
    ConditionType.CITY: "city",
    ConditionType.DEVICE: "device_type",
    ConditionType.OS: "os",
    ConditionType.BROWSER: "browser",
    ConditionType.LANGUAGE: "language",
    ConditionType.REFERER: "referer",
    ConditionType.UTM_SOURCE: "utm_source",
    ConditionType.UTM_MEDIUM: "utm_medium",
    ConditionType.UTM_CAMPAIGN: "utm_campaign",
    ConditionType.UTM_TERM: "utm_term",
    ConditionType.UTM_CONTENT: "utm_content",
}

# Operators that hold when the visit has no value for the field
ABSENT_FIELD_OPERATORS = frozenset({
    ConditionOperator.NOT_EQUALS,
    ConditionOperator.NOT_CONTAINS,
})


def _normalize(value) -> str:
    if hasattr(value, "value"):
        value = value.value
    return str(value).strip().lower()


def _in_range(current: int, start: int, end: int) -> bool:
    """Inclusive range check that wraps when start > end."""
    if start <= end:
        return start <= current <= end
    return current >= start or current <= end


def _compare_range(operator, current: int, bounds: RangeValue) -> bool:
    if operator == ConditionOperator.BETWEEN:
        if bounds.end is None:
            return False
        return _in_range(current, bounds.start, bounds.end)
    if operator == ConditionOperator.BEFORE:
        return current < bounds.start
    if operator == ConditionOperator.AFTER:
        return current > bounds.start
    return False


def _compare_string(operator, actual: str, value) -> bool:
    if operator in (ConditionOperator.IN, ConditionOperator.NOT_IN):
        if not isinstance(value, ListValue):
            return False
        found = actual in {_normalize(item) for item in value.values}
        return found if operator == ConditionOperator.IN else not found

    if not isinstance(value, StringValue):
        return False
    expected = _normalize(value.value)
    if operator == ConditionOperator.EQUALS:
        return actual == expected
    if operator == ConditionOperator.NOT_EQUALS:
        return actual != expected
    if operator == ConditionOperator.CONTAINS:
        return expected in actual
    if operator == ConditionOperator.NOT_CONTAINS:
        return expected not in actual
    if operator == ConditionOperator.STARTS_WITH:
        return actual.startswith(expected)
    if operator == ConditionOperator.ENDS_WITH:
        return actual.endswith(expected)
    return False


def _evaluate_time(condition: ConditionItem, ctx: VisitContext) -> bool:
    value = condition.value
    operator = condition.operator

    zone_name = value.timezone if isinstance(value, RangeValue) else None
    moment = ctx.local_time(zone_name)
    if moment is None:
        return False

    if condition.type == ConditionType.TIME:
        if not isinstance(value, RangeValue):
            return False
        return _compare_range(operator, minutes_since_midnight(moment), value)

    day = sunday_first_weekday(moment)
    if isinstance(value, RangeValue):
        return _compare_range(operator, day, value)

    try:
        if isinstance(value, StringValue):
            days = {parse_day(value.value)}
        elif isinstance(value, ListValue):
            days = {parse_day(item) for item in value.values}
        else:
            return False
    except ValueError:
        return False

    if operator in (ConditionOperator.EQUALS, ConditionOperator.IN):
        return day in days
    if operator in (ConditionOperator.NOT_EQUALS, ConditionOperator.NOT_IN):
        return day not in days
    return False


def evaluate_condition(condition: ConditionItem, ctx: VisitContext) -> bool:
    """Evaluate one condition against a visit."""
    condition_type = condition.type
    operator = condition.operator
    if condition.value is None:
        return False
    if operator not in ALLOWED_OPERATORS.get(condition_type, frozenset()):
        return False

    if condition_type in (ConditionType.TIME, ConditionType.DAY_OF_WEEK):
        return _evaluate_time(condition, ctx)

    raw = getattr(ctx, CONTEXT_FIELDS[condition_type], None)
    actual = _normalize(raw) if raw is not None else ""
    if not actual:
        if operator in ABSENT_FIELD_OPERATORS:
            # Shape still has to be right for the operator
            return isinstance(condition.value, StringValue)
        return False

    return _compare_string(operator, actual, condition.value)


def conditions_match(conditions: RoutingConditions, ctx: VisitContext) -> bool:
    """AND: all hold. OR: any holds. No conditions: always a match."""
    items = conditions.conditions
    if not items:
        return True
    if conditions.operator == LogicalOperator.AND:
        return all(evaluate_condition(item, ctx) for item in items)
    if conditions.operator == LogicalOperator.OR:
        return any(evaluate_condition(item, ctx) for item in items)
    return False


def order_rules(rules: Iterable) -> List:
    """
    Active rules with a target, highest priority first.

    sorted() is stable, so rules with equal priority keep their input order
    (creation order when loaded from the database).
    """
    candidates = [rule for rule in rules if rule.is_active and rule.target_url]
    return sorted(candidates, key=lambda rule: -rule.priority)


def select_rule(rules: Sequence, ctx: VisitContext) -> Optional[object]:
    """
    Return the first rule (by priority) whose conditions match, else None.

    Rules are any objects with `is_active`, `priority`, `target_url` and a
    `conditions` attribute holding RoutingConditions.
    """
    for rule in order_rules(rules):
        if conditions_match(rule.conditions, ctx):
            return rule
    return None

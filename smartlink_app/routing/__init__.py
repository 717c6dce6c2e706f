"""
Smart routing decision core.

Pure, I/O-free: given a visit context and read-only snapshots of a short
link's rules and variants, decide the redirect target.
"""

from .conditions import (
    ConditionItem,
    ConditionOperator,
    ConditionType,
    ListValue,
    LogicalOperator,
    RangeValue,
    RoutingConditions,
    StringValue,
    is_compatible,
    load_conditions,
)
from .context import DeviceType, VisitContext
from .decision import Mechanism, RedirectDecision
from .evaluator import conditions_match, evaluate_condition, select_rule
from .resolver import resolve
from .variants import control_weight, select_variant

__all__ = [
    "ConditionItem",
    "ConditionOperator",
    "ConditionType",
    "ListValue",
    "LogicalOperator",
    "RangeValue",
    "RoutingConditions",
    "StringValue",
    "is_compatible",
    "load_conditions",
    "DeviceType",
    "VisitContext",
    "Mechanism",
    "RedirectDecision",
    "conditions_match",
    "evaluate_condition",
    "select_rule",
    "resolve",
    "control_weight",
    "select_variant",
]

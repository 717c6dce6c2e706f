"""
Tests for routing condition parsing and validation.
"""
import pytest
from pydantic import ValidationError

from smartlink_app.routing import (
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
from smartlink_app.routing.conditions import conditions_to_wire, parse_clock, parse_day


class TestConditionItem:
    """Wire values are tagged by operator when a condition is created"""

    def test_string_operator_gets_string_value(self):
        item = ConditionItem(type="country", operator="equals", value="TW")
        assert item.value == StringValue(value="TW")

    def test_list_operator_gets_list_value(self):
        item = ConditionItem(type="country", operator="in", value=["TW", "HK"])
        assert item.value == ListValue(values=["TW", "HK"])

    def test_single_string_with_list_operator_is_wrapped(self):
        item = ConditionItem(type="language", operator="not_in", value="en")
        assert item.value == ListValue(values=["en"])

    def test_time_range_parsed_to_minutes(self):
        item = ConditionItem(
            type="time",
            operator="between",
            value={"start": "09:00", "end": "17:30", "timezone": "Asia/Taipei"},
        )
        assert item.value == RangeValue(start=540, end=1050, timezone="Asia/Taipei")

    def test_time_threshold_from_plain_string(self):
        item = ConditionItem(type="time", operator="before", value="08:15")
        assert item.value == RangeValue(start=495)

    def test_day_of_week_list_of_digit_strings(self):
        item = ConditionItem(type="day_of_week", operator="in", value=["1", "2", 3])
        assert item.value == ListValue(values=["1", "2", "3"])

    @pytest.mark.parametrize("data", [
        {"type": "country", "operator": "between", "value": {"start": "09:00", "end": "10:00"}},
        {"type": "time", "operator": "equals", "value": "09:00"},
        {"type": "time", "operator": "contains", "value": "9"},
        {"type": "device", "operator": "after", "value": "mobile"},
    ])
    def test_incompatible_operator_rejected(self, data):
        with pytest.raises(ValidationError):
            ConditionItem(**data)

    @pytest.mark.parametrize("data", [
        {"type": "country", "operator": "equals", "value": ""},
        {"type": "country", "operator": "equals", "value": ["TW"]},
        {"type": "country", "operator": "in", "value": []},
        {"type": "time", "operator": "between", "value": {"start": "09:00"}},
        {"type": "time", "operator": "between", "value": {"start": "25:00", "end": "26:00"}},
        {"type": "time", "operator": "after", "value": "noon"},
        {"type": "time", "operator": "between",
         "value": {"start": "09:00", "end": "10:00", "timezone": "Mars/Olympus"}},
        {"type": "day_of_week", "operator": "in", "value": ["monday"]},
        {"type": "day_of_week", "operator": "equals", "value": "7"},
    ])
    def test_malformed_value_rejected(self, data):
        with pytest.raises(ValidationError):
            ConditionItem(**data)

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            ConditionItem(type="moon_phase", operator="equals", value="full")

    def test_wire_form(self):
        item = ConditionItem(
            type="time", operator="between", value={"start": 540, "end": "18:00"}
        )
        assert item.model_dump(mode="json") == {
            "type": "time",
            "operator": "between",
            "value": {"start": "09:00", "end": "18:00"},
        }


class TestCompatibility:
    def test_time_types_only_take_ranges(self):
        assert is_compatible(ConditionType.TIME, ConditionOperator.BETWEEN)
        assert not is_compatible(ConditionType.TIME, ConditionOperator.IN)

    def test_day_of_week_takes_sets_and_ranges(self):
        assert is_compatible(ConditionType.DAY_OF_WEEK, ConditionOperator.IN)
        assert is_compatible(ConditionType.DAY_OF_WEEK, ConditionOperator.BETWEEN)
        assert not is_compatible(ConditionType.DAY_OF_WEEK, ConditionOperator.CONTAINS)

    def test_string_types_take_no_ranges(self):
        assert is_compatible(ConditionType.REFERER, ConditionOperator.ENDS_WITH)
        assert not is_compatible(ConditionType.REFERER, ConditionOperator.AFTER)


class TestParsers:
    def test_parse_clock(self):
        assert parse_clock("00:00") == 0
        assert parse_clock("9:05") == 545
        assert parse_clock("23:59") == 1439
        assert parse_clock(600) == 600

    @pytest.mark.parametrize("raw", ["24:00", "12:60", "-1", 1440, True, None, "abc"])
    def test_parse_clock_rejects(self, raw):
        with pytest.raises(ValueError):
            parse_clock(raw)

    def test_parse_day(self):
        assert parse_day(0) == 0
        assert parse_day(" 6 ") == 6

    @pytest.mark.parametrize("raw", [7, -1, "sun", False])
    def test_parse_day_rejects(self, raw):
        with pytest.raises(ValueError):
            parse_day(raw)


class TestRoutingConditions:
    def test_defaults_to_and_with_no_conditions(self):
        conditions = RoutingConditions()
        assert conditions.operator == LogicalOperator.AND
        assert conditions.conditions == []

    def test_unknown_logical_operator_rejected(self):
        with pytest.raises(ValidationError):
            RoutingConditions(operator="XOR", conditions=[])


class TestLoadConditions:
    """Stored conditions are loaded without raising"""

    def test_valid_data_has_no_problems(self):
        conditions, problems = load_conditions({
            "operator": "or",
            "conditions": [{"type": "country", "operator": "equals", "value": "TW"}],
        })
        assert problems == []
        assert conditions.operator == LogicalOperator.OR
        assert conditions.conditions[0].value == StringValue(value="TW")

    def test_invalid_item_becomes_placeholder(self):
        conditions, problems = load_conditions({
            "operator": "AND",
            "conditions": [
                {"type": "country", "operator": "equals", "value": "TW"},
                {"type": "time", "operator": "between", "value": "soon"},
            ],
        })
        assert len(problems) == 1
        assert problems[0].startswith("condition #2")
        assert len(conditions.conditions) == 2
        assert conditions.conditions[1].value is None

    def test_bad_envelope(self):
        for raw in (None, "AND", ["x"], {"operator": "AND", "conditions": "nope"}):
            conditions, problems = load_conditions(raw)
            assert problems
            assert conditions.operator is None

    def test_unknown_logical_operator_reported(self):
        conditions, problems = load_conditions({"operator": "XOR", "conditions": []})
        assert conditions.operator is None
        assert problems == ["unknown logical operator 'XOR'"]

    def test_placeholders_survive_wire_round_trip(self):
        conditions, _ = load_conditions({
            "conditions": [{"type": "country", "operator": "between", "value": "x"}],
        })
        wire = conditions_to_wire(conditions)
        assert wire == {
            "operator": "AND",
            "conditions": [{"type": "country", "operator": "between", "value": None}],
        }

        reloaded, problems = load_conditions(wire)
        assert problems
        assert reloaded.conditions[0].value is None

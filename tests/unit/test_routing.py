"""Tests for active-level selection."""

import math
from decimal import Decimal

import pytest
from pydantic import ValidationError

from procureflow.contracts import Level, RoutingRule, WorkflowDefinition
from procureflow.errors import InvalidRoutingValue
from procureflow.routing import (
    evaluate_rule,
    normalize_routing_value,
    select_active_levels,
)


def _po_definition() -> WorkflowDefinition:
    return WorkflowDefinition(
        workflow_name="standard_po",
        document_type="purchase_order",
        levels=[
            Level(level_number=1, approver_roles=["procurement_manager"]),
            Level(level_number=2, approver_roles=["cost_center"]),
            Level(level_number=3, approver_roles=["general_manager"]),
        ],
        routing_rules=[
            RoutingRule(operator="gte", value=10000, target_levels=[2]),
            RoutingRule(operator="gte", value=50000, target_levels=[3]),
        ],
    )


def _numbers(levels):
    return [level.level_number for level in levels]


def test_untargeted_levels_default_to_mandatory():
    definition = _po_definition()
    assert definition.mandatory_levels() == [1]
    assert definition.targeted_levels() == {2, 3}


@pytest.mark.parametrize(
    "amount, expected",
    [
        (0, [1]),
        (5000, [1]),
        (10000, [1, 2]),
        (15000, [1, 2]),
        (49999.99, [1, 2]),
        (75000, [1, 2, 3]),
    ],
)
def test_amount_thresholds_select_levels(amount, expected):
    assert _numbers(select_active_levels(_po_definition(), amount)) == expected


def test_selection_is_deterministic_and_sorted():
    definition = _po_definition()
    definition.routing_rules.reverse()
    first = select_active_levels(definition, 75000)
    second = select_active_levels(definition, 75000)
    assert first == second
    assert _numbers(first) == [1, 2, 3]


def test_selected_levels_are_copies():
    definition = _po_definition()
    levels = select_active_levels(definition, 75000)
    levels[0].approver_roles.append("intern")
    assert definition.levels[0].approver_roles == ["procurement_manager"]


def test_bare_number_is_the_amount():
    definition = _po_definition()
    assert select_active_levels(definition, 15000) == select_active_levels(
        definition, {"amount": 15000}
    )


def test_missing_attribute_activates_only_mandatory_levels():
    definition = _po_definition()
    assert _numbers(select_active_levels(definition, None)) == [1]
    assert _numbers(select_active_levels(definition, {"supplier_level": "A"})) == [1]


def test_explicit_mandatory_flag_wins_over_rules():
    definition = WorkflowDefinition(
        workflow_name="always_gm",
        document_type="purchase_order",
        levels=[
            Level(level_number=1, approver_roles=["procurement_manager"]),
            Level(level_number=2, approver_roles=["general_manager"], is_mandatory=True),
            Level(level_number=3, approver_roles=["finance_director"], is_mandatory=False),
        ],
        routing_rules=[RoutingRule(operator="gt", value=1000, target_levels=[2])],
    )
    assert _numbers(select_active_levels(definition, 10)) == [1, 2]
    # never targeted and not mandatory: unreachable
    assert _numbers(select_active_levels(definition, 10**9)) == [1, 2]


def test_membership_operators():
    rule_in = RoutingRule(
        condition_type="supplier_level", operator="in", value=["A", "B"], target_levels=[2]
    )
    rule_not_in = RoutingRule(
        condition_type="material_category",
        operator="not_in",
        value=["office"],
        target_levels=[2],
    )
    assert evaluate_rule(rule_in, {"supplier_level": "A"})
    assert not evaluate_rule(rule_in, {"supplier_level": "C"})
    assert evaluate_rule(rule_not_in, {"material_category": "steel"})
    assert not evaluate_rule(rule_not_in, {"material_category": "office"})


@pytest.mark.parametrize(
    "operator, value, expected",
    [
        ("gt", 100, False),
        ("gte", 100, True),
        ("lt", 100, False),
        ("lte", 100, True),
        ("eq", 100, True),
        ("ne", 100, False),
    ],
)
def test_comparison_operators(operator, value, expected):
    rule = RoutingRule(operator=operator, value=value, target_levels=[1])
    assert evaluate_rule(rule, {"amount": 100}) is expected


def test_incomparable_values_never_match():
    rule = RoutingRule(condition_type="custom", operator="gt", value=5, target_levels=[2])
    assert evaluate_rule(rule, {"custom": "not-a-number"}) is False


def test_rule_value_shape_is_checked():
    with pytest.raises(ValidationError):
        RoutingRule(operator="in", value="A", target_levels=[1])
    with pytest.raises(ValidationError):
        RoutingRule(operator="gt", value=[1, 2], target_levels=[1])
    with pytest.raises(ValidationError):
        RoutingRule(operator="gt", value=1, target_levels=[])


@pytest.mark.parametrize(
    "value",
    [-1, float("nan"), math.inf, True, "15000", [15000], {"amount": "lots"}, {"amount": -5}],
)
def test_invalid_routing_values_are_rejected(value):
    with pytest.raises(InvalidRoutingValue):
        normalize_routing_value(value)


def test_decimal_amount_is_stored_as_float():
    context = normalize_routing_value(Decimal("15000.50"))
    assert context == {"amount": 15000.5}
    assert isinstance(context["amount"], float)


def test_boolean_allowed_for_non_amount_attributes():
    assert normalize_routing_value({"urgent": True, "amount": 10}) == {
        "urgent": True,
        "amount": 10,
    }

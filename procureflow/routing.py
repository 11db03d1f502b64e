"""Routing evaluator: selects the active approval levels for a document.

Mandatory levels are always active. Every other level is active when at least
one routing rule targeting it matches the document's routing context. The
result is frozen onto the instance at ``start`` and recomputed only on
resubmission.
"""

from __future__ import annotations

import logging
import math
from decimal import Decimal
from numbers import Real
from typing import Any, Dict, List, Mapping, Optional

from .constants import DEFAULT_ROUTING_ATTRIBUTE
from .contracts import Level, RoutingRule, WorkflowDefinition
from .errors import InvalidRoutingValue

logger = logging.getLogger(__name__)

RoutingValue = Optional[Any]
_NUMERIC = (Real, Decimal)


def _check_number(name: str, value: Any) -> None:
    if isinstance(value, bool):
        if name == DEFAULT_ROUTING_ATTRIBUTE:
            raise InvalidRoutingValue(f"Routing attribute '{name}' must not be a boolean")
        return
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise InvalidRoutingValue(f"Routing attribute '{name}' must be finite")
    elif isinstance(value, float) and not math.isfinite(value):
        raise InvalidRoutingValue(f"Routing attribute '{name}' must be finite")
    if name == DEFAULT_ROUTING_ATTRIBUTE and value < 0:
        raise InvalidRoutingValue(f"Routing attribute '{name}' must not be negative")


def _portable(value: Any) -> Any:
    # contexts are stored as JSON; Decimal would come back as a string
    return float(value) if isinstance(value, Decimal) else value


def normalize_routing_value(value: RoutingValue) -> Dict[str, Any]:
    """Turn a routing value into a routing context.

    A bare number is the document amount; a mapping is taken as-is after its
    numeric entries are checked. ``None`` yields an empty context.
    """
    if value is None:
        return {}
    if isinstance(value, Mapping):
        context: Dict[str, Any] = {}
        for key, item in value.items():
            if not isinstance(key, str) or not key:
                raise InvalidRoutingValue("Routing attribute names must be strings")
            if isinstance(item, _NUMERIC):
                _check_number(key, item)
                item = _portable(item)
            elif key == DEFAULT_ROUTING_ATTRIBUTE and item is not None:
                raise InvalidRoutingValue("Routing attribute 'amount' must be a number")
            context[key] = item
        return context
    if isinstance(value, _NUMERIC):
        _check_number(DEFAULT_ROUTING_ATTRIBUTE, value)
        return {DEFAULT_ROUTING_ATTRIBUTE: _portable(value)}
    raise InvalidRoutingValue(
        f"Unsupported routing value of type {type(value).__name__}"
    )


def _compare(operator: str, actual: Any, expected: Any) -> bool:
    if operator == "gt":
        return actual > expected
    if operator == "gte":
        return actual >= expected
    if operator == "lt":
        return actual < expected
    if operator == "lte":
        return actual <= expected
    if operator == "eq":
        return actual == expected
    if operator == "ne":
        return actual != expected
    if operator == "in":
        return actual in expected
    if operator == "not_in":
        return actual not in expected
    raise ValueError(f"Unknown routing operator: {operator}")


def evaluate_rule(rule: RoutingRule, context: Mapping[str, Any]) -> bool:
    """Return ``True`` if ``rule`` matches ``context``.

    A missing attribute, or one that cannot be compared with the rule value,
    never matches.
    """
    actual = context.get(rule.condition_type)
    if actual is None:
        return False
    try:
        return bool(_compare(rule.operator, actual, rule.value))
    except TypeError:
        logger.debug(
            f"Routing rule on '{rule.condition_type}' cannot compare "
            f"{actual!r} with {rule.value!r}; treating as no match"
        )
        return False


def matched_levels(definition: WorkflowDefinition, context: Mapping[str, Any]) -> set[int]:
    """Level numbers activated by at least one matching routing rule."""
    levels: set[int] = set()
    for rule in definition.routing_rules:
        if evaluate_rule(rule, context):
            levels.update(rule.target_levels)
    return levels


def select_active_levels(
    definition: WorkflowDefinition, routing_value: RoutingValue
) -> List[Level]:
    """Compute the ordered active levels of ``definition`` for a document.

    Args:
        definition: Workflow template to route through.
        routing_value: Document amount, or a mapping of routing attributes.

    Returns:
        Deep copies of the selected levels sorted by level number.
    """
    context = normalize_routing_value(routing_value)
    activated = matched_levels(definition, context)
    selected = [
        level.model_copy(deep=True)
        for level in definition.levels
        if level.is_mandatory or level.level_number in activated
    ]
    selected.sort(key=lambda level: level.level_number)
    return selected

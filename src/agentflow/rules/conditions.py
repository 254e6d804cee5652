"""Condition evaluation against a rule evaluation context.

Conditions address the context with dot paths (``input.subject``,
``prior_results.0``). A path that cannot be walked resolves to ``MISSING``;
every operator except ``exists`` is false on a missing value.
"""

import re
from collections.abc import Mapping, Sequence
from typing import Any

from agentflow.core.models import Condition, ConditionOperator, LogicalOperator
from agentflow.utils.coercion import to_number


class _Missing:
    """Marker for a dot path that does not resolve."""

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def resolve_path(context: Mapping[str, Any], path: str) -> Any:
    """Walk ``path`` through nested mappings and sequences.

    Integer segments index into lists. Returns ``MISSING`` when a segment is
    absent or the current value cannot be descended into.
    """
    value: Any = context
    for part in path.split("."):
        if isinstance(value, Mapping):
            if part not in value:
                return MISSING
            value = value[part]
        elif isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
            if not part.isdigit() or int(part) >= len(value):
                return MISSING
            value = value[int(part)]
        else:
            return MISSING
    return value


def strict_equals(left: Any, right: Any) -> bool:
    """Equality without bool/number cross-matching (``True != 1``)."""
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def evaluate_condition(condition: Condition, context: Mapping[str, Any]) -> bool:
    """Evaluate a single condition against the context."""
    value = resolve_path(context, condition.field)
    operator = condition.operator

    if operator == ConditionOperator.EXISTS:
        return value is not MISSING and value is not None
    if value is MISSING:
        return False

    expected = condition.value

    if operator == ConditionOperator.EQUALS:
        return strict_equals(value, expected)

    if operator == ConditionOperator.CONTAINS:
        if isinstance(value, str):
            return expected is not None and str(expected) in value
        if isinstance(value, (list, tuple)):
            return any(strict_equals(item, expected) for item in value)
        return False

    if operator in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
        actual, bound = to_number(value), to_number(expected)
        if actual is None or bound is None:
            return False
        return actual > bound if operator == ConditionOperator.GREATER_THAN else actual < bound

    if operator == ConditionOperator.REGEX:
        return isinstance(value, str) and re.search(expected, value) is not None

    return False


def evaluate_conditions(conditions: list[Condition], context: Mapping[str, Any]) -> bool:
    """Fold conditions left to right.

    Each condition after the first combines with the running result using its
    own logical operator (AND when unset). There is no precedence grouping:
    ``a OR b AND c`` is ``(a OR b) AND c``. An empty list matches.
    """
    if not conditions:
        return True

    result = evaluate_condition(conditions[0], context)
    for condition in conditions[1:]:
        matched = evaluate_condition(condition, context)
        if condition.logical_operator == LogicalOperator.OR:
            result = result or matched
        else:
            result = result and matched
    return result

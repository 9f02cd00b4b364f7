"""
Branching Logic - Comparison operators shared by condition and filter nodes

Supports:
- Simple comparisons (eq, neq, gt, contains, exists, ...)
- Condition groups combined with AND / OR
"""

import logging
from enum import Enum
from typing import Any, Dict, List

logger = logging.getLogger(__name__)


class ConditionOperator(str, Enum):
    """Comparison operators for condition and data-filter nodes"""
    EQUALS = "eq"
    NOT_EQUALS = "neq"
    GREATER_THAN = "gt"
    LESS_THAN = "lt"
    GREATER_OR_EQUAL = "gte"
    LESS_OR_EQUAL = "lte"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


class LogicalOperator(str, Enum):
    """Logical operators for combining conditions"""
    AND = "AND"
    OR = "OR"


def _loose_equals(actual: Any, expected: Any) -> bool:
    # Editor values arrive as text: "5" matches 5, "true" matches True
    if actual == expected:
        return True
    if actual is None or expected is None:
        return False
    if isinstance(actual, bool) or isinstance(expected, bool):
        return str(actual).lower() == str(expected).lower()
    try:
        return float(actual) == float(expected)
    except (TypeError, ValueError):
        return str(actual) == str(expected)


def _as_number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float('nan')


def check_condition(actual: Any, operator: str, expected: Any = None) -> bool:
    """
    Check a simple condition.

    Args:
        actual: Value taken from flow data
        operator: ConditionOperator value
        expected: Value to compare against

    Returns:
        True if condition matches

    Raises:
        ValueError: Unknown operator
    """
    try:
        op = ConditionOperator(operator)
    except ValueError:
        raise ValueError(f"Unknown condition operator: {operator}")

    if op == ConditionOperator.EQUALS:
        return _loose_equals(actual, expected)
    elif op == ConditionOperator.NOT_EQUALS:
        return not _loose_equals(actual, expected)
    elif op == ConditionOperator.GREATER_THAN:
        return _as_number(actual) > _as_number(expected)
    elif op == ConditionOperator.LESS_THAN:
        return _as_number(actual) < _as_number(expected)
    elif op == ConditionOperator.GREATER_OR_EQUAL:
        return _as_number(actual) >= _as_number(expected)
    elif op == ConditionOperator.LESS_OR_EQUAL:
        return _as_number(actual) <= _as_number(expected)
    elif op == ConditionOperator.CONTAINS:
        if isinstance(actual, (list, tuple)):
            return any(_loose_equals(item, expected) for item in actual)
        return str(expected) in str(actual if actual is not None else '')
    elif op == ConditionOperator.NOT_CONTAINS:
        return not check_condition(actual, ConditionOperator.CONTAINS.value, expected)
    elif op == ConditionOperator.STARTS_WITH:
        return str(actual).startswith(str(expected))
    elif op == ConditionOperator.ENDS_WITH:
        return str(actual).endswith(str(expected))
    elif op == ConditionOperator.IS_EMPTY:
        return actual is None or actual == "" or actual == [] or actual == {}
    elif op == ConditionOperator.IS_NOT_EMPTY:
        return not check_condition(actual, ConditionOperator.IS_EMPTY.value)
    elif op == ConditionOperator.EXISTS:
        return actual is not None
    else:
        return actual is None


def evaluate_group(conditions: List[Dict[str, Any]], logical_operator: str = LogicalOperator.AND.value) -> bool:
    """
    Evaluate already-resolved conditions.

    Each condition: {"value": ..., "operator": "gt", "compareValue": ...}
    """
    results = [
        check_condition(c.get('value'), c.get('operator') or ConditionOperator.EQUALS.value, c.get('compareValue'))
        for c in conditions
    ]
    if (logical_operator or LogicalOperator.AND.value).upper() == LogicalOperator.OR.value:
        return any(results)
    return all(results)

"""Pure evaluation of rule conditions against an event context."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from cardflow.schema.automation import (
    CONDITION_FIELDS,
    DATE_CONDITION_FIELDS,
    Condition,
    ConditionOperator,
    parse_conditions,
)
from cardflow.services.automation_context import resolve_path
from cardflow.utils.datetime import parse_datetime

logger = logging.getLogger("cardflow.services.automation_conditions")


def _normalize(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def _equals(field: str, actual: Any, expected: Any) -> bool:
    if isinstance(actual, list):
        return {_normalize(item) for item in actual} == {_normalize(item) for item in _as_list(expected)}
    if field in DATE_CONDITION_FIELDS:
        left, right = parse_datetime(actual), parse_datetime(expected)
        if left and right:
            return left == right
    return _normalize(actual) == _normalize(expected)


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, list):
        needle = _normalize(expected)
        return any(_normalize(item) == needle for item in actual)
    return _normalize(expected).lower() in _normalize(actual).lower()


def _number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _ordered(field: str, actual: Any, expected: Any) -> tuple[Any, Any] | None:
    """Return comparable operands, or None when the types do not line up."""
    if field in DATE_CONDITION_FIELDS:
        left, right = parse_datetime(actual), parse_datetime(expected)
        return (left, right) if left and right else None
    left_num = _number(actual)
    right_num = _number(expected)
    if right_num is None and isinstance(expected, str):
        try:
            right_num = float(expected)
        except ValueError:
            right_num = None
    if left_num is None or right_num is None:
        return None
    return left_num, right_num


def evaluate_condition(condition: Condition, context: dict[str, Any]) -> bool:
    """Evaluate one condition; nonsensical comparisons are False."""
    actual = resolve_path(context, CONDITION_FIELDS[condition.field])
    operator = condition.operator
    if operator is ConditionOperator.IS_EMPTY:
        return is_empty(actual)
    if operator is ConditionOperator.IS_NOT_EMPTY:
        return not is_empty(actual)
    if operator is ConditionOperator.EQUALS:
        return _equals(condition.field, actual, condition.value)
    if operator is ConditionOperator.NOT_EQUALS:
        return not _equals(condition.field, actual, condition.value)
    if operator is ConditionOperator.CONTAINS:
        return _contains(actual, condition.value)
    if operator is ConditionOperator.NOT_CONTAINS:
        return not _contains(actual, condition.value)

    operands = _ordered(condition.field, actual, condition.value)
    if operands is None:
        return False
    left, right = operands
    if operator is ConditionOperator.GREATER_THAN:
        return left > right
    if operator is ConditionOperator.LESS_THAN:
        return left < right
    return False


def evaluate_conditions(conditions: Iterable[Condition | dict[str, Any]], context: dict[str, Any]) -> bool:
    """AND-combine conditions; an empty list passes."""
    raw = list(conditions)
    parsed = raw if all(isinstance(item, Condition) for item in raw) else parse_conditions(
        [item.model_dump() if isinstance(item, Condition) else item for item in raw]
    )
    for condition in parsed:
        if not evaluate_condition(condition, context):
            logger.debug("Condition %s %s rejected", condition.field, condition.operator.value)
            return False
    return True

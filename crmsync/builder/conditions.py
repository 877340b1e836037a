"""
Condition Evaluator - gates a mapping on predicates over record fields

Supports:
- equals / not-equals (string comparison)
- contains / not-contains / starts-with / ends-with (case-insensitive)
- numeric-greater / numeric-less (float comparison, non-numeric is 0.0)
- is-empty / is-not-empty
"""

import logging
import math
from typing import Any, Iterable, Optional

from crmsync.schema.models import Condition, ConditionLogic, Record

logger = logging.getLogger(__name__)


# Operator names accepted from older saved configurations
OPERATOR_ALIASES = {
    "is": "equals",
    "isnot": "not-equals",
    "doesnotcontain": "not-contains",
    "startswith": "starts-with",
    "endswith": "ends-with",
    "greater_than": "numeric-greater",
    "less_than": "numeric-less",
    "is_empty": "is-empty",
    "is_not_empty": "is-not-empty",
}


def as_text(value: Any) -> str:
    """Coerce a record value to the string used in comparisons."""
    if value is None:
        return ""
    return str(value)


def as_number(value: Any) -> float:
    """Parse a value as float; anything non-numeric is 0.0."""
    try:
        number = float(as_text(value).strip())
    except ValueError:
        return 0.0
    return number if math.isfinite(number) else 0.0


class ConditionEvaluator:
    """Evaluates a mapping's condition list against a record"""

    def evaluate(
        self,
        conditions: Iterable[Condition],
        logic: ConditionLogic,
        record: Record,
        log: Optional[logging.LoggerAdapter] = None,
    ) -> bool:
        """
        Evaluate conditions with ALL/ANY logic

        An empty list (or one holding only malformed entries) is true.
        ALL stops at the first failure, ANY stops at the first pass.
        """
        log = log or logger
        checked = 0

        for condition in conditions:
            if not condition.is_complete:
                continue
            checked += 1

            actual = record.get(condition.field_ref)
            met = self.compare(actual, condition.expected_value, condition.operator)

            log.debug(
                f"Condition: {condition.field_ref} {condition.operator} {condition.expected_value!r} "
                f"- actual {actual!r} - {'met' if met else 'not met'}"
            )

            if logic == ConditionLogic.ALL and not met:
                return False
            if logic == ConditionLogic.ANY and met:
                return True

        if checked == 0:
            return True
        return logic == ConditionLogic.ALL

    def compare(self, actual: Any, expected: Any, operator: str) -> bool:
        """Compare one actual value against the expected one"""
        operator = OPERATOR_ALIASES.get(operator, operator)
        actual_text = as_text(actual)
        expected_text = as_text(expected)

        if operator == "equals":
            return actual_text == expected_text
        elif operator == "not-equals":
            return actual_text != expected_text
        elif operator == "contains":
            return expected_text.lower() in actual_text.lower()
        elif operator == "not-contains":
            return expected_text.lower() not in actual_text.lower()
        elif operator == "starts-with":
            return actual_text.lower().startswith(expected_text.lower())
        elif operator == "ends-with":
            return actual_text.lower().endswith(expected_text.lower())
        elif operator == "numeric-greater":
            return as_number(actual) > as_number(expected)
        elif operator == "numeric-less":
            return as_number(actual) < as_number(expected)
        elif operator == "is-empty":
            return actual_text == ""
        elif operator == "is-not-empty":
            return actual_text != ""
        else:
            logger.warning(f"Unknown condition operator: {operator}")
            return False

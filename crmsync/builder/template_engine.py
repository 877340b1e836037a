"""
Template Engine - expands custom value templates for outgoing payloads

Supports:
- Merge tags ({field_key}) filled from the record
- Reserved tags {record_id} and {source_id} filled from the sync context
- [calculate]...[/calculate] spans evaluated as arithmetic only
"""

import logging
import re
from typing import Any, Dict, Optional

from crmsync.builder.calculator import ArithmeticCalculator
from crmsync.builder.conditions import as_text
from crmsync.errors import CalculationError
from crmsync.schema.models import RECORD_ID_TOKEN, SOURCE_ID_TOKEN, Record

logger = logging.getLogger(__name__)


class TemplateEngine:
    """Resolves custom value templates into literal values"""

    # Pattern for merge tags: {field_key}
    MERGE_TAG_PATTERN = re.compile(r"\{([^{}]+)\}")

    # Pattern for calculations: [calculate]expression[/calculate]
    CALCULATE_PATTERN = re.compile(r"\[calculate\](.*?)\[/calculate\]", re.IGNORECASE | re.DOTALL)

    def __init__(self, calculator: Optional[ArithmeticCalculator] = None):
        self.calculator = calculator or ArithmeticCalculator()

    def resolve(
        self,
        template: str,
        record: Record,
        context: Dict[str, Any],
        log: Optional[logging.LoggerAdapter] = None,
    ) -> Optional[str]:
        """
        Resolve a template

        Args:
            template: Template string (e.g., "{first} {last}" or "[calculate]{amount}*0.1[/calculate]")
            record: Record supplying merge tag values
            context: Reserved values, {"record_id": ..., "source_id": ...}

        Returns:
            Resolved string, or None when a calculation cannot be evaluated
        """
        log = log or logger
        if template is None:
            return None

        substituted = self._substitute(str(template), record, context)

        if not self.CALCULATE_PATTERN.search(substituted):
            return substituted

        try:
            return self.CALCULATE_PATTERN.sub(lambda match: self._calculate(match.group(1), log), substituted)
        except CalculationError as e:
            log.error(f"Failed to evaluate calculation in {template!r}: {e}")
            return None

    def _substitute(self, template: str, record: Record, context: Dict[str, Any]) -> str:
        """Replace every merge tag; unknown tags become empty strings"""
        def replace_tag(match):
            key = match.group(1).strip()
            if key in (RECORD_ID_TOKEN, SOURCE_ID_TOKEN):
                return as_text(context.get(key))
            return as_text(record.get(key))

        return self.MERGE_TAG_PATTERN.sub(replace_tag, template)

    def _calculate(self, expression: str, log) -> str:
        log.debug(f"Processing calculation: {expression}")
        result = self.calculator.format(self.calculator.evaluate(expression))
        log.debug(f"Calculation result: {result}")
        return result

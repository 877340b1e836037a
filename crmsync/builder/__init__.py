"""
Builder Module - turns a record plus a mapping into an outgoing payload

- Condition evaluation gating each mapping
- Field mapping with record_id and ref: tokens
- Custom value templates with sandboxed [calculate] arithmetic
"""

from .conditions import ConditionEvaluator
from .calculator import ArithmeticCalculator
from .field_builder import FieldBuilder
from .template_engine import TemplateEngine
from .payload_builder import PayloadBuilder

__all__ = [
    "ConditionEvaluator",
    "ArithmeticCalculator",
    "FieldBuilder",
    "TemplateEngine",
    "PayloadBuilder",
]

"""
Tests for TemplateEngine and ArithmeticCalculator

Tests:
- Merge tags and reserved tags
- [calculate] spans evaluated without code execution
- Failed calculations resolve to None
"""

from decimal import Decimal

import pytest

from crmsync.builder.calculator import ArithmeticCalculator
from crmsync.builder.template_engine import TemplateEngine
from crmsync.errors import CalculationError
from crmsync.schema.models import Record


@pytest.fixture
def engine():
    return TemplateEngine()


@pytest.fixture
def record():
    return Record("55", {"first": "Jo", "last": "Silva", "amount": "200", "qty": "3", "price": "9.90"})


CONTEXT = {"record_id": "55", "source_id": "7"}


class TestMergeTags:

    def test_field_substitution(self, engine, record):
        assert engine.resolve("{first} {last}", record, CONTEXT) == "Jo Silva"

    def test_missing_field_is_empty(self, engine, record):
        assert engine.resolve("[{nickname}]", record, CONTEXT) == "[]"

    def test_reserved_tags_come_from_context(self, engine):
        record = Record("55", {"record_id": "not-this", "source_id": "nor-this"})
        assert engine.resolve("Form {source_id} entry {record_id}", record, CONTEXT) == "Form 7 entry 55"

    def test_plain_text_unchanged(self, engine, record):
        assert engine.resolve("Website", record, CONTEXT) == "Website"


class TestCalculate:

    def test_percentage(self, engine, record):
        assert engine.resolve("[calculate]{amount}*0.1[/calculate]", record, CONTEXT) == "20"

    def test_decimal_result(self, engine, record):
        assert engine.resolve("[calculate]{qty}*{price}[/calculate]", record, CONTEXT) == "29.7"

    def test_span_replaced_in_place(self, engine, record):
        result = engine.resolve("Total: [calculate]({amount}+50)/2[/calculate] BRL", record, CONTEXT)
        assert result == "Total: 125 BRL"

    def test_disallowed_characters_are_stripped(self, engine):
        record = Record("1", {"amount": "R$ 10"})
        assert engine.resolve("[calculate]{amount}+5[/calculate]", record, CONTEXT) == "15"

    def test_failed_calculation_returns_none(self, engine):
        record = Record("1", {"amount": ""})
        assert engine.resolve("[calculate]{amount}*[/calculate]", record, CONTEXT) is None

    def test_division_by_zero_returns_none(self, engine, record):
        assert engine.resolve("[calculate]{amount}/0[/calculate]", record, CONTEXT) is None

    def test_deeply_nested_field_value_returns_none(self, engine):
        record = Record("1", {"amount": "(" * 2000 + "1" + ")" * 2000})
        assert engine.resolve("[calculate]{amount}*0.1[/calculate]", record, CONTEXT) is None


class TestArithmeticCalculator:

    @pytest.fixture
    def calc(self):
        return ArithmeticCalculator()

    def test_precedence(self, calc):
        assert calc.evaluate("2+3*4") == Decimal("14")
        assert calc.evaluate("(2+3)*4") == Decimal("20")

    def test_unary_minus(self, calc):
        assert calc.evaluate("-5+2") == Decimal("-3")
        assert calc.evaluate("-(2*3)") == Decimal("-6")

    def test_unbalanced_parentheses(self, calc):
        with pytest.raises(CalculationError):
            calc.evaluate("(1+2")
        with pytest.raises(CalculationError):
            calc.evaluate("1+2)")

    def test_empty_expression(self, calc):
        with pytest.raises(CalculationError):
            calc.evaluate("abc")

    def test_format(self):
        assert ArithmeticCalculator.format(Decimal("20.0")) == "20"
        assert ArithmeticCalculator.format(Decimal("0.50")) == "0.5"
        assert ArithmeticCalculator.format(Decimal("-3")) == "-3"

    def test_deep_nesting_is_rejected(self, calc):
        assert calc.evaluate("(" * 50 + "1" + ")" * 50) == Decimal("1")
        with pytest.raises(CalculationError):
            calc.evaluate("(" * 2000 + "1" + ")" * 2000)
        with pytest.raises(CalculationError):
            calc.evaluate("-" * 5000 + "1")

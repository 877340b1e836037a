"""
Arithmetic Calculator - evaluates [calculate] spans without executing code

Grammar (recursive descent):
    expression := term (("+" | "-") term)*
    term       := factor (("*" | "/") factor)*
    factor     := ("+" | "-") factor | NUMBER | "(" expression ")"

Numbers are parsed as Decimal so results like 200 * 0.1 come out exact.
"""

import re
from decimal import Decimal, DivisionByZero, InvalidOperation
from typing import List

from crmsync.errors import CalculationError


class ArithmeticCalculator:
    """Evaluates numeric expressions over + - * / ( ) and decimal literals"""

    # Anything outside this set is stripped before parsing
    DISALLOWED = re.compile(r"[^0-9+\-*/().\s]")
    TOKEN_PATTERN = re.compile(r"\s*(?:(\d+\.?\d*|\.\d+)|(.))")
    # Unary signs and parentheses combined
    MAX_DEPTH = 100

    def evaluate(self, expression: str) -> Decimal:
        """
        Evaluate an expression

        Raises:
            CalculationError: If the expression is empty, malformed or divides by zero
        """
        cleaned = self.DISALLOWED.sub("", expression or "")
        self._tokens = self._tokenize(cleaned)
        self._pos = 0
        self._depth = 0

        if not self._tokens:
            raise CalculationError(f"Empty calculation: {expression!r}")

        try:
            value = self._expression()
        except (DivisionByZero, InvalidOperation) as e:
            raise CalculationError(f"Cannot evaluate {cleaned!r}: {e}")

        if self._pos != len(self._tokens):
            raise CalculationError(f"Unexpected token {self._tokens[self._pos]!r} in {cleaned!r}")
        return value

    @staticmethod
    def format(value: Decimal) -> str:
        """Render a result without exponent or trailing zeros"""
        if value == value.to_integral_value():
            return str(int(value))
        text = format(value.normalize(), "f")
        return text.rstrip("0").rstrip(".") if "." in text else text

    def _tokenize(self, text: str) -> List[str]:
        tokens = []
        for number, symbol in self.TOKEN_PATTERN.findall(text):
            if number:
                tokens.append(number)
            elif symbol.strip():
                tokens.append(symbol)
        return tokens

    def _peek(self):
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _take(self) -> str:
        token = self._peek()
        if token is None:
            raise CalculationError("Unexpected end of calculation")
        self._pos += 1
        return token

    def _expression(self) -> Decimal:
        value = self._term()
        while self._peek() in ("+", "-"):
            if self._take() == "+":
                value += self._term()
            else:
                value -= self._term()
        return value

    def _term(self) -> Decimal:
        value = self._factor()
        while self._peek() in ("*", "/"):
            if self._take() == "*":
                value *= self._factor()
            else:
                divisor = self._factor()
                if divisor == 0:
                    raise CalculationError("Division by zero")
                value /= divisor
        return value

    def _factor(self) -> Decimal:
        token = self._take()
        if token[0].isdigit() or token[0] == ".":
            return Decimal(token)
        if token not in ("+", "-", "("):
            raise CalculationError(f"Unexpected token {token!r}")

        self._depth += 1
        if self._depth > self.MAX_DEPTH:
            raise CalculationError(f"Calculation nested deeper than {self.MAX_DEPTH} levels")
        try:
            if token == "+":
                return self._factor()
            if token == "-":
                return -self._factor()
            value = self._expression()
            if self._take() != ")":
                raise CalculationError("Unbalanced parentheses")
            return value
        finally:
            self._depth -= 1

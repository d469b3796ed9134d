"""Helpers for parsing money amounts and rounding them consistently."""

from __future__ import annotations

import ast
import operator
import re
from decimal import ROUND_HALF_UP, Decimal, DivisionByZero, InvalidOperation
from typing import Any, Optional

CENT = Decimal("0.01")


class ExpressionParsingError(ValueError):
    """Raised when an amount or amount expression cannot be parsed."""


_ALLOWED_BINOPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}
_ALLOWED_UNARYOPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}
_EXPRESSION_CHARS_RE = re.compile(r"[+\-*/()]")
_ALLOWED_EXPRESSION_RE = re.compile(r"^[0-9+\-*/().\s]+$")


def quantize_money(value: Decimal) -> Decimal:
    """Round ``value`` to cents using half-up rounding."""

    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def evaluate_math_expression(expression: str) -> Decimal:
    """Evaluate a restricted arithmetic expression such as ``1200+300``."""

    try:
        parsed = ast.parse(expression, mode="eval")
    except SyntaxError as exc:
        raise ExpressionParsingError(
            "Enter a valid equation using numbers, +, -, *, /, and parentheses."
        ) from exc
    return _evaluate_ast_node(parsed.body)


def _evaluate_ast_node(node: ast.AST) -> Decimal:
    if isinstance(node, ast.BinOp):
        op_type = type(node.op)
        if op_type not in _ALLOWED_BINOPS:
            raise ExpressionParsingError("Use only +, -, *, and / in equations.")
        left = _evaluate_ast_node(node.left)
        right = _evaluate_ast_node(node.right)
        try:
            return _ALLOWED_BINOPS[op_type](left, right)
        except (DivisionByZero, InvalidOperation) as exc:
            raise ExpressionParsingError("Enter a valid numerical equation.") from exc
    if isinstance(node, ast.UnaryOp):
        op_type = type(node.op)
        if op_type not in _ALLOWED_UNARYOPS:
            raise ExpressionParsingError("Use only + or - as unary operators.")
        return _ALLOWED_UNARYOPS[op_type](_evaluate_ast_node(node.operand))
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
        if isinstance(node.value, bool):
            raise ExpressionParsingError("Only numeric values are allowed.")
        return Decimal(str(node.value))
    raise ExpressionParsingError("Enter a valid numerical equation.")


def _normalize_number_string(raw: str) -> str:
    """Strip thousands separators, keeping the last separator as decimal point.

    A single separator followed by exactly three digits is a thousands
    separator (``5.000.000`` or ``1,500``), matching how venues export spend.
    """

    normalized = raw.replace("\u00A0", " ")
    sign = ""
    if normalized and normalized[0] in "+-":
        sign, normalized = normalized[0], normalized[1:]
    normalized = normalized.strip().replace(" ", "").replace("_", "")
    if not normalized:
        return sign

    last_comma = normalized.rfind(",")
    last_dot = normalized.rfind(".")
    decimal_sep: Optional[str] = None
    if last_comma != -1 and last_dot != -1:
        decimal_sep = "," if last_comma > last_dot else "."
    elif last_comma != -1 or last_dot != -1:
        sep = "," if last_comma != -1 else "."
        groups = normalized.split(sep)
        is_grouping = len(groups) > 2 or (
            len(groups) == 2 and len(groups[1]) == 3 and groups[0] != "0"
        )
        decimal_sep = None if is_grouping else sep

    digits = normalized
    if decimal_sep == ",":
        digits = digits.replace(".", "").replace(",", ".")
    elif decimal_sep == ".":
        digits = digits.replace(",", "")
    else:
        digits = digits.replace(",", "").replace(".", "")
    return sign + digits


def parse_decimal_string(value: Any, expression_prefix: str = "=") -> Decimal:
    """Parse user or spreadsheet input into a :class:`~decimal.Decimal`.

    Values that start with ``expression_prefix`` are evaluated as arithmetic.

    Raises:
        ExpressionParsingError: If the value is empty or not a number.
    """

    if value is None:
        raise ExpressionParsingError("Enter a value.")

    text = str(value).strip()
    if not text:
        raise ExpressionParsingError("Enter a value.")

    if text.startswith(expression_prefix):
        expression = text[len(expression_prefix) :].strip()
        if not expression:
            raise ExpressionParsingError("Enter a calculation after '='.")
        if not _ALLOWED_EXPRESSION_RE.match(expression):
            raise ExpressionParsingError(
                "Use only numbers, parentheses, and +, -, *, /."
            )
        return evaluate_math_expression(expression)

    stripped = text[1:].lstrip() if text.startswith(("+", "-")) else text
    if _EXPRESSION_CHARS_RE.search(stripped):
        raise ExpressionParsingError("To enter a calculation, start the value with '='.")

    try:
        result = Decimal(_normalize_number_string(text))
    except InvalidOperation as exc:
        raise ExpressionParsingError("Enter a valid number.") from exc
    if not result.is_finite():
        raise ExpressionParsingError("Enter a valid number.")
    return result


def coerce_decimal(raw_value: Any, *, default: Optional[Decimal] = None) -> Optional[Decimal]:
    """Best-effort conversion to :class:`Decimal`, returning ``default`` on failure."""

    if raw_value is None or isinstance(raw_value, bool):
        return default
    if isinstance(raw_value, Decimal):
        return raw_value
    if isinstance(raw_value, (int, float)):
        try:
            return Decimal(str(raw_value))
        except InvalidOperation:
            return default
    try:
        return parse_decimal_string(raw_value)
    except ExpressionParsingError:
        return default

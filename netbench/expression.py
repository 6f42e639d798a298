"""Arithmetic option values such as ``[cpus]*2``."""

from __future__ import annotations

import ast
import math
import operator
import os

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_UNARY_OPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


def cpu_count() -> int:
    return os.cpu_count() or 1


def evaluate_expression(expression: str | int | float) -> int:
    """Evaluate an option value that may reference ``[cpus]``.

    Only numbers, ``[cpus]``, parentheses and ``+ - * / // %`` are accepted;
    anything else raises ``ValueError``. The result is rounded to an int.
    """
    if isinstance(expression, (int, float)):
        return int(round(expression))
    source = expression.strip().replace("[cpus]", str(cpu_count()))
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as exc:
        raise ValueError(f"invalid expression {expression!r}") from exc
    value = _eval(tree.body)
    if not math.isfinite(value):
        raise ValueError(f"invalid expression {expression!r}")
    return int(round(value))


def _eval(node: ast.AST) -> float:
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left, right = _eval(node.left), _eval(node.right)
        try:
            return _BINARY_OPS[type(node.op)](left, right)
        except ZeroDivisionError as exc:
            raise ValueError("division by zero") from exc
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval(node.operand))
    raise ValueError(f"unsupported expression element: {type(node).__name__}")

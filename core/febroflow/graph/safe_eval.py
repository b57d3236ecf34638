"""
Safe expression evaluation for condition, switch and code nodes.

Expressions are parsed with ``ast`` and walked against a whitelist of node
types: literals, names from the supplied context, attribute/subscript
access on data, comparisons, boolean and arithmetic operators, conditional
expressions, and calls to a small set of pure builtins. Anything else
(imports, lambdas, comprehensions, dunder access, arbitrary calls) is
rejected with ``UnsafeExpressionError`` before evaluation.
"""

import ast
import operator
from typing import Any


class UnsafeExpressionError(ValueError):
    """The expression uses a construct outside the whitelist."""


_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPS = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_COMPARE_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

SAFE_FUNCTIONS: dict[str, Any] = {
    "len": len,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "sum": sum,
    "sorted": sorted,
    "lower": lambda s: str(s).lower(),
    "upper": lambda s: str(s).upper(),
    "contains": lambda haystack, needle: needle in haystack,
}

# Read-only methods callable on str/list/dict values
_SAFE_METHODS = {
    "lower",
    "upper",
    "strip",
    "startswith",
    "endswith",
    "split",
    "get",
    "keys",
    "values",
    "items",
    "count",
    "index",
    "replace",
}

_MAX_POW_EXPONENT = 100
_MAX_REPEAT_LENGTH = 100_000


def safe_eval(expression: str, context: dict[str, Any] | None = None) -> Any:
    """
    Evaluate ``expression`` against ``context``.

    Dict values can be read either by subscript (``data["x"]``) or attribute
    (``data.x``). Unknown names evaluate to ``None`` so missing fields make a
    condition false rather than crash it.

    Raises:
        UnsafeExpressionError: disallowed construct
        SyntaxError: the expression does not parse
    """
    tree = ast.parse(expression.strip(), mode="eval")
    return _Evaluator(context or {}).visit(tree.body)


class _Evaluator:
    def __init__(self, context: dict[str, Any]):
        self.context = context

    def visit(self, node: ast.AST) -> Any:
        method = getattr(self, f"visit_{type(node).__name__}", None)
        if method is None:
            raise UnsafeExpressionError(f"Disallowed expression element: {type(node).__name__}")
        return method(node)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id in self.context:
            return self.context[node.id]
        lowered = node.id.lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
        if lowered in ("none", "null"):
            return None
        if node.id in SAFE_FUNCTIONS:
            return SAFE_FUNCTIONS[node.id]
        return None

    def visit_List(self, node: ast.List) -> list:
        return [self.visit(e) for e in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> tuple:
        return tuple(self.visit(e) for e in node.elts)

    def visit_Set(self, node: ast.Set) -> set:
        return {self.visit(e) for e in node.elts}

    def visit_Dict(self, node: ast.Dict) -> dict:
        if any(k is None for k in node.keys):
            raise UnsafeExpressionError("Dict unpacking is not allowed")
        return {self.visit(k): self.visit(v) for k, v in zip(node.keys, node.values, strict=True)}

    def visit_JoinedStr(self, node: ast.JoinedStr) -> str:
        parts = []
        for value in node.values:
            if isinstance(value, ast.FormattedValue):
                parts.append(str(self.visit(value.value)))
            else:
                parts.append(str(self.visit(value)))
        return "".join(parts)

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        if isinstance(node.op, ast.And):
            result: Any = True
            for value in node.values:
                result = self.visit(value)
                if not result:
                    return result
            return result
        result = False
        for value in node.values:
            result = self.visit(value)
            if result:
                return result
        return result

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        op = _UNARY_OPS.get(type(node.op))
        if op is None:
            raise UnsafeExpressionError(f"Disallowed operator: {type(node.op).__name__}")
        return op(self.visit(node.operand))

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        op = _BIN_OPS.get(type(node.op))
        if op is None:
            raise UnsafeExpressionError(f"Disallowed operator: {type(node.op).__name__}")
        left = self.visit(node.left)
        right = self.visit(node.right)
        if isinstance(node.op, ast.Pow) and isinstance(right, int | float):
            if abs(right) > _MAX_POW_EXPONENT:
                raise UnsafeExpressionError("Exponent too large")
        if isinstance(node.op, ast.Mult):
            _check_repeat(left, right)
            _check_repeat(right, left)
        return op(left, right)

    def visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for op_node, comparator in zip(node.ops, node.comparators, strict=True):
            op = _COMPARE_OPS.get(type(op_node))
            if op is None:
                raise UnsafeExpressionError(f"Disallowed comparison: {type(op_node).__name__}")
            right = self.visit(comparator)
            try:
                if not op(left, right):
                    return False
            except TypeError:
                # None vs number and the like compare as false
                return False
            left = right
        return True

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        return self.visit(node.body) if self.visit(node.test) else self.visit(node.orelse)

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        value = self.visit(node.value)
        key = self.visit(node.slice)
        if value is None:
            return None
        try:
            return value[key]
        except (KeyError, IndexError, TypeError):
            return None

    def visit_Slice(self, node: ast.Slice) -> slice:
        return slice(
            self.visit(node.lower) if node.lower else None,
            self.visit(node.upper) if node.upper else None,
            self.visit(node.step) if node.step else None,
        )

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        if node.attr.startswith("_"):
            raise UnsafeExpressionError(f"Access to '{node.attr}' is not allowed")
        value = self.visit(node.value)
        if isinstance(value, dict):
            return value.get(node.attr)
        if node.attr in _SAFE_METHODS and isinstance(value, str | list | tuple):
            return getattr(value, node.attr)
        return None

    def visit_Call(self, node: ast.Call) -> Any:
        if node.keywords:
            raise UnsafeExpressionError("Keyword arguments are not allowed")

        if isinstance(node.func, ast.Name):
            func = SAFE_FUNCTIONS.get(node.func.id)
            if func is None:
                raise UnsafeExpressionError(f"Call to '{node.func.id}' is not allowed")
        elif isinstance(node.func, ast.Attribute):
            if node.func.attr not in _SAFE_METHODS:
                raise UnsafeExpressionError(f"Method '{node.func.attr}' is not allowed")
            target = self.visit(node.func.value)
            if not isinstance(target, str | list | tuple | dict):
                raise UnsafeExpressionError(f"Method '{node.func.attr}' is not allowed here")
            func = getattr(target, node.func.attr)
        else:
            raise UnsafeExpressionError("Only named function calls are allowed")

        args = [self.visit(arg) for arg in node.args]
        return func(*args)


def _check_repeat(sequence: Any, count: Any) -> None:
    """Refuse sequence repetition whose result exceeds _MAX_REPEAT_LENGTH."""
    if isinstance(sequence, str | list | tuple) and isinstance(count, int):
        if len(sequence) * count > _MAX_REPEAT_LENGTH:
            raise UnsafeExpressionError("Repetition result too large")

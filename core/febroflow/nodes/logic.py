"""
Logic node handlers: if_condition, switch and code.

Conditions come in two shapes:

    {"expression": "score > 0.5 and lang == 'en'"}
    {"field": "score", "operator": "greater_than", "value": 0.5}

Expressions are evaluated with ``safe_eval`` against the node's input data;
top-level keys are names, and the whole payload is also available as
``data``. Malformed expressions are fatal for the node, since retrying
cannot fix them.
"""

import logging
import re
from typing import Any

from febroflow.errors import FatalNodeError
from febroflow.graph.flow import DEFAULT_LABEL, NodeSpec
from febroflow.graph.safe_eval import UnsafeExpressionError, safe_eval
from febroflow.nodes.base import NodeContext, NodeHandler, NodeResult
from febroflow.nodes.templating import lookup_path

logger = logging.getLogger(__name__)


def _expression_context(data: dict[str, Any]) -> dict[str, Any]:
    return {**data, "data": data, "input": data}


def evaluate_expression(expression: str, data: dict[str, Any]) -> Any:
    try:
        return safe_eval(expression, _expression_context(data))
    except (UnsafeExpressionError, SyntaxError) as e:
        raise FatalNodeError(f"Invalid expression '{expression}': {e}") from e


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _compare(actual: Any, operator: str, expected: Any) -> bool:
    op = operator.lower()

    if op in ("equals", "eq", "=="):
        if actual == expected:
            return True
        a, b = _as_number(actual), _as_number(expected)
        if a is not None and b is not None:
            return a == b
        return str(actual) == str(expected) if actual is not None else False
    if op in ("not_equals", "ne", "!="):
        return not _compare(actual, "equals", expected)
    if op == "contains":
        if isinstance(actual, list | tuple | dict):
            return expected in actual
        return actual is not None and str(expected) in str(actual)
    if op == "not_contains":
        return not _compare(actual, "contains", expected)
    if op == "starts_with":
        return actual is not None and str(actual).startswith(str(expected))
    if op == "ends_with":
        return actual is not None and str(actual).endswith(str(expected))
    if op in ("greater_than", "gt", ">", "less_than", "lt", "<", "gte", ">=", "lte", "<="):
        a, b = _as_number(actual), _as_number(expected)
        if a is None or b is None:
            return False
        if op in ("greater_than", "gt", ">"):
            return a > b
        if op in ("less_than", "lt", "<"):
            return a < b
        if op in ("gte", ">="):
            return a >= b
        return a <= b
    if op == "is_empty":
        return actual is None or actual == "" or actual == [] or actual == {}
    if op == "is_not_empty":
        return not _compare(actual, "is_empty", expected)
    if op == "exists":
        return actual is not None
    if op == "regex":
        try:
            return actual is not None and re.search(str(expected), str(actual)) is not None
        except re.error as e:
            raise FatalNodeError(f"Invalid regex '{expected}': {e}") from e

    raise FatalNodeError(f"Unknown operator '{operator}'")


def evaluate_condition(spec: dict[str, Any], data: dict[str, Any]) -> bool:
    """Evaluate an expression or field/operator/value condition."""
    expression = spec.get("expression") or spec.get("condition")
    if expression:
        return bool(evaluate_expression(str(expression), data))

    field_path = spec.get("field")
    if not field_path:
        raise FatalNodeError("Condition needs an 'expression' or a 'field'")
    actual = lookup_path(data, str(field_path))
    return _compare(actual, str(spec.get("operator", "equals")), spec.get("value"))


class IfConditionHandler(NodeHandler):
    """Passes data through unchanged with label "true" or "false"."""

    async def execute(self, node: NodeSpec, ctx: NodeContext) -> NodeResult:
        outcome = evaluate_condition(ctx.params, ctx.input_data)
        label = "true" if outcome else "false"
        logger.debug(f"  ⑂ {node.id} condition -> {label}")
        return NodeResult(data=dict(ctx.input_data), output_label=label)


class SwitchHandler(NodeHandler):
    """
    Routes on the first matching rule.

    Either a list of rules, each a condition plus a ``label``:

        {"rules": [{"label": "greeting", "field": "text", "operator": "starts_with",
                    "value": "hi"}]}

    or a field with a value-to-label table:

        {"field": "intent", "cases": {"buy": "sales", "help": "support"}}

    No match yields ``default_label`` (default "default").
    """

    async def execute(self, node: NodeSpec, ctx: NodeContext) -> NodeResult:
        data = ctx.input_data
        label = str(ctx.params.get("default_label") or DEFAULT_LABEL)

        rules = ctx.params.get("rules")
        cases = ctx.params.get("cases")
        if isinstance(rules, list):
            for rule in rules:
                if not isinstance(rule, dict) or "label" not in rule:
                    raise FatalNodeError(f"Switch rule without a label: {rule!r}")
                if evaluate_condition(rule, data):
                    label = str(rule["label"])
                    break
        elif isinstance(cases, dict) and ctx.params.get("field"):
            value = lookup_path(data, str(ctx.params["field"]))
            if value is not None and str(value) in cases:
                label = str(cases[str(value)])
        else:
            raise FatalNodeError("Switch needs 'rules' or 'field' with 'cases'")

        logger.debug(f"  ⑂ {node.id} switch -> {label}")
        return NodeResult(data=dict(data), output_label=label)


class CodeHandler(NodeHandler):
    """
    Computes values from the input data.

        {"assignments": {"total": "price * quantity", "greeting": "'Hi ' + name"}}

    Assignments are evaluated in order, so later ones see earlier results.
    With ``"keep_input": false`` only the assigned keys are output. An
    optional ``output_label`` expression selects the outgoing branch.
    """

    async def execute(self, node: NodeSpec, ctx: NodeContext) -> NodeResult:
        assignments = ctx.params.get("assignments")
        if assignments is None and ctx.params.get("expression"):
            assignments = {ctx.params.get("output_key", "result"): ctx.params["expression"]}
        if not isinstance(assignments, dict):
            raise FatalNodeError("Code node needs an 'assignments' mapping or an 'expression'")

        working = dict(ctx.input_data)
        computed: dict[str, Any] = {}
        for key, expression in assignments.items():
            value = evaluate_expression(str(expression), working)
            working[key] = value
            computed[key] = value

        output = working if ctx.params.get("keep_input", True) else computed

        label = DEFAULT_LABEL
        label_expression = ctx.params.get("output_label")
        if label_expression:
            label = str(evaluate_expression(str(label_expression), working))

        return NodeResult(data=output, output_label=label)

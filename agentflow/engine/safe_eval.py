"""Safe Expression Evaluator for Conditions and Transforms

Uses Python's ast module to parse and evaluate expressions in a restricted
sandbox. Only allows safe operations: comparisons, boolean logic, literals,
arithmetic and dict-like field access. No function calls, imports, or
arbitrary code.

Run state is bound as a typed lookup table: an identifier that names a
state key evaluates to that key's value. Nothing is substituted into the
expression text.

Supported expressions:
- Comparisons: score > 5, status == "success", count != 0
- Boolean logic: x > 0 and y < 100, not is_error
- Literals: "string", 42, 3.14, True, False, None, [1, 2], {"a": 1}
- Field access: result["field"], result.status (dict dot access)
- Arithmetic: x + 1, count * 2, total / n, n % 2
- Paths: $.step1.output.topic (missing paths evaluate to None)
- Shorthand paths: $score > 5 reads state["score"]
- JavaScript-style operators kept for existing definitions:
  ===, !==, &&, ||, !, null, undefined
"""

from __future__ import annotations

import ast
import logging
import operator
import re
from typing import Any, Dict, List, Tuple

from ..errors import ConditionEvaluationError, SafeEvalError, TransformEvaluationError
from ..settings import MAX_EXPRESSION_LENGTH, MAX_SEQUENCE_LENGTH
from .paths import PATH_PATTERN, resolve_path

logger = logging.getLogger(__name__)

# Safe binary operators
_SAFE_COMPARE_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

_SAFE_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_SEQUENCE_TYPES = (str, list, tuple)

_SAFE_UNARY_OPS = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_CONSTANT_NAMES = {
    "true": True,
    "True": True,
    "false": False,
    "False": False,
    "none": None,
    "None": None,
    "null": None,
    "undefined": None,
}

# String literals are left untouched by the JavaScript operator rewrite
_STRING_LITERAL = re.compile(r"(\"(?:\\.|[^\"\\])*\"|'(?:\\.|[^'\\])*')")

# Names bound for $-path references; never valid user identifiers
_REF_PREFIX = "__ref_"


def _rewrite_code(segment: str) -> str:
    segment = segment.replace("!==", "!=").replace("===", "==")
    segment = segment.replace("&&", " and ").replace("||", " or ")
    return re.sub(r"!(?!=)", " not ", segment)


def prepare_expression(expression: str, context: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """Rewrite JavaScript-style operators and bind ``$`` references.

    Returns the Python-syntax expression and the context extended with one
    binding per ``$`` reference.
    """
    parts = _STRING_LITERAL.split(expression)
    bound = dict(context)
    refs = 0
    for i in range(0, len(parts), 2):
        code = _rewrite_code(parts[i])

        def bind(match: re.Match) -> str:
            nonlocal refs
            name = f"{_REF_PREFIX}{refs}"
            refs += 1
            bound[name] = resolve_path(match.group(0), context)
            return name

        parts[i] = PATH_PATTERN.sub(bind, code)
    return "".join(parts), bound


def safe_eval(expression: str, context: Dict[str, Any]) -> Any:
    """Safely evaluate an expression against a context dictionary.

    Args:
        expression: The expression string to evaluate
        context: Dictionary of variable names to values

    Returns:
        The result of evaluating the expression

    Raises:
        SafeEvalError: If expression is invalid or uses unsupported constructs
    """
    if not expression or not expression.strip():
        raise SafeEvalError("Expression cannot be empty")

    expression = expression.strip()

    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise SafeEvalError(
            f"Expression too long ({len(expression)} chars, max {MAX_EXPRESSION_LENGTH})"
        )

    source, bound = prepare_expression(expression, context)

    try:
        tree = ast.parse(source.strip(), mode="eval")
    except SyntaxError as e:
        raise SafeEvalError(f"Invalid expression syntax: {e}") from e

    try:
        return _eval_node(tree.body, bound)
    except SafeEvalError:
        raise
    except Exception as e:
        raise SafeEvalError(f"Evaluation error: {e}") from e


def _check_result_size(op: ast.operator, left: Any, right: Any) -> None:
    """Reject sequence repetition or concatenation past MAX_SEQUENCE_LENGTH."""
    if isinstance(op, ast.Mod) and isinstance(left, str):
        raise SafeEvalError("String formatting with % is not allowed")
    if isinstance(op, ast.Mult):
        if isinstance(left, _SEQUENCE_TYPES) and isinstance(right, int):
            size = len(left) * right
        elif isinstance(right, _SEQUENCE_TYPES) and isinstance(left, int):
            size = len(right) * left
        else:
            return
    elif isinstance(op, ast.Add) and isinstance(left, _SEQUENCE_TYPES) and isinstance(right, _SEQUENCE_TYPES):
        size = len(left) + len(right)
    else:
        return
    if size > MAX_SEQUENCE_LENGTH:
        raise SafeEvalError(f"Result too large ({size} items, max {MAX_SEQUENCE_LENGTH})")


def _eval_node(node: ast.AST, context: Dict[str, Any]) -> Any:
    """Recursively evaluate an AST node."""

    # Literal values: 42, "hello", True, None
    if isinstance(node, ast.Constant):
        return node.value

    # Variable names: x, status, result
    if isinstance(node, ast.Name):
        name = node.id
        if name in context:
            return context[name]
        if name in _CONSTANT_NAMES:
            return _CONSTANT_NAMES[name]
        raise SafeEvalError(f"Unknown variable: '{name}'")

    # Comparisons: x > 10, a == b, x in [1,2,3]
    if isinstance(node, ast.Compare):
        left = _eval_node(node.left, context)
        for op, comparator in zip(node.ops, node.comparators):
            op_func = _SAFE_COMPARE_OPS.get(type(op))
            if op_func is None:
                raise SafeEvalError(f"Unsupported comparison: {type(op).__name__}")
            right = _eval_node(comparator, context)
            if not op_func(left, right):
                return False
            left = right
        return True

    # Boolean operators short-circuit and yield an operand: x and y, a or "default"
    if isinstance(node, ast.BoolOp):
        if isinstance(node.op, ast.And):
            value = True
            for v in node.values:
                value = _eval_node(v, context)
                if not value:
                    return value
            return value
        if isinstance(node.op, ast.Or):
            value = False
            for v in node.values:
                value = _eval_node(v, context)
                if value:
                    return value
            return value
        raise SafeEvalError(f"Unsupported boolean op: {type(node.op).__name__}")

    # Unary operators: not x, -n
    if isinstance(node, ast.UnaryOp):
        op_func = _SAFE_UNARY_OPS.get(type(node.op))
        if op_func is None:
            raise SafeEvalError(f"Unsupported unary op: {type(node.op).__name__}")
        return op_func(_eval_node(node.operand, context))

    # Binary operators: x + 1, count * 2
    if isinstance(node, ast.BinOp):
        op_func = _SAFE_BIN_OPS.get(type(node.op))
        if op_func is None:
            raise SafeEvalError(f"Unsupported binary op: {type(node.op).__name__}")
        left = _eval_node(node.left, context)
        right = _eval_node(node.right, context)
        _check_result_size(node.op, left, right)
        return op_func(left, right)

    # Subscript access: data["key"], items[0]
    if isinstance(node, ast.Subscript):
        value = _eval_node(node.value, context)
        key = _eval_node(node.slice, context)
        try:
            return value[key]
        except (KeyError, IndexError, TypeError) as e:
            raise SafeEvalError(f"Subscript access failed: {e}") from e

    # Attribute access: result.status (only on dicts)
    if isinstance(node, ast.Attribute):
        value = _eval_node(node.value, context)
        if isinstance(value, dict):
            if node.attr in value:
                return value[node.attr]
            raise SafeEvalError(
                f"Key '{node.attr}' not found in dict"
            )
        raise SafeEvalError(
            "Attribute access only supported on dict-like objects"
        )

    # List literals: [1, 2, 3]
    if isinstance(node, ast.List):
        return [_eval_node(elt, context) for elt in node.elts]

    # Tuple literals: (1, 2)
    if isinstance(node, ast.Tuple):
        return tuple(_eval_node(elt, context) for elt in node.elts)

    # Dict literals: {"a": 1}
    if isinstance(node, ast.Dict):
        if any(k is None for k in node.keys):
            raise SafeEvalError("Dict unpacking is not allowed")
        return {
            _eval_node(k, context): _eval_node(v, context)
            for k, v in zip(node.keys, node.values)
        }

    # IfExp: x if condition else y
    if isinstance(node, ast.IfExp):
        if _eval_node(node.test, context):
            return _eval_node(node.body, context)
        return _eval_node(node.orelse, context)

    raise SafeEvalError(f"Unsupported expression type: {type(node).__name__}")


def bind_state(state: Dict[str, Any]) -> Dict[str, Any]:
    """Build an evaluation context from run state.

    Every state key is addressable by name; the whole state is also
    available as ``state`` unless a key of that name already exists.
    """
    context = dict(state)
    context.setdefault("state", state)
    return context


def evaluate_condition(expression: str, state: Dict[str, Any]) -> bool:
    """Evaluate a condition, raising on failure.

    Raises:
        ConditionEvaluationError: If the expression cannot be evaluated
    """
    if not expression or not str(expression).strip():
        return True
    try:
        return bool(safe_eval(str(expression), bind_state(state)))
    except SafeEvalError as e:
        raise ConditionEvaluationError(str(e)) from e


def eval_condition(expression: str, state: Dict[str, Any]) -> bool:
    """Evaluate a condition against run state. Never raises.

    An empty or absent condition is true. Any evaluation failure is
    logged and yields False.
    """
    try:
        return evaluate_condition(expression, state)
    except ConditionEvaluationError as e:
        logger.error(f"Condition '{expression}' evaluation failed: {e}")
        return False


def eval_transform(expression: str, state: Dict[str, Any]) -> Any:
    """Evaluate a transform against run state. Never raises.

    Returns:
        The computed value, a copy of state for an empty transform, or
        ``{"error": message}`` if evaluation fails
    """
    if not expression or not str(expression).strip():
        return dict(state)
    try:
        return safe_eval(str(expression), bind_state(state))
    except SafeEvalError as e:
        error = TransformEvaluationError(str(e))
        logger.warning(f"Transform '{expression}' evaluation failed: {error}")
        return {"error": str(error)}


def validate_condition_expression(expression: str) -> List[str]:
    """Validate an expression without evaluating it.

    Args:
        expression: The expression string to validate

    Returns:
        List of validation error strings. Empty if valid.
    """
    errors = []

    if not expression or not expression.strip():
        errors.append("Condition expression cannot be empty")
        return errors

    expression = expression.strip()

    if len(expression) > MAX_EXPRESSION_LENGTH:
        errors.append(
            f"Expression too long ({len(expression)} chars, max {MAX_EXPRESSION_LENGTH})"
        )
        return errors

    source, _ = prepare_expression(expression, {})
    try:
        tree = ast.parse(source.strip(), mode="eval")
    except SyntaxError as e:
        errors.append(f"Invalid syntax: {e}")
        return errors

    # Walk tree to check for unsafe constructs
    for node in ast.walk(tree):
        if isinstance(node, ast.Call):
            errors.append("Function calls are not allowed in conditions")
        elif isinstance(node, ast.Lambda):
            errors.append("Lambda expressions are not allowed")
        elif isinstance(node, (ast.ListComp, ast.SetComp, ast.DictComp, ast.GeneratorExp)):
            errors.append("Comprehensions are not allowed")
        elif isinstance(node, ast.Await):
            errors.append("Await expressions are not allowed")
        elif isinstance(node, ast.Starred):
            errors.append("Star expressions are not allowed")

    return errors

"""Tests for the safe expression evaluator (agentflow/engine/safe_eval.py).

Covers:
- Comparisons, boolean logic, arithmetic and field access
- JavaScript-style operators kept for existing definitions
- $-path references, including the $name shorthand
- Size caps on sequence-building operators
- Never-raising condition/transform wrappers
- Injection attempts
"""

import pytest

from agentflow.engine.safe_eval import (
    eval_condition,
    eval_transform,
    evaluate_condition,
    safe_eval,
    validate_condition_expression,
)
from agentflow.errors import ConditionEvaluationError, SafeEvalError


class TestSafeEval:
    """Core expression evaluation."""

    def test_comparison(self):
        assert safe_eval("score > 5", {"score": 7}) is True
        assert safe_eval("score > 5", {"score": 3}) is False

    def test_chained_comparison(self):
        assert safe_eval("0 < x < 10", {"x": 5}) is True
        assert safe_eval("0 < x < 10", {"x": 15}) is False

    def test_boolean_operators(self):
        ctx = {"a": 1, "b": 0}
        assert safe_eval("a > 0 and b == 0", ctx) is True
        assert safe_eval("a > 5 or b == 0", ctx) is True
        assert safe_eval("not b", ctx) is True

    def test_or_returns_operand(self):
        assert safe_eval("tone or 'professional'", {"tone": ""}) == "professional"
        assert safe_eval("tone or 'professional'", {"tone": "casual"}) == "casual"

    def test_arithmetic(self):
        assert safe_eval("count * 2 + 1", {"count": 4}) == 9
        assert safe_eval("total / n", {"total": 9, "n": 3}) == 3
        assert safe_eval("n % 2", {"n": 5}) == 1

    def test_string_equality(self):
        assert safe_eval('status == "success"', {"status": "success"}) is True

    def test_membership(self):
        assert safe_eval("x in [1, 2, 3]", {"x": 2}) is True
        assert safe_eval("'a' not in tags", {"tags": ["b"]}) is True

    def test_subscript_and_dot_access(self):
        ctx = {"result": {"status": "ok", "items": [10, 20]}}
        assert safe_eval("result['status'] == 'ok'", ctx) is True
        assert safe_eval("result.status", ctx) == "ok"
        assert safe_eval("result.items[1]", ctx) == 20

    def test_literals(self):
        assert safe_eval("[1, 2]", {}) == [1, 2]
        assert safe_eval("{'a': 1}", {}) == {"a": 1}
        assert safe_eval("None", {}) is None

    def test_conditional_expression(self):
        assert safe_eval("'big' if n > 10 else 'small'", {"n": 11}) == "big"

    def test_unknown_variable_raises(self):
        with pytest.raises(SafeEvalError, match="Unknown variable"):
            safe_eval("missing > 1", {})

    def test_missing_dict_key_raises(self):
        with pytest.raises(SafeEvalError):
            safe_eval("result.nope", {"result": {}})

    def test_empty_expression_raises(self):
        with pytest.raises(SafeEvalError):
            safe_eval("   ", {})

    def test_too_long_expression_raises(self):
        with pytest.raises(SafeEvalError, match="too long"):
            safe_eval("1 + " * 200 + "1", {})

    def test_state_values_are_bound_not_substituted(self):
        """A state value that looks like code is just a string."""
        ctx = {"name": "__import__('os').system('echo hi')"}
        assert safe_eval("name", ctx) == ctx["name"]
        assert safe_eval("name == 'x'", ctx) is False


class TestInjection:
    """Constructs outside the grammar are rejected."""

    @pytest.mark.parametrize("expression", [
        "__import__('os')",
        "open('/etc/passwd')",
        "(lambda: 1)()",
        "[x for x in range(3)]",
        "().__class__",
    ])
    def test_rejected(self, expression):
        with pytest.raises(SafeEvalError):
            safe_eval(expression, {})


class TestJavaScriptOperators:
    """Operators used by definitions authored in the web editor."""

    def test_strict_equality(self):
        assert safe_eval("status === 'done'", {"status": "done"}) is True
        assert safe_eval("status !== 'done'", {"status": "done"}) is False

    def test_logical_operators(self):
        ctx = {"a": True, "b": False}
        assert safe_eval("a && !b", ctx) is True
        assert safe_eval("b || a", ctx) is True

    def test_null_and_undefined(self):
        assert safe_eval("value === null", {"value": None}) is True
        assert safe_eval("value !== undefined", {"value": 1}) is True
        assert safe_eval("true && !false", {}) is True

    def test_operators_inside_strings_untouched(self):
        assert safe_eval("msg == 'a && b'", {"msg": "a && b"}) is True
        assert safe_eval("msg == 'wow!'", {"msg": "wow!"}) is True


class TestPathReferences:
    """$-paths inside expressions."""

    def test_path_lookup(self):
        doc = {"step1": {"output": {"topic": "ai"}}}
        assert safe_eval("$.step1.output.topic == 'ai'", doc) is True

    def test_missing_path_is_none(self):
        assert safe_eval("$.step9.output.topic", {}) is None

    def test_index_path(self):
        assert safe_eval("$.items[1]", {"items": ["a", "b"]}) == "b"

    def test_path_fallback(self):
        doc = {"input": {}}
        assert safe_eval("$.input.tone || 'professional'", doc) == "professional"
        assert safe_eval("$.input.sources || ['web', 'academic']", doc) == ["web", "academic"]

    def test_dollar_identifier(self):
        """``$score`` reads state["score"] like ``$.score``."""
        assert safe_eval("$score > 5", {"score": 9}) is True
        assert safe_eval("$user.name", {"user": {"name": "ada"}}) == "ada"
        assert safe_eval("$tags[0]", {"tags": ["a"]}) == "a"
        assert safe_eval("$missing", {}) is None

    def test_dollar_identifier_condition(self):
        assert eval_condition("$score > 5", {"score": 9}) is True
        assert eval_condition("$score > 5 && $status === 'done'", {"score": 9, "status": "done"}) is True
        assert eval_condition("$score > 5", {"score": 3}) is False


class TestEvalCondition:
    """Condition wrapper: empty is true, failures are false."""

    def test_empty_condition_is_true(self):
        assert eval_condition("", {}) is True
        assert eval_condition(None, {}) is True

    def test_true_and_false(self):
        assert eval_condition("score > 5", {"score": 7}) is True
        assert eval_condition("score > 5", {"score": 3}) is False

    def test_failure_yields_false(self):
        assert eval_condition("score >", {"score": 3}) is False
        assert eval_condition("unknown_name", {}) is False

    def test_state_alias(self):
        assert eval_condition("state['score'] == 3", {"score": 3}) is True

    def test_evaluate_condition_raises(self):
        with pytest.raises(ConditionEvaluationError):
            evaluate_condition("unknown_name", {})


class TestEvalTransform:
    """Transform wrapper: value, or {error}."""

    def test_value(self):
        assert eval_transform("{'doubled': x * 2}", {"x": 4}) == {"doubled": 8}

    def test_empty_transform_copies_state(self):
        state = {"x": 1}
        result = eval_transform("", state)
        assert result == state
        assert result is not state

    def test_failure_yields_error(self):
        result = eval_transform("x / 0", {"x": 1})
        assert set(result) == {"error"}
        assert "division" in result["error"]

    def test_oversized_repetition_yields_error(self):
        result = eval_transform("'a' * 300000000", {})
        assert set(result) == {"error"}
        assert "too large" in result["error"]


class TestResultSize:
    """Sequence-building operators are capped."""

    @pytest.mark.parametrize("expression", [
        "'a' * 300000000",
        "300000000 * 'a'",
        "[0] * 300000000",
        "('a' * 1000) * 1000000",
        "text + text",
    ])
    def test_rejected(self, expression):
        with pytest.raises(SafeEvalError, match="too large"):
            safe_eval(expression, {"text": "x" * 600_000})

    def test_small_sequences_allowed(self):
        assert safe_eval("'ab' * 3", {}) == "ababab"
        assert safe_eval("items + [3]", {"items": [1, 2]}) == [1, 2, 3]
        assert safe_eval("greeting + ', ' + name", {"greeting": "hi", "name": "ada"}) == "hi, ada"

    def test_string_formatting_rejected(self):
        with pytest.raises(SafeEvalError, match="formatting"):
            safe_eval("'%0999999999d' % 1", {})


class TestValidateConditionExpression:

    def test_valid(self):
        assert validate_condition_expression("a > 1 && b") == []

    def test_syntax_error(self):
        errors = validate_condition_expression("a >")
        assert errors and "Invalid syntax" in errors[0]

    def test_function_call(self):
        assert "Function calls are not allowed in conditions" in validate_condition_expression("len(x)")

    def test_empty(self):
        assert validate_condition_expression("") == ["Condition expression cannot be empty"]

"""Built-in Node Processors

Input, Condition, Transform and Output processors. All of them are pure
functions of ``(node data, state)``; the Agent processor lives in
``agents.py`` because it is the only one that performs I/O.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .registry import BaseNodeImpl, register_node_kind
from ..errors import ConditionEvaluationError
from ..engine.safe_eval import (
    evaluate_condition,
    eval_transform,
    validate_condition_expression,
)

logger = logging.getLogger(__name__)

_SCHEMA_CONFIG = {
    "oneOf": [
        {"type": "object", "properties": {"properties": {"type": "object"}}},
        {"type": "array", "items": {"type": "string"}},
    ]
}


def schema_keys(schema: Any) -> Optional[List[str]]:
    """Keys declared by a node schema, or None when no schema is given.

    A schema may be a JSON schema with ``properties`` or a plain list of
    key names.
    """
    if not schema:
        return None
    if isinstance(schema, (list, tuple)):
        return [str(key) for key in schema]
    if isinstance(schema, dict):
        properties = schema.get("properties")
        if isinstance(properties, dict):
            return list(properties.keys())
    return None


def project_state(state: Dict[str, Any], schema: Any) -> Dict[str, Any]:
    """Project state down to the schema's keys (full copy if no schema)."""
    keys = schema_keys(schema)
    if keys is None:
        return dict(state)
    return {key: state[key] for key in keys if key in state}


@register_node_kind(
    node_kind="input",
    display_name="Input",
    description="Entry point; exposes the declared input keys of the run state",
    category="io",
    config_schema={
        "type": "object",
        "properties": {
            "label": {"type": "string"},
            "inputSchema": _SCHEMA_CONFIG,
        },
    },
    output_schema={"type": "object"},
    icon="log-in",
    color="#4CAF50",
)
class InputNode(BaseNodeImpl):
    """Projects the run state onto the input schema."""

    async def execute(self, state: Dict[str, Any]) -> Dict[str, Any]:
        result = project_state(state, self.data.get("inputSchema") or self.data.get("schema"))
        logger.info(f"InputNode {self.node_id}: exposing keys {list(result.keys())}")
        return result


@register_node_kind(
    node_kind="condition",
    display_name="Condition",
    description="Evaluates a boolean expression against the run state",
    category="control",
    config_schema={
        "type": "object",
        "properties": {
            "label": {"type": "string"},
            "condition": {"type": "string"},
        },
    },
    output_schema={
        "type": "object",
        "properties": {
            "result": {"type": "boolean"},
            "error": {"type": "string"},
        },
    },
    icon="git-branch",
    color="#9C27B0",
)
class ConditionNode(BaseNodeImpl):
    """Node that evaluates a condition for branching.

    The expression is evaluated against the run state with the safe
    evaluator. Outgoing edges typically gate on ``nodeResult.result``.
    An evaluation failure yields ``{"result": False, "error": ...}``;
    this processor never raises.
    """

    async def execute(self, state: Dict[str, Any]) -> Dict[str, Any]:
        condition_expr = self.data.get("condition", "")
        try:
            result = evaluate_condition(condition_expr, state)
        except ConditionEvaluationError as e:
            logger.error(f"ConditionNode {self.node_id}: '{condition_expr}' evaluation failed: {e}")
            return {"result": False, "error": str(e)}

        logger.info(f"ConditionNode {self.node_id}: '{condition_expr}' evaluated to {result}")
        return {"result": result}

    def validate_config(self) -> List[Dict[str, str]]:
        errors = super().validate_config()

        condition_expr = self.data.get("condition", "")
        if condition_expr:
            for err in validate_condition_expression(condition_expr):
                errors.append({"field": "condition", "error": err})

        return errors


@register_node_kind(
    node_kind="transform",
    display_name="Transform",
    description="Computes a value from the run state",
    category="processing",
    config_schema={
        "type": "object",
        "properties": {
            "label": {"type": "string"},
            "transform": {"type": "string"},
        },
    },
    output_schema={"type": "any"},
    icon="shuffle",
    color="#2196F3",
)
class TransformNode(BaseNodeImpl):
    """Evaluates the transform expression.

    A dict result is merged into state by the scheduler. Failures produce
    ``{"error": message}`` and do not abort the run.
    """

    async def execute(self, state: Dict[str, Any]) -> Any:
        expression = self.data.get("transform") or self.data.get("expression") or ""
        result = eval_transform(expression, state)
        logger.info(f"TransformNode {self.node_id}: produced {type(result).__name__}")
        return result

    def validate_config(self) -> List[Dict[str, str]]:
        errors = super().validate_config()

        expression = self.data.get("transform") or self.data.get("expression") or ""
        if expression:
            for err in validate_condition_expression(expression):
                errors.append({"field": "transform", "error": err})

        return errors


@register_node_kind(
    node_kind="output",
    display_name="Output",
    description="Exit point; collects the declared output keys of the run state",
    category="io",
    config_schema={
        "type": "object",
        "properties": {
            "label": {"type": "string"},
            "outputSchema": _SCHEMA_CONFIG,
        },
    },
    output_schema={"type": "object"},
    icon="download",
    color="#607D8B",
)
class OutputNode(BaseNodeImpl):
    """Projects the run state onto the output schema."""

    async def execute(self, state: Dict[str, Any]) -> Dict[str, Any]:
        result = project_state(state, self.data.get("outputSchema") or self.data.get("schema"))
        logger.info(f"OutputNode {self.node_id}: collected keys {list(result.keys())}")
        return result

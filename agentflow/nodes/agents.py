"""Agent Node Implementation

The agent node is the only processor that performs I/O: it hands the run
state to the configured ``AgentInvoker`` and records the response.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List

from .registry import BaseNodeImpl, register_node_kind
from ..errors import AgentInvocationError

logger = logging.getLogger(__name__)


def render_template(template: str, context: Dict[str, Any]) -> str:
    """Render a prompt template with variable substitution.

    Supports two formats:
    - {variable_name}: top-level state key
    - {node_id.field_name}: nested field of a dict-valued state key

    Unresolved placeholders are left as-is.
    """
    def replacer(match: re.Match) -> str:
        key = match.group(1)
        if key in context:
            val = context[key]
            return val if isinstance(val, str) else str(val)

        parts = key.split(".", 1)
        if len(parts) == 2:
            head, field_name = parts
            if isinstance(context.get(head), dict) and field_name in context[head]:
                val = context[head][field_name]
                return val if isinstance(val, str) else str(val)

        logger.warning(f"Unresolved template placeholder: {{{key}}}")
        return match.group(0)

    return re.sub(r"\{(\w+(?:\.\w+)?)\}", replacer, template)


def agent_ref_of(data: Dict[str, Any]) -> str:
    """Agent reference of a node or step (``agentRef`` or legacy ``agentId``)."""
    return str(data.get("agentRef") or data.get("agentId") or "")


@register_node_kind(
    node_kind="agent",
    display_name="Agent",
    description="Invokes an external agent with the current run state",
    category="agent",
    config_schema={
        "type": "object",
        "properties": {
            "label": {"type": "string"},
            "agentRef": {"type": "string", "description": "Agent to invoke"},
            "agentId": {"type": "string", "description": "Legacy alias of agentRef"},
            "prompt": {"type": "string", "description": "Optional prompt template with {variable} placeholders"},
        },
    },
    output_schema={
        "type": "object",
        "properties": {
            "agentResponse": {"type": "any"},
            "timestamp": {"type": "string"},
        },
    },
    icon="bot",
    color="#6366F1",
)
class AgentNode(BaseNodeImpl):
    """Node that delegates to the AgentInvoker.

    The invoker receives a copy of the run state, plus ``prompt`` when the
    node declares a prompt template. Invoker failures propagate as
    AgentInvocationError and abort the flow run.
    """

    async def execute(self, state: Dict[str, Any]) -> Dict[str, Any]:
        agent_ref = agent_ref_of(self.data)
        if self.invoker is None:
            raise AgentInvocationError(agent_ref, "no agent invoker configured")
        if not agent_ref:
            raise AgentInvocationError(agent_ref, f"node '{self.node_id}' has no agent reference")

        payload = dict(state)
        prompt_template = self.data.get("prompt")
        if prompt_template:
            payload["prompt"] = render_template(prompt_template, state)

        logger.info(f"AgentNode {self.node_id}: invoking '{agent_ref}'")
        try:
            response = await self.invoker.invoke(agent_ref, payload)
        except AgentInvocationError:
            raise
        except Exception as e:
            raise AgentInvocationError(agent_ref, str(e)) from e

        output = response.get("output") if isinstance(response, dict) else response
        logger.info(f"AgentNode {self.node_id}: '{agent_ref}' responded")
        return {
            "agentResponse": output,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def validate_config(self) -> List[Dict[str, str]]:
        errors = super().validate_config()
        if not agent_ref_of(self.data):
            errors.append({"field": "agentRef", "error": "Agent reference is required"})
        return errors

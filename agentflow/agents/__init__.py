"""External agent clients."""

from .invoker import AgentInvoker, EchoAgentInvoker, HttpAgentInvoker, get_default_invoker

__all__ = [
    "AgentInvoker",
    "EchoAgentInvoker",
    "HttpAgentInvoker",
    "get_default_invoker",
]

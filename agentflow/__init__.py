"""Agent flow and chain execution engine.

Subpackages:
- engine: Expression evaluation, flow validation and scheduling, chain
  stepping, execution records and run drivers
- nodes: Node kind registry and processors (input, agent, condition,
  transform, output)
- agents: AgentInvoker protocol and clients
"""

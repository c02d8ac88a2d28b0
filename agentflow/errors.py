"""Error taxonomy for flow and chain execution.

Structural errors (ValidationError) are raised before a run exists and
never produce an execution record. Runtime errors are captured into the
record's ``error``/``error_kind`` fields by the Execution Record Manager.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

# error_kind values persisted on failed execution records
ERROR_KIND_VALIDATION = "validation"
ERROR_KIND_AGENT = "agent_invocation"
ERROR_KIND_TIMEOUT = "timeout"
ERROR_KIND_CANCELLED = "cancelled"
ERROR_KIND_INTERNAL = "internal"


class AgentFlowError(Exception):
    """Base class for all engine errors."""

    error_kind = ERROR_KIND_INTERNAL


class ValidationIssue:
    """A single structural problem (or warning) found in a definition.

    Attributes:
        code: Error code
        message: Error message
        severity: Error severity (error or warning)
        node_ids: List of affected node IDs
        context: Additional error context
    """

    def __init__(
        self,
        code: str,
        message: str,
        severity: str = "error",
        node_ids: Optional[List[str]] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message
        self.severity = severity
        self.node_ids = node_ids or []
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "node_ids": self.node_ids,
            "context": self.context,
        }

    def __repr__(self) -> str:
        return f"ValidationIssue(code={self.code!r}, message={self.message!r})"


class ValidationError(AgentFlowError):
    """Malformed flow or chain definition."""

    error_kind = ERROR_KIND_VALIDATION

    def __init__(self, message: str, issues: Optional[List[ValidationIssue]] = None):
        self.issues = issues or [ValidationIssue(code="INVALID_DEFINITION", message=message)]
        super().__init__(message)


class NotFoundError(AgentFlowError):
    """Unknown flow, chain or execution id."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} '{identifier}' not found")


class AgentInvocationError(AgentFlowError):
    """The external agent invoker failed."""

    error_kind = ERROR_KIND_AGENT

    def __init__(self, agent_ref: str, message: str):
        self.agent_ref = agent_ref
        super().__init__(f"Agent '{agent_ref}' invocation failed: {message}")


class StepTimeoutError(AgentInvocationError):
    """A chain step attempt exceeded its timeout."""

    error_kind = ERROR_KIND_TIMEOUT

    def __init__(self, agent_ref: str, step_id: str, timeout_ms: int):
        self.step_id = step_id
        self.timeout_ms = timeout_ms
        super().__init__(agent_ref, f"step '{step_id}' timed out after {timeout_ms}ms")


class CancellationError(AgentFlowError):
    """The run was cancelled at a node or step boundary."""

    error_kind = ERROR_KIND_CANCELLED

    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution '{execution_id}' was cancelled")


class SafeEvalError(AgentFlowError):
    """Raised when expression evaluation fails."""


class ConditionEvaluationError(SafeEvalError):
    """A condition expression could not be evaluated."""


class TransformEvaluationError(SafeEvalError):
    """A transform expression could not be evaluated."""


def error_kind_of(exc: BaseException) -> str:
    """Map an exception to the error_kind stored on a failed record."""
    if isinstance(exc, AgentFlowError):
        return exc.error_kind
    return ERROR_KIND_INTERNAL

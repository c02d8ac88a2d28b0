"""Pydantic schemas for the agent app and agent chain API.

Field names are snake_case in Python and camelCase on the wire
(``isPublic``, ``executionId``, ``perStepResult`` ...). Nodes, edges and
chain steps are accepted as free-form JSON; their structure is checked
by the engine validators so that structural problems come back as 400
with the engine's issue codes.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

JoinStrategy = Literal["first-arrival", "wait-all"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Agent apps (flows) ---


class CreateAgentAppRequest(CamelModel):
    """Request for POST /agent-apps."""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    nodes: List[Dict[str, Any]] = Field(default_factory=list)
    edges: List[Dict[str, Any]] = Field(default_factory=list)
    config: Optional[Dict[str, Any]] = None
    is_public: bool = False


class UpdateAgentAppRequest(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    nodes: Optional[List[Dict[str, Any]]] = None
    edges: Optional[List[Dict[str, Any]]] = None
    config: Optional[Dict[str, Any]] = None
    is_public: Optional[bool] = None


class AgentAppResponse(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    nodes: List[Dict[str, Any]]
    edges: List[Dict[str, Any]]
    config: Dict[str, Any] = Field(default_factory=dict)
    is_public: bool
    is_active: bool
    created_at: str
    updated_at: str


class ExecuteAppRequest(CamelModel):
    """Request for POST /agent-apps/{id}/execute."""
    input: Dict[str, Any] = Field(default_factory=dict)
    context: Optional[Dict[str, Any]] = None
    join_strategy: Optional[JoinStrategy] = None


class ExecuteAppResponse(CamelModel):
    execution_id: str
    status: str
    results: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None


class AppExecutionResponse(CamelModel):
    """A flow run record."""
    id: str
    flow_id: str
    status: str
    join_strategy: Optional[str] = None
    input_data: Optional[Dict[str, Any]] = None
    context: Optional[Dict[str, Any]] = None
    results: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    error_kind: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


# --- Agent chains ---


class CreateChainRequest(CamelModel):
    """Request for POST /agent-chains."""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    steps: List[Dict[str, Any]] = Field(default_factory=list)


class UpdateChainRequest(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    steps: Optional[List[Dict[str, Any]]] = None
    is_active: Optional[bool] = None


class ChainResponse(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    steps: List[Dict[str, Any]]
    is_active: bool
    created_at: str
    updated_at: str


class ExecuteChainRequest(CamelModel):
    """Request for POST /agent-chains/{id}/execute."""
    input: Any = None
    variables: Dict[str, Any] = Field(default_factory=dict)


class ExecuteChainResponse(CamelModel):
    execution_id: str
    status: str


class ChainExecutionResponse(CamelModel):
    """A chain run record, as polled by clients."""
    id: str
    chain_id: str
    status: str
    current_step: Optional[str] = None
    current_step_index: int = 0
    per_step_result: Dict[str, Any] = Field(default_factory=dict)
    previous_step_id: Optional[str] = None
    input: Any = None
    variables: Dict[str, Any] = Field(default_factory=dict)
    output: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class CommonError(BaseModel):
    error: str
    count: int


class ChainAnalyticsResponse(CamelModel):
    execution_count: int
    success_rate: float
    average_duration_ms: float
    common_errors: List[CommonError] = Field(default_factory=list)


# --- Validation / node kinds ---


class ValidateFlowRequest(CamelModel):
    nodes: List[Dict[str, Any]] = Field(default_factory=list)
    edges: List[Dict[str, Any]] = Field(default_factory=list)
    name: Optional[str] = None


class ValidationIssueResponse(BaseModel):
    code: str
    message: str
    severity: str
    node_ids: List[str] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)


class ValidationResponse(BaseModel):
    valid: bool
    errors: List[ValidationIssueResponse] = Field(default_factory=list)
    warnings: List[ValidationIssueResponse] = Field(default_factory=list)


class NodeKindResponse(CamelModel):
    node_kind: str
    display_name: str
    description: str
    category: str
    config_schema: Dict[str, Any]
    output_schema: Dict[str, Any]
    icon: Optional[str] = None
    color: Optional[str] = None

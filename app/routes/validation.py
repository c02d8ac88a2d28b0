"""Flow validation and node kind registry endpoints."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter

from agentflow.engine import parse_flow, validate_flow
from agentflow.nodes import list_node_kinds

from app.models.schemas import (
    NodeKindResponse,
    ValidateFlowRequest,
    ValidationIssueResponse,
    ValidationResponse,
)

router = APIRouter(tags=["validation"])


@router.get("/node-kinds", response_model=List[NodeKindResponse])
def get_node_kinds():
    """List all registered node kinds for the editor palette."""
    return [
        NodeKindResponse(
            node_kind=d.node_kind,
            display_name=d.display_name,
            description=d.description,
            category=d.category,
            config_schema=d.config_schema,
            output_schema=d.output_schema,
            icon=d.icon,
            color=d.color,
        )
        for d in list_node_kinds()
    ]


@router.post("/validate-flow", response_model=ValidationResponse)
async def validate_flow_inline(payload: ValidateFlowRequest):
    """Validate a flow without saving (for live editor feedback).

    Always 200: structural errors are reported in the body.
    """
    flow = parse_flow({"nodes": payload.nodes, "edges": payload.edges}, name=payload.name or "")
    result = validate_flow(flow)
    return ValidationResponse(
        valid=result.valid,
        errors=[ValidationIssueResponse(**err.to_dict()) for err in result.errors],
        warnings=[ValidationIssueResponse(**warn.to_dict()) for warn in result.warnings],
    )

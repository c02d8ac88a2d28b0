"""SQLAlchemy ORM models for the agent app service.

Tables:
- agent_apps: Flow ("agent app") definitions, nodes and edges as JSON
- app_executions: Flow run records
- agent_chains: Chain definitions, steps as JSON
- chain_executions: Chain run records
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _gen_uuid() -> str:
    return str(uuid.uuid4())


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


# ─── Agent App (Flow) ────────────────────────────────────────────────


class AgentAppModel(Base):
    """Persistent flow definition.

    ``nodes`` and ``edges`` are stored as submitted (React Flow JSON);
    the engine parses them at execution time.
    """

    __tablename__ = "agent_apps"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_gen_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    nodes: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    edges: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    config: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON, nullable=True, comment="App settings, e.g. joinStrategy",
    )

    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, comment="False once soft-deleted",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    executions: Mapped[List["AppExecutionModel"]] = relationship(
        back_populates="app", cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_agent_apps_is_active", "is_active"),
        Index("ix_agent_apps_updated_at", "updated_at"),
    )

    def to_definition(self) -> Dict[str, Any]:
        """Flow definition as consumed by the engine."""
        return {
            "id": self.id,
            "name": self.name,
            "nodes": self.nodes or [],
            "edges": self.edges or [],
            "config": self.config or {},
        }


# ─── Flow Execution ─────────────────────────────────────────────────


class AppExecutionModel(Base):
    """Record of a single flow run."""

    __tablename__ = "app_executions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_gen_uuid)
    app_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("agent_apps.id", ondelete="CASCADE"), nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="running",
        comment="running | completed | failed",
    )
    join_strategy: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    input_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    context: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    results: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON, nullable=True, comment="Node id -> node result",
    )
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_kind: Mapped[Optional[str]] = mapped_column(
        String(32), nullable=True,
        comment="validation | agent_invocation | timeout | cancelled | internal",
    )

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    app: Mapped["AgentAppModel"] = relationship(back_populates="executions")

    __table_args__ = (
        Index("ix_app_executions_app_id", "app_id"),
        Index("ix_app_executions_started_at", "started_at"),
    )

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "flowId": self.app_id,
            "status": self.status,
            "joinStrategy": self.join_strategy,
            "inputData": self.input_data,
            "context": self.context,
            "results": self.results or {},
            "error": self.error,
            "errorKind": self.error_kind,
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
        }


# ─── Agent Chain ────────────────────────────────────────────────────


class AgentChainModel(Base):
    """Persistent chain definition (ordered steps)."""

    __tablename__ = "agent_chains"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_gen_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    steps: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    executions: Mapped[List["ChainExecutionModel"]] = relationship(
        back_populates="chain", cascade="all, delete-orphan",
    )

    def to_definition(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description or "",
            "steps": self.steps or [],
        }


# ─── Chain Execution ────────────────────────────────────────────────


class ChainExecutionModel(Base):
    """Record of a single chain run, updated after every step."""

    __tablename__ = "chain_executions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_gen_uuid)
    chain_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("agent_chains.id", ondelete="CASCADE"), nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="running",
        comment="running | completed | failed",
    )
    current_step_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    input: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    variables: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    per_step_result: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON, nullable=True, comment="Step id -> step outcome",
    )
    previous_step_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    output: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_kind: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    chain: Mapped["AgentChainModel"] = relationship(back_populates="executions")

    __table_args__ = (
        Index("ix_chain_executions_chain_id", "chain_id"),
        Index("ix_chain_executions_status", "status"),
    )

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "chainId": self.chain_id,
            "status": self.status,
            "currentStepIndex": self.current_step_index,
            "input": self.input,
            "variables": self.variables or {},
            "perStepResult": self.per_step_result or {},
            "previousStepId": self.previous_step_id,
            "output": self.output,
            "error": self.error,
            "errorKind": self.error_kind,
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
        }

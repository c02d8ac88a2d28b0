"""Repository layer for agent app (flow) definitions.

Provides async CRUD operations for AgentAppModel. Deletion is soft:
inactive apps disappear from listings and cannot be executed.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.db import AgentAppModel


class AgentAppRepository:
    """Data access layer for agent apps."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        name: str,
        nodes: List[Dict[str, Any]],
        edges: List[Dict[str, Any]],
        description: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
        is_public: bool = False,
    ) -> AgentAppModel:
        app = AgentAppModel(
            name=name,
            description=description,
            nodes=nodes,
            edges=edges,
            config=config or {},
            is_public=is_public,
            is_active=True,
        )
        self.session.add(app)
        await self.session.flush()
        return app

    async def get(self, app_id: str, include_inactive: bool = False) -> Optional[AgentAppModel]:
        """Get an app by ID; inactive apps only when asked for."""
        query = select(AgentAppModel).where(AgentAppModel.id == app_id)
        if not include_inactive:
            query = query.where(AgentAppModel.is_active.is_(True))
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list(self, public_only: bool = False) -> List[AgentAppModel]:
        """List active apps, most recently updated first."""
        query = select(AgentAppModel).where(AgentAppModel.is_active.is_(True))
        if public_only:
            query = query.where(AgentAppModel.is_public.is_(True))
        query = query.order_by(AgentAppModel.updated_at.desc())
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def update(self, app_id: str, **kwargs: Any) -> Optional[AgentAppModel]:
        """Update an active app with arbitrary fields.

        Args:
            app_id: App identifier
            **kwargs: Fields to update (name, nodes, edges, config, is_public, ...)

        Returns:
            Updated AgentAppModel or None if not found
        """
        app = await self.get(app_id)
        if not app:
            return None

        for key, value in kwargs.items():
            if hasattr(app, key):
                setattr(app, key, value)

        await self.session.flush()
        return app

    async def soft_delete(self, app_id: str) -> bool:
        app = await self.get(app_id)
        if not app:
            return False
        app.is_active = False
        await self.session.flush()
        return True

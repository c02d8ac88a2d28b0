"""Repository layer for agent chain definitions."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.db import AgentChainModel


class AgentChainRepository:
    """Data access layer for agent chains."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        name: str,
        steps: List[Dict[str, Any]],
        description: Optional[str] = None,
    ) -> AgentChainModel:
        chain = AgentChainModel(
            name=name,
            description=description,
            steps=steps,
            is_active=True,
        )
        self.session.add(chain)
        await self.session.flush()
        return chain

    async def get(self, chain_id: str) -> Optional[AgentChainModel]:
        result = await self.session.execute(
            select(AgentChainModel).where(AgentChainModel.id == chain_id)
        )
        return result.scalar_one_or_none()

    async def list(self, include_inactive: bool = False) -> List[AgentChainModel]:
        query = select(AgentChainModel)
        if not include_inactive:
            query = query.where(AgentChainModel.is_active.is_(True))
        query = query.order_by(AgentChainModel.updated_at.desc())
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def update(self, chain_id: str, **kwargs: Any) -> Optional[AgentChainModel]:
        chain = await self.get(chain_id)
        if not chain:
            return None

        for key, value in kwargs.items():
            if hasattr(chain, key):
                setattr(chain, key, value)

        await self.session.flush()
        return chain

    async def delete(self, chain_id: str) -> bool:
        """Delete a chain and its execution records."""
        chain = await self.get(chain_id)
        if not chain:
            return False
        await self.session.delete(chain)
        await self.session.flush()
        return True

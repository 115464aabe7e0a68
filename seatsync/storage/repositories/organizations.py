"""Organization repository (PostgreSQL-backed)."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from seatsync.models.database import Organization

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


class DatabaseOrganizationRepository:
    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def get(self, org_id: str) -> Organization | None:
        async with AsyncSession(self._engine) as session:
            stmt = select(Organization).where(col(Organization.id) == org_id)
            result = await session.execute(stmt)
            return result.scalars().first()

"""User repository (PostgreSQL-backed)."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlmodel.ext.asyncio.session import AsyncSession

from seatsync.models.database import User, _utc_now

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


class DatabaseUserRepository:
    """Local mirror of users known to the auth provider."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def ensure(self, user_id: str, email: str, name: str = "") -> User:
        """Create or refresh the user row for an authenticated subject."""
        async with AsyncSession(self._engine) as session:
            user = await session.get(User, user_id)
            if user is None:
                user = User(id=user_id, email=email.lower(), name=name or email)
                logger.info("user_created", user_id=user_id)
            elif email and user.email != email.lower():
                user.email = email.lower()
                user.updated_at = _utc_now()
            session.add(user)
            await session.commit()
            await session.refresh(user)
            return user

"""Invitation repository (PostgreSQL-backed)."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import update
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from seatsync.models.database import Invitation, _utc_now
from seatsync.types import InvitationStatus

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


class DatabaseInvitationRepository:
    """Invitation rows. Creation goes through the seat reservation path."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def get(self, invitation_id: str, org_id: str) -> Invitation | None:
        async with AsyncSession(self._engine) as session:
            stmt = select(Invitation).where(
                col(Invitation.id) == invitation_id,
                col(Invitation.org_id) == org_id,
            )
            result = await session.execute(stmt)
            return result.scalars().first()

    async def get_by_token(self, token: str) -> Invitation | None:
        async with AsyncSession(self._engine) as session:
            stmt = select(Invitation).where(col(Invitation.token) == token)
            result = await session.execute(stmt)
            return result.scalars().first()

    async def pending_emails(self, org_id: str, emails: list[str], now: datetime) -> list[str]:
        """Return which of ``emails`` already hold a live pending invitation."""
        if not emails:
            return []
        async with AsyncSession(self._engine) as session:
            stmt = select(Invitation.email).where(
                col(Invitation.org_id) == org_id,
                col(Invitation.status) == InvitationStatus.PENDING,
                col(Invitation.expires_at) > now,
                col(Invitation.email).in_(emails),
            )
            result = await session.execute(stmt)
            return sorted(set(result.scalars().all()))

    async def transition(
        self,
        invitation_id: str,
        from_status: InvitationStatus,
        to_status: InvitationStatus,
    ) -> bool:
        values: dict[str, object] = {"status": to_status, "updated_at": _utc_now()}
        if to_status == InvitationStatus.ACCEPTED:
            values["accepted_at"] = _utc_now()
        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                update(Invitation)
                .where(col(Invitation.id) == invitation_id, col(Invitation.status) == from_status)
                .values(**values)
            )
            await session.commit()
        return bool(result.rowcount)

    async def expire_overdue(self, now: datetime) -> int:
        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                update(Invitation)
                .where(
                    col(Invitation.status) == InvitationStatus.PENDING,
                    col(Invitation.expires_at) <= now,
                )
                .values(status=InvitationStatus.EXPIRED, updated_at=_utc_now())
            )
            await session.commit()
        expired = int(result.rowcount or 0)
        if expired:
            logger.info("invitations_expired", count=expired)
        return expired

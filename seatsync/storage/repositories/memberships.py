"""Organization membership repository (PostgreSQL-backed)."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import func, update
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from seatsync.models.database import OrganizationMembership, User, _utc_now
from seatsync.types import MembershipStatus

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


class DatabaseMembershipRepository:
    """Membership rows and their lifecycle status."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def get(self, org_id: str, user_id: str) -> OrganizationMembership | None:
        async with AsyncSession(self._engine) as session:
            stmt = select(OrganizationMembership).where(
                col(OrganizationMembership.org_id) == org_id,
                col(OrganizationMembership.user_id) == user_id,
            )
            result = await session.execute(stmt)
            return result.scalars().first()

    async def add(self, membership: OrganizationMembership) -> OrganizationMembership:
        async with AsyncSession(self._engine) as session:
            session.add(membership)
            await session.commit()
            await session.refresh(membership)
        logger.info(
            "membership_created",
            org_id=membership.org_id,
            user_id=membership.user_id,
            role=membership.role,
        )
        return membership

    async def transition(
        self,
        org_id: str,
        user_id: str,
        from_status: MembershipStatus,
        to_status: MembershipStatus,
        removal_effective_date: datetime | None = None,
    ) -> bool:
        """Compare-and-set the status of one membership.

        Returns False when the row was not in ``from_status`` at write time.
        """
        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                update(OrganizationMembership)
                .where(
                    col(OrganizationMembership.org_id) == org_id,
                    col(OrganizationMembership.user_id) == user_id,
                    col(OrganizationMembership.status) == from_status,
                )
                .values(
                    status=to_status,
                    removal_effective_date=removal_effective_date,
                    updated_at=_utc_now(),
                )
            )
            await session.commit()
        return bool(result.rowcount)

    async def archive_due(self, org_id: str, cutoff: datetime) -> int:
        """Archive pending removals whose effective date is on or before ``cutoff``."""
        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                update(OrganizationMembership)
                .where(
                    col(OrganizationMembership.org_id) == org_id,
                    col(OrganizationMembership.status) == MembershipStatus.PENDING_REMOVAL,
                    col(OrganizationMembership.removal_effective_date) <= cutoff,
                )
                .values(status=MembershipStatus.ARCHIVED, updated_at=_utc_now())
            )
            await session.commit()
        return int(result.rowcount or 0)

    async def member_emails(self, org_id: str, emails: list[str]) -> list[str]:
        """Return which of ``emails`` already belong to non-archived members."""
        if not emails:
            return []
        async with AsyncSession(self._engine) as session:
            stmt = (
                select(User.email)
                .join(OrganizationMembership, col(OrganizationMembership.user_id) == User.id)
                .where(
                    col(OrganizationMembership.org_id) == org_id,
                    col(OrganizationMembership.status) != MembershipStatus.ARCHIVED,
                    func.lower(User.email).in_(emails),
                )
            )
            result = await session.execute(stmt)
            return sorted({email.lower() for email in result.scalars().all()})

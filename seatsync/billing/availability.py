"""Seat availability calculation and atomic seat reservation."""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, assert_never

import structlog
from sqlalchemy import func
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from seatsync.billing.seats import SeatAvailability, compute_entitlement
from seatsync.config.settings import FREE_SEATS
from seatsync.exceptions import (
    InvalidStateForReactivation,
    MembershipNotFound,
    NoAvailableSeats,
    OrganizationNotFound,
)
from seatsync.models.database import (
    Invitation,
    Organization,
    OrganizationMembership,
    Subscription,
    _utc_now,
)
from seatsync.types import (
    LIVE_SUBSCRIPTION_STATUSES,
    InvitationStatus,
    MembershipStatus,
    ReservationKind,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


class SeatAvailabilityCalculator:
    """Occupancy versus entitlement for an organization.

    ``compute`` is read-only. ``reserve`` re-checks availability and writes
    the reservation in one transaction that holds the organization row lock,
    and is serialized per organization within this process as well.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        free_seats: int = FREE_SEATS,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._engine = engine
        self._free_seats = free_seats
        self._clock = clock
        # Held weakly: a lock lives only while a reservation holds or awaits it
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    async def compute(self, org_id: str) -> SeatAvailability:
        async with AsyncSession(self._engine) as session:
            return await self._snapshot(session, org_id)

    async def require(self, org_id: str, seats_required: int = 1) -> SeatAvailability:
        """Raise NoAvailableSeats unless ``seats_required`` seats are free right now."""
        availability = await self.compute(org_id)
        _check(availability, seats_required)
        return availability

    async def reserve(
        self,
        org_id: str,
        kind: ReservationKind,
        *,
        invitations: list[Invitation] | None = None,
        user_id: str | None = None,
    ) -> list[Invitation] | OrganizationMembership:
        """Atomically check availability and take the seats.

        ``invitation`` inserts the given pending invitations; ``reactivation``
        flips the archived membership of ``user_id`` back to active.
        """
        async with self._lock_for(org_id), AsyncSession(self._engine) as session:
            availability = await self._snapshot(session, org_id, for_update=True)
            match kind:
                case ReservationKind.INVITATION:
                    return await self._reserve_invitations(
                        session, availability, invitations or []
                    )
                case ReservationKind.REACTIVATION:
                    if user_id is None:
                        msg = "user_id is required for a reactivation reservation"
                        raise ValueError(msg)
                    return await self._reserve_reactivation(session, availability, user_id)
                case _:
                    assert_never(kind)

    async def _reserve_invitations(
        self,
        session: AsyncSession,
        availability: SeatAvailability,
        invitations: list[Invitation],
    ) -> list[Invitation]:
        _check(availability, len(invitations))
        session.add_all(invitations)
        await session.commit()
        for invitation in invitations:
            await session.refresh(invitation)
        logger.info(
            "seats_reserved",
            org_id=availability.org_id,
            kind=ReservationKind.INVITATION,
            seats=len(invitations),
            available_before=availability.available_seats,
        )
        return invitations

    async def _reserve_reactivation(
        self, session: AsyncSession, availability: SeatAvailability, user_id: str
    ) -> OrganizationMembership:
        stmt = select(OrganizationMembership).where(
            col(OrganizationMembership.org_id) == availability.org_id,
            col(OrganizationMembership.user_id) == user_id,
        )
        result = await session.execute(stmt)
        membership = result.scalars().first()
        if membership is None:
            raise MembershipNotFound(user_id=user_id, org_id=availability.org_id)
        if membership.status != MembershipStatus.ARCHIVED:
            raise InvalidStateForReactivation(
                user_id=user_id,
                current_status=membership.status,
                expected_status=MembershipStatus.ARCHIVED,
            )
        _check(availability, 1)

        membership.status = MembershipStatus.ACTIVE
        membership.removal_effective_date = None
        membership.updated_at = self._clock()
        session.add(membership)
        await session.commit()
        await session.refresh(membership)
        logger.info(
            "seats_reserved",
            org_id=availability.org_id,
            kind=ReservationKind.REACTIVATION,
            user_id=user_id,
            available_before=availability.available_seats,
        )
        return membership

    async def _snapshot(
        self, session: AsyncSession, org_id: str, for_update: bool = False
    ) -> SeatAvailability:
        now = self._clock()

        org_stmt = select(Organization).where(col(Organization.id) == org_id)
        if for_update:
            org_stmt = org_stmt.with_for_update()
        org = (await session.execute(org_stmt)).scalars().first()
        if org is None:
            raise OrganizationNotFound(org_id)

        status_stmt = (
            select(OrganizationMembership.status, func.count())
            .where(col(OrganizationMembership.org_id) == org_id)
            .group_by(OrganizationMembership.status)
        )
        by_status = {status: count for status, count in (await session.execute(status_stmt)).all()}

        invite_stmt = (
            select(func.count())
            .select_from(Invitation)
            .where(
                col(Invitation.org_id) == org_id,
                col(Invitation.status) == InvitationStatus.PENDING,
                col(Invitation.expires_at) > now,
            )
        )
        pending_invitations = int((await session.execute(invite_stmt)).scalar_one())

        sub_stmt = (
            select(Subscription.current_seats)
            .where(
                col(Subscription.org_id) == org_id,
                col(Subscription.status).in_(LIVE_SUBSCRIPTION_STATUSES),
            )
            .order_by(col(Subscription.created_at).desc())
            .limit(1)
        )
        current_seats = (await session.execute(sub_stmt)).scalars().first() or 0

        return SeatAvailability(
            org_id=org_id,
            active_members=int(by_status.get(MembershipStatus.ACTIVE, 0)),
            pending_removal_members=int(by_status.get(MembershipStatus.PENDING_REMOVAL, 0)),
            archived_members=int(by_status.get(MembershipStatus.ARCHIVED, 0)),
            pending_invitations=pending_invitations,
            entitlement=compute_entitlement(
                current_seats=current_seats,
                override_seats=org.billing_override_seats,
                override_expires_at=org.billing_override_expires_at,
                now=now,
                free_seats=self._free_seats,
            ),
        )

    def _lock_for(self, org_id: str) -> asyncio.Lock:
        lock = self._locks.get(org_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[org_id] = lock
        return lock


def _check(availability: SeatAvailability, seats_required: int) -> None:
    if availability.fits(seats_required):
        return
    logger.warning(
        "seat_reservation_rejected",
        org_id=availability.org_id,
        seats_required=seats_required,
        seats_available=availability.available_seats,
        total_seats=availability.total_seats,
    )
    raise NoAvailableSeats(
        seats_available=availability.available_seats,
        seats_required=seats_required,
        total_seats=availability.total_seats,
    )

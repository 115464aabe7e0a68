"""Membership lifecycle: grace-period removal, reactivation and archival."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from seatsync.exceptions import (
    InvalidStateForReactivation,
    InvalidStateForRemoval,
    MembershipNotFound,
    MissingRenewalDate,
    NotAdmin,
    SelfRemovalForbidden,
    SubscriptionNotFound,
)
from seatsync.models.api import MembershipResult
from seatsync.types import MembershipStatus, ReservationKind, Role

if TYPE_CHECKING:
    from datetime import datetime

    from seatsync.billing.availability import SeatAvailabilityCalculator
    from seatsync.models.database import OrganizationMembership
    from seatsync.storage.repositories.memberships import DatabaseMembershipRepository
    from seatsync.storage.repositories.subscriptions import DatabaseSubscriptionRepository

logger = structlog.get_logger(__name__)


class MembershipLifecycle:
    """Admin-driven membership transitions.

    active -> pending_removal -> archived, with reactivation from either of the
    latter two. Archival only happens through ``archive_due_removals`` at
    renewal time. None of these transitions call the billing provider.
    """

    def __init__(
        self,
        memberships: DatabaseMembershipRepository,
        subscriptions: DatabaseSubscriptionRepository,
        availability: SeatAvailabilityCalculator,
    ) -> None:
        self._memberships = memberships
        self._subscriptions = subscriptions
        self._availability = availability

    async def remove_user(self, user_id: str, org_id: str, requester_id: str) -> MembershipResult:
        """Schedule removal at the next renewal. The user keeps access and a seat until then."""
        if user_id == requester_id:
            raise SelfRemovalForbidden(user_id)
        await self._require_admin(requester_id, org_id, "remove users")

        subscription = await self._subscriptions.get_live_for_org(org_id)
        if subscription is None:
            raise SubscriptionNotFound(org_id=org_id)
        if subscription.renews_at is None:
            raise MissingRenewalDate(subscription.id)

        target = await self._get_target(user_id, org_id)
        if target.status != MembershipStatus.ACTIVE:
            raise InvalidStateForRemoval(user_id, target.status)

        moved = await self._memberships.transition(
            org_id,
            user_id,
            MembershipStatus.ACTIVE,
            MembershipStatus.PENDING_REMOVAL,
            removal_effective_date=subscription.renews_at,
        )
        if not moved:
            current = await self._get_target(user_id, org_id)
            raise InvalidStateForRemoval(user_id, current.status)

        logger.info(
            "user_marked_for_removal",
            org_id=org_id,
            user_id=user_id,
            requester_id=requester_id,
            removal_effective_date=subscription.renews_at.isoformat(),
        )
        return MembershipResult(
            org_id=org_id,
            user_id=user_id,
            status=MembershipStatus.PENDING_REMOVAL,
            removal_effective_date=subscription.renews_at,
        )

    async def reactivate_user(
        self, user_id: str, org_id: str, requester_id: str
    ) -> MembershipResult:
        """Cancel a pending removal. No seat check; the user never stopped occupying one."""
        await self._require_admin(requester_id, org_id, "reactivate users")
        target = await self._get_target(user_id, org_id)
        if target.status != MembershipStatus.PENDING_REMOVAL:
            raise InvalidStateForReactivation(
                user_id, target.status, MembershipStatus.PENDING_REMOVAL
            )

        moved = await self._memberships.transition(
            org_id, user_id, MembershipStatus.PENDING_REMOVAL, MembershipStatus.ACTIVE
        )
        if not moved:
            current = await self._get_target(user_id, org_id)
            raise InvalidStateForReactivation(
                user_id, current.status, MembershipStatus.PENDING_REMOVAL
            )

        logger.info("user_reactivated", org_id=org_id, user_id=user_id, requester_id=requester_id)
        return MembershipResult(org_id=org_id, user_id=user_id, status=MembershipStatus.ACTIVE)

    async def reactivate_archived_user(
        self, user_id: str, org_id: str, requester_id: str
    ) -> MembershipResult:
        """Bring an archived user back, consuming one seat.

        Paid seats are left unchanged; raising them is a separate billing action.
        """
        await self._require_admin(requester_id, org_id, "reactivate users")
        await self._availability.reserve(org_id, ReservationKind.REACTIVATION, user_id=user_id)
        logger.info(
            "archived_user_reactivated",
            org_id=org_id,
            user_id=user_id,
            requester_id=requester_id,
        )
        return MembershipResult(org_id=org_id, user_id=user_id, status=MembershipStatus.ACTIVE)

    async def reactivate(self, user_id: str, org_id: str, requester_id: str) -> MembershipResult:
        """Reactivate by whichever path the user's current status calls for."""
        await self._require_admin(requester_id, org_id, "reactivate users")
        target = await self._get_target(user_id, org_id)
        if target.status == MembershipStatus.ARCHIVED:
            return await self.reactivate_archived_user(user_id, org_id, requester_id)
        return await self.reactivate_user(user_id, org_id, requester_id)

    async def archive_due_removals(self, org_id: str, cutoff: datetime) -> int:
        archived = await self._memberships.archive_due(org_id, cutoff)
        if archived:
            logger.info(
                "pending_removals_archived",
                org_id=org_id,
                count=archived,
                cutoff=cutoff.isoformat(),
            )
        return archived

    async def _require_admin(self, requester_id: str, org_id: str, action: str) -> None:
        await require_admin(self._memberships, org_id, requester_id, action)

    async def _get_target(self, user_id: str, org_id: str) -> OrganizationMembership:
        membership = await self._memberships.get(org_id, user_id)
        if membership is None:
            raise MembershipNotFound(user_id=user_id, org_id=org_id)
        return membership


async def require_admin(
    memberships: DatabaseMembershipRepository, org_id: str, requester_id: str, action: str
) -> OrganizationMembership:
    """Raise NotAdmin unless the requester is a seated admin of the organization."""
    requester = await memberships.get(org_id, requester_id)
    if (
        requester is None
        or requester.role != Role.ADMIN
        or requester.status not in (MembershipStatus.ACTIVE, MembershipStatus.PENDING_REMOVAL)
    ):
        logger.warning("admin_required", org_id=org_id, requester_id=requester_id, action=action)
        raise NotAdmin(requester_id, org_id, action)
    return requester

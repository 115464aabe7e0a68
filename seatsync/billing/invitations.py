"""Invitation admission: bulk invites gated by seat availability."""

from __future__ import annotations

import secrets
from collections import Counter
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from seatsync.billing.lifecycle import require_admin
from seatsync.exceptions import (
    AlreadyInvited,
    AlreadyMember,
    DuplicateEmails,
    InvalidInvitationState,
    InvitationNotFound,
    RateLimitExceeded,
)
from seatsync.models.database import Invitation, OrganizationMembership, _utc_now
from seatsync.types import InvitationStatus, MembershipStatus, ReservationKind

if TYPE_CHECKING:
    from seatsync.billing.availability import SeatAvailabilityCalculator
    from seatsync.billing.rate_limit import RateLimiterBase
    from seatsync.models.api import InvitationItem
    from seatsync.storage.repositories.invitations import DatabaseInvitationRepository
    from seatsync.storage.repositories.memberships import DatabaseMembershipRepository
    from seatsync.storage.repositories.users import DatabaseUserRepository

logger = structlog.get_logger(__name__)


class InvitationService:
    def __init__(
        self,
        memberships: DatabaseMembershipRepository,
        invitations: DatabaseInvitationRepository,
        users: DatabaseUserRepository,
        availability: SeatAvailabilityCalculator,
        rate_limiter: RateLimiterBase,
        ttl_days: int = 7,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._memberships = memberships
        self._invitations = invitations
        self._users = users
        self._availability = availability
        self._rate_limiter = rate_limiter
        self._ttl = timedelta(days=ttl_days)
        self._clock = clock

    async def create_invitations(
        self, org_id: str, requester_id: str, items: list[InvitationItem]
    ) -> list[Invitation]:
        """Invite a batch of users, all or nothing.

        Every invitation occupies a seat until accepted, cancelled or expired,
        so the whole batch must fit in the organization's available seats.
        """
        key = f"invitations:{org_id}"
        if not await self._rate_limiter.hit(key):
            raise RateLimitExceeded(key, retry_after=self._rate_limiter.window_seconds)
        await require_admin(self._memberships, org_id, requester_id, "invite users")

        emails = [item.email.lower() for item in items]
        duplicates = sorted(email for email, n in Counter(emails).items() if n > 1)
        if duplicates:
            raise DuplicateEmails(duplicates)

        members = await self._memberships.member_emails(org_id, emails)
        if members:
            raise AlreadyMember(members)

        now = self._clock()
        pending = await self._invitations.pending_emails(org_id, emails, now)
        if pending:
            raise AlreadyInvited(pending)

        rows = [
            Invitation(
                org_id=org_id,
                email=item.email.lower(),
                role=item.role,
                status=InvitationStatus.PENDING,
                token=secrets.token_urlsafe(32),
                invited_by=requester_id,
                expires_at=now + self._ttl,
            )
            for item in items
        ]
        await self._availability.reserve(org_id, ReservationKind.INVITATION, invitations=rows)
        logger.info(
            "invitations_created",
            org_id=org_id,
            requester_id=requester_id,
            count=len(rows),
        )
        return rows

    async def accept_invitation(
        self, token: str, user_id: str, email: str
    ) -> OrganizationMembership:
        """Turn a pending invitation into an active membership.

        The seat held by the invitation passes to the membership, so no
        availability check is needed.
        """
        invitation = await self._invitations.get_by_token(token)
        if invitation is None or invitation.email != email.lower():
            raise InvitationNotFound()
        if invitation.status != InvitationStatus.PENDING:
            raise InvalidInvitationState(invitation.id, invitation.status)
        if invitation.expires_at <= self._clock():
            await self._invitations.transition(
                invitation.id, InvitationStatus.PENDING, InvitationStatus.EXPIRED
            )
            raise InvalidInvitationState(invitation.id, InvitationStatus.EXPIRED)

        claimed = await self._invitations.transition(
            invitation.id, InvitationStatus.PENDING, InvitationStatus.ACCEPTED
        )
        if not claimed:
            raise InvalidInvitationState(invitation.id, "no longer pending")

        await self._users.ensure(user_id, email)
        existing = await self._memberships.get(invitation.org_id, user_id)
        if existing is None:
            membership = await self._memberships.add(
                OrganizationMembership(
                    org_id=invitation.org_id,
                    user_id=user_id,
                    role=invitation.role,
                    status=MembershipStatus.ACTIVE,
                )
            )
        elif existing.status == MembershipStatus.ARCHIVED:
            await self._memberships.transition(
                invitation.org_id, user_id, MembershipStatus.ARCHIVED, MembershipStatus.ACTIVE
            )
            membership = await self._memberships.get(invitation.org_id, user_id) or existing
        else:
            membership = existing

        logger.info(
            "invitation_accepted",
            org_id=invitation.org_id,
            invitation_id=invitation.id,
            user_id=user_id,
        )
        return membership

    async def cancel_invitation(self, invitation_id: str, org_id: str, requester_id: str) -> None:
        await require_admin(self._memberships, org_id, requester_id, "cancel invitations")
        invitation = await self._invitations.get(invitation_id, org_id)
        if invitation is None:
            raise InvitationNotFound(invitation_id=invitation_id, org_id=org_id)
        cancelled = await self._invitations.transition(
            invitation_id, InvitationStatus.PENDING, InvitationStatus.CANCELLED
        )
        if not cancelled:
            raise InvalidInvitationState(invitation_id, invitation.status)
        logger.info("invitation_cancelled", org_id=org_id, invitation_id=invitation_id)

    async def expire_invitations(self) -> int:
        """Mark every overdue pending invitation as expired."""
        return await self._invitations.expire_overdue(self._clock())

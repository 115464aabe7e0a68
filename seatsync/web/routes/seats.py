"""Seat availability and invitation routes."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends

from seatsync.billing.availability import SeatAvailabilityCalculator
from seatsync.billing.invitations import InvitationService
from seatsync.models.api import (
    InvitationAcceptRequest,
    InvitationCreateRequest,
    InvitationResponse,
    MembershipResult,
    SeatInfoResponse,
)
from seatsync.web.auth import AuthenticatedUser, get_current_user
from seatsync.web.dependencies import (
    get_availability,
    get_invitation_service,
    require_org_member,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["seats"])


@router.get("/organizations/{org_id}/seat-info")
async def get_seat_info(
    org_id: str,
    _user: AuthenticatedUser = Depends(require_org_member),
    availability: SeatAvailabilityCalculator = Depends(get_availability),
) -> SeatInfoResponse:
    seats = await availability.compute(org_id)
    return SeatInfoResponse(
        org_id=org_id,
        active_seats=seats.active_seats,
        active_members=seats.active_members,
        pending_removal_members=seats.pending_removal_members,
        archived_members=seats.archived_members,
        pending_invitations=seats.pending_invitations,
        total_occupied=seats.total_occupied,
        free_seats=seats.entitlement.free_seats,
        paid_seats=seats.entitlement.paid_seats,
        total_seats=seats.total_seats,
        available_seats=seats.available_seats,
        override_active=seats.entitlement.override_active,
    )


@router.post("/organizations/{org_id}/invitations", status_code=201)
async def create_invitations(
    org_id: str,
    body: InvitationCreateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    service: InvitationService = Depends(get_invitation_service),
) -> list[InvitationResponse]:
    invitations = await service.create_invitations(org_id, user.id, body.invitations)
    return [
        InvitationResponse(
            id=inv.id,
            org_id=inv.org_id,
            email=inv.email,
            role=inv.role,
            status=inv.status,
            expires_at=inv.expires_at,
        )
        for inv in invitations
    ]


@router.post("/organizations/{org_id}/invitations/{invitation_id}/cancel", status_code=204)
async def cancel_invitation(
    org_id: str,
    invitation_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    service: InvitationService = Depends(get_invitation_service),
) -> None:
    await service.cancel_invitation(invitation_id, org_id, user.id)


@router.post("/invitations/accept")
async def accept_invitation(
    body: InvitationAcceptRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    service: InvitationService = Depends(get_invitation_service),
) -> MembershipResult:
    membership = await service.accept_invitation(body.token, user.id, user.email)
    return MembershipResult(
        org_id=membership.org_id,
        user_id=membership.user_id,
        status=membership.status,
    )

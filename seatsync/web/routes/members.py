"""Membership removal and reactivation routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from seatsync.billing.lifecycle import MembershipLifecycle
from seatsync.models.api import MembershipResult
from seatsync.web.auth import AuthenticatedUser, get_current_user
from seatsync.web.dependencies import get_lifecycle

router = APIRouter(prefix="/api/organizations/{org_id}/members", tags=["members"])


@router.post("/{user_id}/remove")
async def remove_member(
    org_id: str,
    user_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    lifecycle: MembershipLifecycle = Depends(get_lifecycle),
) -> MembershipResult:
    """Schedule removal at the next renewal date."""
    return await lifecycle.remove_user(user_id, org_id, requester_id=user.id)


@router.post("/{user_id}/reactivate")
async def reactivate_member(
    org_id: str,
    user_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    lifecycle: MembershipLifecycle = Depends(get_lifecycle),
) -> MembershipResult:
    """Reactivate a pending-removal or archived member."""
    return await lifecycle.reactivate(user_id, org_id, requester_id=user.id)

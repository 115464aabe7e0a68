"""Paid seat changes and proration previews."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query

from seatsync.billing.seat_manager import SeatManager
from seatsync.exceptions import SubscriptionNotFound
from seatsync.models.api import ProrationPreview, SeatChangeRequest, SeatChangeResult
from seatsync.models.database import Subscription
from seatsync.storage.repositories.subscriptions import DatabaseSubscriptionRepository
from seatsync.web.auth import AuthenticatedUser
from seatsync.web.dependencies import (
    get_seat_manager,
    get_subscription_repo,
    require_org_admin,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/organizations/{org_id}/seats", tags=["billing"])


async def _live_subscription(
    org_id: str, subscriptions: DatabaseSubscriptionRepository
) -> Subscription:
    subscription = await subscriptions.get_live_for_org(org_id)
    if subscription is None:
        raise SubscriptionNotFound(org_id=org_id)
    return subscription


@router.post("")
async def change_seats(
    org_id: str,
    body: SeatChangeRequest,
    user: AuthenticatedUser = Depends(require_org_admin),
    subscriptions: DatabaseSubscriptionRepository = Depends(get_subscription_repo),
    manager: SeatManager = Depends(get_seat_manager),
) -> SeatChangeResult:
    subscription = await _live_subscription(org_id, subscriptions)
    result = await manager.change_seats(subscription.id, body.new_quantity)
    logger.info(
        "seats_changed",
        org_id=org_id,
        requester_id=user.id,
        billing_type=result.billing_type,
        previous_seats=result.previous_seats,
        current_seats=result.current_seats,
        provider_synced=result.provider_synced,
    )
    return result


@router.get("/proration")
async def preview_proration(
    org_id: str,
    new_quantity: int = Query(ge=0),
    _user: AuthenticatedUser = Depends(require_org_admin),
    subscriptions: DatabaseSubscriptionRepository = Depends(get_subscription_repo),
    manager: SeatManager = Depends(get_seat_manager),
) -> ProrationPreview:
    subscription = await _live_subscription(org_id, subscriptions)
    return await manager.calculate_proration(subscription.id, new_quantity)

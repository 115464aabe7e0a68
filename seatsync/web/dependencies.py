"""FastAPI dependency injection for services and repositories."""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncEngine

from seatsync.billing.availability import SeatAvailabilityCalculator
from seatsync.billing.invitations import InvitationService
from seatsync.billing.lemonsqueezy import LemonSqueezyProvider
from seatsync.billing.lifecycle import MembershipLifecycle, require_admin
from seatsync.billing.provider import BillingProviderBase
from seatsync.billing.reconciliation import SubscriptionReconciler
from seatsync.billing.rate_limit import DatabaseRateLimiter
from seatsync.billing.seat_manager import SeatManager
from seatsync.billing.webhooks import WebhookReconciler
from seatsync.config.settings import get_settings
from seatsync.storage.database import get_engine
from seatsync.storage.repositories.billing_events import DatabaseBillingEventRepository
from seatsync.storage.repositories.invitations import DatabaseInvitationRepository
from seatsync.storage.repositories.memberships import DatabaseMembershipRepository
from seatsync.storage.repositories.organizations import DatabaseOrganizationRepository
from seatsync.storage.repositories.subscriptions import DatabaseSubscriptionRepository
from seatsync.storage.repositories.users import DatabaseUserRepository
from seatsync.types import SEATED_MEMBERSHIP_STATUSES
from seatsync.web.auth import AuthenticatedUser, get_current_user


def get_db_engine() -> AsyncEngine:
    return get_engine()


@lru_cache
def get_billing_provider() -> BillingProviderBase:
    settings = get_settings()
    return LemonSqueezyProvider(
        api_key=settings.lemonsqueezy_api_key,
        base_url=settings.lemonsqueezy_api_url,
        timeout=settings.provider_timeout_seconds,
    )


@lru_cache
def _calculator_for(engine: AsyncEngine) -> SeatAvailabilityCalculator:
    # One calculator per engine so the per-organization reservation locks are shared
    return SeatAvailabilityCalculator(engine, free_seats=get_settings().free_seats)


def get_availability(
    engine: AsyncEngine = Depends(get_db_engine),
) -> SeatAvailabilityCalculator:
    return _calculator_for(engine)


def get_lifecycle(
    engine: AsyncEngine = Depends(get_db_engine),
    availability: SeatAvailabilityCalculator = Depends(get_availability),
) -> MembershipLifecycle:
    return MembershipLifecycle(
        DatabaseMembershipRepository(engine),
        DatabaseSubscriptionRepository(engine),
        availability,
    )


def get_seat_manager(
    engine: AsyncEngine = Depends(get_db_engine),
    provider: BillingProviderBase = Depends(get_billing_provider),
) -> SeatManager:
    return SeatManager(
        DatabaseSubscriptionRepository(engine),
        provider,
        yearly_price_per_seat=get_settings().yearly_price_per_seat,
    )


def get_invitation_service(
    engine: AsyncEngine = Depends(get_db_engine),
    availability: SeatAvailabilityCalculator = Depends(get_availability),
) -> InvitationService:
    settings = get_settings()
    return InvitationService(
        DatabaseMembershipRepository(engine),
        DatabaseInvitationRepository(engine),
        DatabaseUserRepository(engine),
        availability,
        DatabaseRateLimiter(
            engine,
            max_requests=settings.invite_rate_limit_requests,
            window_seconds=settings.invite_rate_limit_window_seconds,
        ),
        ttl_days=settings.invitation_ttl_days,
    )


def get_webhook_reconciler(
    engine: AsyncEngine = Depends(get_db_engine),
    provider: BillingProviderBase = Depends(get_billing_provider),
    lifecycle: MembershipLifecycle = Depends(get_lifecycle),
) -> WebhookReconciler:
    settings = get_settings()
    return WebhookReconciler(
        DatabaseSubscriptionRepository(engine),
        DatabaseOrganizationRepository(engine),
        DatabaseBillingEventRepository(engine, lease_seconds=settings.webhook_claim_lease_seconds),
        lifecycle,
        provider,
        monthly_variant_id=settings.lemonsqueezy_monthly_variant_id,
        yearly_variant_id=settings.lemonsqueezy_yearly_variant_id,
        free_seats=settings.free_seats,
    )


def get_subscription_reconciler(
    engine: AsyncEngine = Depends(get_db_engine),
    provider: BillingProviderBase = Depends(get_billing_provider),
) -> SubscriptionReconciler:
    return SubscriptionReconciler(
        DatabaseSubscriptionRepository(engine),
        provider,
        request_delay_seconds=get_settings().reconcile_request_delay_seconds,
    )


def get_subscription_repo(
    engine: AsyncEngine = Depends(get_db_engine),
) -> DatabaseSubscriptionRepository:
    return DatabaseSubscriptionRepository(engine)


async def require_org_member(
    org_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: AsyncEngine = Depends(get_db_engine),
) -> AuthenticatedUser:
    """Require the caller to hold a seat in the organization in the path."""
    membership = await DatabaseMembershipRepository(engine).get(org_id, user.id)
    if membership is None or membership.status not in SEATED_MEMBERSHIP_STATUSES:
        raise HTTPException(status_code=403, detail="Not a member of this organization")
    return user


async def require_org_admin(
    org_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    engine: AsyncEngine = Depends(get_db_engine),
) -> AuthenticatedUser:
    """Require the caller to be an admin of the organization in the path."""
    await require_admin(DatabaseMembershipRepository(engine), org_id, user.id, "manage seats")
    return user

"""Subscription repository (PostgreSQL-backed seat ledger)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import update
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from seatsync.models.database import Subscription, _utc_now
from seatsync.types import LIVE_SUBSCRIPTION_STATUSES

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)

# Columns webhook reconciliation may overwrite; billing_type is deliberately absent
_SYNCABLE_FIELDS = frozenset(
    {
        "billing_period",
        "status",
        "current_seats",
        "quantity",
        "provider_subscription_item_id",
        "provider_customer_id",
        "provider_product_id",
        "provider_variant_id",
        "renews_at",
        "ends_at",
        "trial_ends_at",
    }
)


class DatabaseSubscriptionRepository:
    """Reads and writes subscription rows."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def get_by_id(self, subscription_id: str) -> Subscription | None:
        async with AsyncSession(self._engine) as session:
            stmt = select(Subscription).where(col(Subscription.id) == subscription_id)
            result = await session.execute(stmt)
            return result.scalars().first()

    async def get_by_provider_id(self, provider_subscription_id: str) -> Subscription | None:
        async with AsyncSession(self._engine) as session:
            stmt = select(Subscription).where(
                col(Subscription.provider_subscription_id) == provider_subscription_id
            )
            result = await session.execute(stmt)
            return result.scalars().first()

    async def get_live_for_org(self, org_id: str) -> Subscription | None:
        """Return the organization's active or on-trial subscription, if any."""
        async with AsyncSession(self._engine) as session:
            stmt = (
                select(Subscription)
                .where(
                    col(Subscription.org_id) == org_id,
                    col(Subscription.status).in_(LIVE_SUBSCRIPTION_STATUSES),
                )
                .order_by(col(Subscription.created_at).desc())
                .limit(1)
            )
            result = await session.execute(stmt)
            return result.scalars().first()

    async def list_live(self) -> list[Subscription]:
        """All active or on-trial subscriptions linked to a provider subscription."""
        async with AsyncSession(self._engine) as session:
            stmt = (
                select(Subscription)
                .where(
                    col(Subscription.status).in_(LIVE_SUBSCRIPTION_STATUSES),
                    col(Subscription.provider_subscription_id).is_not(None),
                )
                .order_by(col(Subscription.created_at), col(Subscription.provider_subscription_id))
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def create(self, subscription: Subscription) -> Subscription:
        async with AsyncSession(self._engine) as session:
            session.add(subscription)
            await session.commit()
            await session.refresh(subscription)
        logger.info(
            "subscription_created",
            subscription_id=subscription.id,
            org_id=subscription.org_id,
            billing_type=subscription.billing_type,
        )
        return subscription

    async def sync(self, subscription_id: str, **fields: Any) -> Subscription | None:
        """Apply provider-sourced fields to an existing row.

        Unknown keys and ``billing_type`` are ignored so the billing type stays
        fixed for the lifetime of the subscription.
        """
        changes = {k: v for k, v in fields.items() if k in _SYNCABLE_FIELDS}
        async with AsyncSession(self._engine) as session:
            subscription = await session.get(Subscription, subscription_id)
            if subscription is None:
                return None
            for key, value in changes.items():
                setattr(subscription, key, value)
            subscription.updated_at = _utc_now()
            session.add(subscription)
            await session.commit()
            await session.refresh(subscription)
        logger.debug("subscription_synced", subscription_id=subscription_id, fields=sorted(changes))
        return subscription

    async def set_current_seats(self, subscription_id: str, current_seats: int) -> None:
        async with AsyncSession(self._engine) as session:
            await session.execute(
                update(Subscription)
                .where(col(Subscription.id) == subscription_id)
                .values(current_seats=current_seats, updated_at=_utc_now())
            )
            await session.commit()
        logger.info(
            "subscription_seats_updated",
            subscription_id=subscription_id,
            current_seats=current_seats,
        )

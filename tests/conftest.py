"""Shared test fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel, col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from seatsync.billing.provider import (
    BillingProviderBase,
    ProviderSubscription,
    SubscriptionItem,
    UsageRecord,
)
from seatsync.models.database import (
    Invitation,
    Organization,
    OrganizationMembership,
    Subscription,
    User,
)
from seatsync.storage.database import init_db
from seatsync.types import (
    BillingType,
    InvitationStatus,
    MembershipStatus,
    Role,
    SubscriptionStatus,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

NOW = datetime(2026, 3, 1, 12, 0, 0)
RENEWS_AT = NOW + timedelta(days=100)


def fixed_clock() -> datetime:
    return NOW


class FakeBillingProvider(BillingProviderBase):
    """Records every provider call; ``failures`` maps a method name to the error it raises."""

    def __init__(self, renews_at: datetime | None = RENEWS_AT) -> None:
        self.renews_at = renews_at
        self.usage_records: list[tuple[str, int]] = []
        self.item_updates: list[tuple[str, int, bool]] = []
        self.fetched: list[str] = []
        self.cancelled: list[str] = []
        self.failures: dict[str, Exception] = {}
        # Provider-side subscription state by provider id, or the error fetching it raises
        self.remote: dict[str, ProviderSubscription | Exception] = {}

    def _maybe_fail(self, method: str) -> None:
        if method in self.failures:
            raise self.failures[method]

    async def create_usage_record(self, subscription_item_id: str, quantity: int) -> UsageRecord:
        self._maybe_fail("create_usage_record")
        self.usage_records.append((subscription_item_id, quantity))
        return UsageRecord(id=f"ur-{len(self.usage_records)}", quantity=quantity)

    async def update_subscription_item(
        self, subscription_item_id: str, quantity: int, invoice_immediately: bool = True
    ) -> SubscriptionItem:
        self._maybe_fail("update_subscription_item")
        self.item_updates.append((subscription_item_id, quantity, invoice_immediately))
        return SubscriptionItem(id=subscription_item_id, quantity=quantity)

    async def get_subscription(self, subscription_id: str) -> ProviderSubscription:
        self._maybe_fail("get_subscription")
        self.fetched.append(subscription_id)
        remote = self.remote.get(subscription_id)
        if isinstance(remote, Exception):
            raise remote
        if remote is not None:
            return remote
        return ProviderSubscription(id=subscription_id, status="active", renews_at=self.renews_at)

    async def cancel_subscription(self, subscription_id: str) -> None:
        self._maybe_fail("cancel_subscription")
        self.cancelled.append(subscription_id)


class Seeder:
    """Inserts fixture rows directly, bypassing the services under test."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def _add(self, *rows: SQLModel) -> None:
        async with AsyncSession(self._engine) as session:
            session.add_all(rows)
            await session.commit()
            for row in rows:
                await session.refresh(row)

    async def org(
        self,
        org_id: str = "org-1",
        override_seats: int | None = None,
        override_expires_at: datetime | None = None,
    ) -> str:
        await self._add(
            Organization(
                id=org_id,
                name=f"Org {org_id}",
                billing_override_seats=override_seats,
                billing_override_expires_at=override_expires_at,
            )
        )
        return org_id

    async def member(
        self,
        user_id: str,
        org_id: str = "org-1",
        role: Role = Role.EMPLOYEE,
        status: MembershipStatus = MembershipStatus.ACTIVE,
        removal_effective_date: datetime | None = None,
    ) -> str:
        await self._add(
            User(id=user_id, email=f"{user_id}@example.com"),
            OrganizationMembership(
                org_id=org_id,
                user_id=user_id,
                role=role,
                status=status,
                removal_effective_date=removal_effective_date,
            ),
        )
        return user_id

    async def members(
        self,
        count: int,
        org_id: str = "org-1",
        status: MembershipStatus = MembershipStatus.ACTIVE,
        prefix: str = "user",
    ) -> list[str]:
        return [
            await self.member(f"{prefix}-{status}-{i}", org_id=org_id, status=status)
            for i in range(count)
        ]

    async def invitation(
        self,
        email: str,
        org_id: str = "org-1",
        status: InvitationStatus = InvitationStatus.PENDING,
        expires_at: datetime = NOW + timedelta(days=7),
        token: str | None = None,
        role: Role = Role.EMPLOYEE,
    ) -> Invitation:
        invitation = Invitation(
            org_id=org_id,
            email=email,
            role=role,
            status=status,
            token=token or f"token-{email}",
            expires_at=expires_at,
        )
        await self._add(invitation)
        return invitation

    async def subscription(
        self,
        org_id: str = "org-1",
        billing_type: BillingType = BillingType.USAGE_BASED,
        current_seats: int = 0,
        quantity: int | None = None,
        item_id: str | None = "item-1",
        provider_id: str | None = "ls-sub-1",
        renews_at: datetime | None = RENEWS_AT,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    ) -> Subscription:
        subscription = Subscription(
            org_id=org_id,
            billing_type=billing_type,
            status=status,
            current_seats=current_seats,
            quantity=current_seats if quantity is None else quantity,
            provider_subscription_item_id=item_id,
            provider_subscription_id=provider_id,
            renews_at=renews_at,
        )
        await self._add(subscription)
        return subscription

    async def get_membership(self, user_id: str, org_id: str = "org-1") -> OrganizationMembership:
        async with AsyncSession(self._engine) as session:
            stmt = select(OrganizationMembership).where(
                col(OrganizationMembership.org_id) == org_id,
                col(OrganizationMembership.user_id) == user_id,
            )
            result = await session.execute(stmt)
            return result.scalars().one()

    async def get_subscription(self, subscription_id: str) -> Subscription:
        async with AsyncSession(self._engine) as session:
            subscription = await session.get(Subscription, subscription_id)
            assert subscription is not None
            return subscription


@pytest.fixture()
async def async_engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def seed(async_engine) -> Seeder:
    return Seeder(async_engine)


@pytest.fixture()
def fake_provider() -> FakeBillingProvider:
    return FakeBillingProvider()


@pytest.fixture()
def clock():
    return fixed_clock


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def renews_at() -> datetime:
    return RENEWS_AT

"""Unit tests for SeatManager routing by billing type."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

import pytest

from seatsync.billing.seat_manager import SeatManager
from seatsync.exceptions import (
    DirectionMismatch,
    InvalidSeatQuantity,
    MissingProviderSubscription,
    MissingRenewalDate,
    MissingSubscriptionItem,
    ProviderError,
    ProviderTimeout,
    SubscriptionNotFound,
    UnknownBillingType,
)
from seatsync.storage.repositories.subscriptions import DatabaseSubscriptionRepository
from seatsync.types import BillingType, ChargedAt

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


@pytest.fixture()
def manager(async_engine: AsyncEngine, fake_provider, clock) -> SeatManager:
    return SeatManager(
        DatabaseSubscriptionRepository(async_engine),
        fake_provider,
        yearly_price_per_seat=Decimal("1200"),
        clock=clock,
    )


# ---------------------------------------------------------------------------
# Usage-based
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestUsageBasedChanges:
    async def test_add_seats_posts_usage_record(self, manager, seed, fake_provider) -> None:
        await seed.org()
        sub = await seed.subscription(current_seats=5)

        result = await manager.add_seats(sub.id, 6)

        assert fake_provider.usage_records == [("item-1", 6)]
        assert fake_provider.item_updates == []
        assert result.charged_at == ChargedAt.END_OF_PERIOD
        assert result.billing_type == BillingType.USAGE_BASED
        assert result.previous_seats == 5
        assert result.current_seats == 6
        assert result.proration_amount is None
        assert result.provider_synced is True
        assert (await seed.get_subscription(sub.id)).current_seats == 6

    async def test_remove_seats_posts_usage_record(self, manager, seed, fake_provider) -> None:
        await seed.org()
        sub = await seed.subscription(current_seats=5)

        await manager.remove_seats(sub.id, 2)

        assert fake_provider.usage_records == [("item-1", 2)]
        assert fake_provider.item_updates == []
        assert (await seed.get_subscription(sub.id)).current_seats == 2

    async def test_missing_item_updates_locally_with_warning(
        self, manager, seed, fake_provider
    ) -> None:
        await seed.org()
        sub = await seed.subscription(current_seats=5, item_id=None)

        result = await manager.add_seats(sub.id, 7)

        assert fake_provider.usage_records == []
        assert result.provider_synced is False
        assert len(result.warnings) == 1
        assert "no charge will be generated" in result.warnings[0]
        assert (await seed.get_subscription(sub.id)).current_seats == 7

    async def test_provider_failure_leaves_ledger_unchanged(
        self, manager, seed, fake_provider
    ) -> None:
        await seed.org()
        sub = await seed.subscription(current_seats=5)
        fake_provider.failures["create_usage_record"] = ProviderError("rejected", 422)

        with pytest.raises(ProviderError):
            await manager.add_seats(sub.id, 6)

        assert (await seed.get_subscription(sub.id)).current_seats == 5

    async def test_proration_preview_is_zero(self, manager, seed, fake_provider) -> None:
        await seed.org()
        sub = await seed.subscription(current_seats=5)

        preview = await manager.calculate_proration(sub.id, 9)

        assert preview.proration_amount == Decimal("0.00")
        assert "end of the period" in preview.message
        assert fake_provider.fetched == []


# ---------------------------------------------------------------------------
# Quantity-based
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestQuantityBasedChanges:
    async def test_add_seats_patches_item_with_proration(
        self, manager, seed, fake_provider
    ) -> None:
        await seed.org()
        sub = await seed.subscription(billing_type=BillingType.QUANTITY_BASED, current_seats=5)

        result = await manager.add_seats(sub.id, 7)

        assert fake_provider.item_updates == [("item-1", 7, True)]
        assert fake_provider.usage_records == []
        assert result.charged_at == ChargedAt.IMMEDIATELY
        assert result.proration_amount == Decimal("657.53")
        assert result.days_remaining == 100
        stored = await seed.get_subscription(sub.id)
        assert stored.current_seats == 7
        assert stored.quantity == 7

    async def test_remove_seats_is_free(self, manager, seed, fake_provider) -> None:
        await seed.org()
        sub = await seed.subscription(billing_type=BillingType.QUANTITY_BASED, current_seats=5)

        result = await manager.remove_seats(sub.id, 4)

        assert fake_provider.item_updates == [("item-1", 4, True)]
        assert fake_provider.usage_records == []
        assert result.proration_amount == Decimal("0.00")

    async def test_prorates_against_provider_renewal_date(
        self, manager, seed, fake_provider, now
    ) -> None:
        await seed.org()
        sub = await seed.subscription(
            billing_type=BillingType.QUANTITY_BASED,
            current_seats=5,
            renews_at=now + timedelta(days=300),
        )
        fake_provider.renews_at = now + timedelta(days=100)

        preview = await manager.calculate_proration(sub.id, 7)

        assert preview.days_remaining == 100
        assert preview.proration_amount == Decimal("657.53")
        assert fake_provider.fetched == ["ls-sub-1"]

    async def test_preview_never_mutates(self, manager, seed, fake_provider) -> None:
        await seed.org()
        sub = await seed.subscription(billing_type=BillingType.QUANTITY_BASED, current_seats=5)

        await manager.calculate_proration(sub.id, 8)

        assert fake_provider.item_updates == []
        assert (await seed.get_subscription(sub.id)).current_seats == 5

    async def test_missing_item_is_fatal(self, manager, seed, fake_provider) -> None:
        await seed.org()
        sub = await seed.subscription(
            billing_type=BillingType.QUANTITY_BASED, current_seats=5, item_id=None
        )
        with pytest.raises(MissingSubscriptionItem):
            await manager.add_seats(sub.id, 6)
        assert fake_provider.item_updates == []

    async def test_missing_provider_subscription(self, manager, seed) -> None:
        await seed.org()
        sub = await seed.subscription(
            billing_type=BillingType.QUANTITY_BASED, current_seats=5, provider_id=None
        )
        with pytest.raises(MissingProviderSubscription):
            await manager.add_seats(sub.id, 6)

    async def test_missing_renewal_date(self, manager, seed, fake_provider) -> None:
        await seed.org()
        sub = await seed.subscription(billing_type=BillingType.QUANTITY_BASED, current_seats=5)
        fake_provider.renews_at = None
        with pytest.raises(MissingRenewalDate):
            await manager.calculate_proration(sub.id, 6)

    async def test_timeout_leaves_ledger_unchanged(self, manager, seed, fake_provider) -> None:
        await seed.org()
        sub = await seed.subscription(billing_type=BillingType.QUANTITY_BASED, current_seats=5)
        fake_provider.failures["update_subscription_item"] = ProviderTimeout()

        with pytest.raises(ProviderTimeout) as exc_info:
            await manager.add_seats(sub.id, 6)

        assert exc_info.value.retryable is True
        stored = await seed.get_subscription(sub.id)
        assert stored.current_seats == 5
        assert stored.quantity == 5


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestSeatChangeValidation:
    async def test_add_seats_rejects_decrease(self, manager, seed) -> None:
        await seed.org()
        sub = await seed.subscription(current_seats=5)
        with pytest.raises(DirectionMismatch, match="remove_seats"):
            await manager.add_seats(sub.id, 4)

    async def test_remove_seats_rejects_increase(self, manager, seed) -> None:
        await seed.org()
        sub = await seed.subscription(current_seats=5)
        with pytest.raises(DirectionMismatch, match="add_seats"):
            await manager.remove_seats(sub.id, 6)

    async def test_unchanged_quantity_rejected(self, manager, seed, fake_provider) -> None:
        await seed.org()
        sub = await seed.subscription(current_seats=5)
        with pytest.raises(DirectionMismatch, match="must be different"):
            await manager.change_seats(sub.id, 5)
        assert fake_provider.usage_records == []

    async def test_negative_quantity_rejected(self, manager) -> None:
        with pytest.raises(InvalidSeatQuantity):
            await manager.change_seats("any", -1)

    async def test_unknown_subscription(self, manager) -> None:
        with pytest.raises(SubscriptionNotFound):
            await manager.add_seats("missing", 3)

    async def test_change_seats_dispatches_by_direction(
        self, manager, seed, fake_provider
    ) -> None:
        await seed.org()
        sub = await seed.subscription(current_seats=5)

        await manager.change_seats(sub.id, 8)
        await manager.change_seats(sub.id, 3)

        assert fake_provider.usage_records == [("item-1", 8), ("item-1", 3)]

    async def test_unknown_billing_type(self, manager, seed, fake_provider) -> None:
        await seed.org()
        sub = await seed.subscription(billing_type="per_hour", current_seats=1)
        with pytest.raises(UnknownBillingType):
            await manager.add_seats(sub.id, 2)
        assert fake_provider.usage_records == []
        assert fake_provider.item_updates == []

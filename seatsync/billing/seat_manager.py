"""Seat count changes routed by billing type."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, assert_never

import structlog

from seatsync.billing.proration import Proration, days_remaining, prorate
from seatsync.exceptions import (
    DirectionMismatch,
    InvalidSeatQuantity,
    MissingProviderSubscription,
    MissingRenewalDate,
    MissingSubscriptionItem,
    SubscriptionNotFound,
    UnknownBillingType,
)
from seatsync.models.api import ProrationPreview, SeatChangeResult
from seatsync.models.database import _utc_now
from seatsync.types import BillingType, ChargedAt

if TYPE_CHECKING:
    from seatsync.billing.provider import BillingProviderBase
    from seatsync.models.database import Subscription
    from seatsync.storage.repositories.subscriptions import DatabaseSubscriptionRepository

logger = structlog.get_logger(__name__)

_MISSING_ITEM_WARNING = (
    "Subscription has no provider subscription item. Seats were updated locally "
    "but no usage record was created, so no charge will be generated."
)
_USAGE_PRORATION_MESSAGE = (
    "Usage-based subscriptions are billed at the end of the period. No proration applies."
)


class SeatManager:
    """Changes an organization's paid seat count.

    Usage-based subscriptions report a new usage record and are charged at
    period end. Quantity-based subscriptions update the line item quantity and
    are invoiced immediately. The ledger is written only after the provider
    accepts the change.
    """

    def __init__(
        self,
        subscriptions: DatabaseSubscriptionRepository,
        provider: BillingProviderBase,
        yearly_price_per_seat: Decimal = Decimal("1200"),
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._subscriptions = subscriptions
        self._provider = provider
        self._yearly_price_per_seat = yearly_price_per_seat
        self._clock = clock

    async def add_seats(self, subscription_id: str, new_quantity: int) -> SeatChangeResult:
        subscription = await self._load(subscription_id, new_quantity)
        if new_quantity < subscription.current_seats:
            raise DirectionMismatch(
                "Use remove_seats() to decrease seat count",
                current_seats=subscription.current_seats,
                new_quantity=new_quantity,
            )
        return await self._change(subscription, new_quantity)

    async def remove_seats(self, subscription_id: str, new_quantity: int) -> SeatChangeResult:
        subscription = await self._load(subscription_id, new_quantity)
        if new_quantity > subscription.current_seats:
            raise DirectionMismatch(
                "Use add_seats() to increase seat count",
                current_seats=subscription.current_seats,
                new_quantity=new_quantity,
            )
        return await self._change(subscription, new_quantity)

    async def change_seats(self, subscription_id: str, new_quantity: int) -> SeatChangeResult:
        """Add or remove seats, whichever direction ``new_quantity`` implies."""
        subscription = await self._load(subscription_id, new_quantity)
        return await self._change(subscription, new_quantity)

    async def calculate_proration(
        self, subscription_id: str, new_quantity: int
    ) -> ProrationPreview:
        """Preview the immediate charge for a seat change. Never mutates."""
        if new_quantity < 0:
            raise InvalidSeatQuantity(new_quantity)
        subscription = await self._subscriptions.get_by_id(subscription_id)
        if subscription is None:
            raise SubscriptionNotFound(subscription_id=subscription_id)

        billing_type = _billing_type(subscription)
        match billing_type:
            case BillingType.USAGE_BASED:
                return ProrationPreview(
                    subscription_id=subscription.id,
                    billing_type=billing_type,
                    current_seats=subscription.current_seats,
                    new_quantity=new_quantity,
                    message=_USAGE_PRORATION_MESSAGE,
                )
            case BillingType.QUANTITY_BASED:
                proration = await self._prorate(subscription, new_quantity)
                return ProrationPreview(
                    subscription_id=subscription.id,
                    billing_type=billing_type,
                    current_seats=proration.current_seats,
                    new_quantity=proration.new_quantity,
                    seats_added=proration.seats_added,
                    days_remaining=proration.days_remaining,
                    total_days=proration.total_days,
                    proration_amount=proration.amount,
                    message=proration.message,
                )
            case _:
                assert_never(billing_type)

    async def _load(self, subscription_id: str, new_quantity: int) -> Subscription:
        if new_quantity < 0:
            raise InvalidSeatQuantity(new_quantity)
        subscription = await self._subscriptions.get_by_id(subscription_id)
        if subscription is None:
            raise SubscriptionNotFound(subscription_id=subscription_id)
        if new_quantity == subscription.current_seats:
            raise DirectionMismatch(
                "New quantity must be different from current seats",
                current_seats=subscription.current_seats,
                new_quantity=new_quantity,
            )
        return subscription

    async def _change(self, subscription: Subscription, new_quantity: int) -> SeatChangeResult:
        billing_type = _billing_type(subscription)
        logger.info(
            "seat_change_requested",
            subscription_id=subscription.id,
            org_id=subscription.org_id,
            billing_type=billing_type,
            current_seats=subscription.current_seats,
            new_quantity=new_quantity,
        )
        match billing_type:
            case BillingType.USAGE_BASED:
                return await self._change_usage_based(subscription, new_quantity)
            case BillingType.QUANTITY_BASED:
                return await self._change_quantity_based(subscription, new_quantity)
            case _:
                assert_never(billing_type)

    async def _change_usage_based(
        self, subscription: Subscription, new_quantity: int
    ) -> SeatChangeResult:
        warnings: list[str] = []
        item_id = subscription.provider_subscription_item_id
        if item_id:
            await self._provider.create_usage_record(item_id, new_quantity)
        else:
            logger.warning(
                "usage_record_skipped_missing_item",
                subscription_id=subscription.id,
                org_id=subscription.org_id,
                new_quantity=new_quantity,
            )
            warnings.append(_MISSING_ITEM_WARNING)

        await self._subscriptions.set_current_seats(subscription.id, new_quantity)
        return SeatChangeResult(
            subscription_id=subscription.id,
            billing_type=BillingType.USAGE_BASED,
            charged_at=ChargedAt.END_OF_PERIOD,
            previous_seats=subscription.current_seats,
            current_seats=new_quantity,
            provider_synced=bool(item_id),
            warnings=warnings,
        )

    async def _change_quantity_based(
        self, subscription: Subscription, new_quantity: int
    ) -> SeatChangeResult:
        item_id = subscription.provider_subscription_item_id
        if not item_id:
            logger.error(
                "quantity_update_missing_item",
                subscription_id=subscription.id,
                org_id=subscription.org_id,
            )
            raise MissingSubscriptionItem(subscription.id)

        proration = await self._prorate(subscription, new_quantity)
        await self._provider.update_subscription_item(
            item_id, new_quantity, invoice_immediately=True
        )
        await self._subscriptions.sync(
            subscription.id, current_seats=new_quantity, quantity=new_quantity
        )
        logger.info(
            "seats_updated_with_proration",
            subscription_id=subscription.id,
            new_quantity=new_quantity,
            proration_amount=str(proration.amount),
            days_remaining=proration.days_remaining,
        )
        return SeatChangeResult(
            subscription_id=subscription.id,
            billing_type=BillingType.QUANTITY_BASED,
            charged_at=ChargedAt.IMMEDIATELY,
            previous_seats=subscription.current_seats,
            current_seats=new_quantity,
            proration_amount=proration.amount,
            days_remaining=proration.days_remaining,
        )

    async def _prorate(self, subscription: Subscription, new_quantity: int) -> Proration:
        """Prorate against the provider's renewal date, not the cached one."""
        if not subscription.provider_subscription_id:
            raise MissingProviderSubscription(subscription.id)
        remote = await self._provider.get_subscription(subscription.provider_subscription_id)
        if remote.renews_at is None:
            raise MissingRenewalDate(subscription.id)
        return prorate(
            current_seats=subscription.current_seats,
            new_quantity=new_quantity,
            days_left=days_remaining(remote.renews_at, self._clock()),
            yearly_price_per_seat=self._yearly_price_per_seat,
        )


def _billing_type(subscription: Subscription) -> BillingType:
    try:
        return BillingType(subscription.billing_type)
    except ValueError as exc:
        logger.error(
            "unknown_billing_type",
            subscription_id=subscription.id,
            billing_type=subscription.billing_type,
        )
        raise UnknownBillingType(subscription.billing_type, subscription.id) from exc

"""Abstract billing provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import UTC, datetime

from pydantic import BaseModel


class UsageRecord(BaseModel):
    id: str
    quantity: int


class SubscriptionItem(BaseModel):
    id: str
    quantity: int


class ProviderSubscription(BaseModel):
    id: str
    status: str
    renews_at: datetime | None = None
    quantity: int | None = None


class BillingProviderBase(ABC):
    """Abstract base for billing providers.

    Implementations raise ``ProviderTimeout`` when a call does not complete in
    time and ``ProviderError`` for any definitive rejection.
    """

    @abstractmethod
    async def create_usage_record(self, subscription_item_id: str, quantity: int) -> UsageRecord:
        """Report the seat count for a usage-based line item."""

    @abstractmethod
    async def update_subscription_item(
        self, subscription_item_id: str, quantity: int, invoice_immediately: bool = True
    ) -> SubscriptionItem:
        """Change the quantity of a line item, optionally invoicing the difference now."""

    @abstractmethod
    async def get_subscription(self, subscription_id: str) -> ProviderSubscription:
        """Fetch the provider's view of a subscription."""

    @abstractmethod
    async def cancel_subscription(self, subscription_id: str) -> None:
        """Cancel a subscription at the provider."""


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a provider ISO-8601 timestamp into a naive UTC datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(UTC).replace(tzinfo=None)
    return parsed

"""Lemon Squeezy webhook reconciliation.

Applies provider subscription events to the seat ledger. Every delivery is
claimed in the billing event log before any mutation, so redelivered events
are no-ops. Handlers return an ``EventResult`` instead of raising.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, assert_never

import structlog

from seatsync.billing.provider import parse_timestamp
from seatsync.billing.seats import billable_usage_quantity
from seatsync.config.settings import FREE_SEATS
from seatsync.exceptions import ProviderError, UnknownVariant
from seatsync.models.api import EventResult
from seatsync.models.database import Subscription, _utc_now
from seatsync.types import (
    LIVE_SUBSCRIPTION_STATUSES,
    BillingEventStatus,
    BillingPeriod,
    BillingType,
    SubscriptionStatus,
)

if TYPE_CHECKING:
    from datetime import datetime

    from seatsync.billing.lifecycle import MembershipLifecycle
    from seatsync.billing.provider import BillingProviderBase
    from seatsync.storage.repositories.billing_events import DatabaseBillingEventRepository
    from seatsync.storage.repositories.organizations import DatabaseOrganizationRepository
    from seatsync.storage.repositories.subscriptions import DatabaseSubscriptionRepository

logger = structlog.get_logger(__name__)

_Handler = Callable[[dict[str, Any]], Awaitable[EventResult]]

# Events whose ``data`` is an invoice rather than a subscription
_INVOICE_EVENTS = frozenset({"subscription_payment_success", "subscription_payment_failed"})

_VALID_STATUSES = frozenset(s.value for s in SubscriptionStatus)


class WebhookReconciler:
    def __init__(
        self,
        subscriptions: DatabaseSubscriptionRepository,
        organizations: DatabaseOrganizationRepository,
        events: DatabaseBillingEventRepository,
        lifecycle: MembershipLifecycle,
        provider: BillingProviderBase,
        monthly_variant_id: str,
        yearly_variant_id: str,
        free_seats: int = FREE_SEATS,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._subscriptions = subscriptions
        self._organizations = organizations
        self._events = events
        self._lifecycle = lifecycle
        self._provider = provider
        self._monthly_variant_id = str(monthly_variant_id)
        self._yearly_variant_id = str(yearly_variant_id)
        self._free_seats = free_seats
        self._clock = clock
        self._handlers: dict[str, _Handler] = {
            "subscription_created": self.process_subscription_created,
            "subscription_updated": self.process_subscription_updated,
            "subscription_cancelled": self.process_subscription_cancelled,
            "subscription_expired": self.process_subscription_cancelled,
            "subscription_paused": self.process_subscription_status,
            "subscription_resumed": self.process_subscription_status,
            "subscription_unpaused": self.process_subscription_status,
            "subscription_payment_failed": self.process_subscription_payment_failed,
            "subscription_payment_success": self.process_subscription_payment_success,
        }

    async def handle(self, payload: dict[str, Any]) -> EventResult:
        """Validate, de-duplicate and dispatch one webhook delivery."""
        error = validate_payload(payload)
        if error:
            logger.warning("webhook_payload_invalid", error=error)
            return EventResult(success=False, error=error)

        event_name = payload["meta"]["event_name"]
        event_id = event_id_for(payload)
        with structlog.contextvars.bound_contextvars(
            webhook_event=event_name, webhook_event_id=event_id
        ):
            if not await self._events.claim(event_id, event_name, json.dumps(payload)):
                logger.info("webhook_duplicate_ignored")
                return EventResult(
                    success=True, data={"message": "Event already processed", "event_id": event_id}
                )

            handler = self._handlers.get(event_name)
            if handler is None:
                logger.info("webhook_unsupported_event")
                await self._events.finish(event_id, BillingEventStatus.SKIPPED)
                return EventResult(success=True, data={"message": f"Ignored {event_name}"})

            try:
                result = await handler(payload)
            except Exception as exc:
                # A claim left in processing would swallow every redelivery
                logger.exception("webhook_processing_failed", error_type=type(exc).__name__)
                result = EventResult(success=False, error=str(exc) or type(exc).__name__)

            await self._events.finish(
                event_id,
                BillingEventStatus.PROCESSED if result.success else BillingEventStatus.FAILED,
                org_id=(result.data or {}).get("org_id"),
                provider_subscription_id=_provider_subscription_id(payload, event_name),
                error_message=result.error,
            )
            return result

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def process_subscription_created(self, payload: dict[str, Any]) -> EventResult:
        meta, data = payload["meta"], payload["data"]
        attributes = data["attributes"]
        custom_data = meta.get("custom_data") or {}
        provider_id = str(data["id"])

        org_id = custom_data.get("organization_id")
        if not org_id:
            return EventResult(success=False, error="Missing organization_id in custom_data")
        if await self._organizations.get(str(org_id)) is None:
            return EventResult(success=False, error=f"Organization not found: {org_id}")
        org_id = str(org_id)

        try:
            billing_type = self.detect_billing_type(attributes.get("variant_id"))
        except UnknownVariant as exc:
            logger.error("webhook_unknown_variant", variant_id=exc.variant_id, org_id=org_id)
            return EventResult(success=False, error=exc.message)

        user_count = max(0, int(custom_data.get("user_count") or 0))
        item = attributes.get("first_subscription_item") or {}
        item_id = str(item["id"]) if item.get("id") else None
        fields: dict[str, Any] = {
            "billing_period": _billing_period(custom_data.get("tier"), billing_type),
            "status": attributes["status"],
            "current_seats": user_count,
            "quantity": int(item.get("quantity") or 0),
            "provider_subscription_item_id": item_id,
            "provider_customer_id": _str_or_none(attributes.get("customer_id")),
            "provider_product_id": _str_or_none(attributes.get("product_id")),
            "provider_variant_id": _str_or_none(attributes.get("variant_id")),
            "renews_at": parse_timestamp(attributes.get("renews_at")),
            "ends_at": parse_timestamp(attributes.get("ends_at")),
            "trial_ends_at": parse_timestamp(attributes.get("trial_ends_at")),
        }

        migrate_from = custom_data.get("migration_from_subscription_id")
        await self._retire_live_subscriptions(org_id, provider_id, migrate_from)

        existing = await self._subscriptions.get_by_provider_id(provider_id)
        if existing is not None:
            if existing.billing_type != billing_type:
                logger.warning(
                    "billing_type_change_ignored",
                    subscription_id=existing.id,
                    stored=existing.billing_type,
                    detected=billing_type,
                )
            await self._subscriptions.sync(existing.id, **fields)
            subscription_id = existing.id
        else:
            created = await self._subscriptions.create(
                Subscription(
                    org_id=org_id,
                    billing_type=billing_type,
                    provider_subscription_id=provider_id,
                    **fields,
                )
            )
            subscription_id = created.id

        if billing_type == BillingType.USAGE_BASED:
            if item_id:
                await self._report_usage(
                    item_id,
                    billable_usage_quantity(user_count, self._free_seats),
                    subscription_id=subscription_id,
                    reason="initial",
                )
            else:
                logger.warning(
                    "initial_usage_record_skipped_missing_item",
                    subscription_id=subscription_id,
                    org_id=org_id,
                )

        if migrate_from:
            await self._cancel_migrated_subscription(str(migrate_from))

        logger.info(
            "webhook_subscription_created",
            subscription_id=subscription_id,
            org_id=org_id,
            billing_type=billing_type,
            user_count=user_count,
        )
        return EventResult(
            success=True,
            data={
                "subscription_id": subscription_id,
                "org_id": org_id,
                "billing_type": billing_type.value,
                "current_seats": user_count,
            },
        )

    async def process_subscription_updated(self, payload: dict[str, Any]) -> EventResult:
        data = payload["data"]
        attributes = data["attributes"]
        existing = await self._subscriptions.get_by_provider_id(str(data["id"]))
        if existing is None:
            return EventResult(success=False, error=f"Subscription not found: {data['id']}")

        item = attributes.get("first_subscription_item") or {}
        quantity = int(item["quantity"]) if item.get("quantity") is not None else existing.quantity
        renews_at = parse_timestamp(attributes.get("renews_at"))
        fields: dict[str, Any] = {
            "status": attributes["status"],
            "quantity": quantity,
            "provider_variant_id": _str_or_none(attributes.get("variant_id"))
            or existing.provider_variant_id,
            "renews_at": renews_at,
            "ends_at": parse_timestamp(attributes.get("ends_at")),
            "trial_ends_at": parse_timestamp(attributes.get("trial_ends_at")),
        }
        if item.get("id"):
            fields["provider_subscription_item_id"] = str(item["id"])

        archived = 0
        if existing.renews_at and renews_at and renews_at > existing.renews_at:
            logger.info(
                "subscription_renewed",
                subscription_id=existing.id,
                previous_renews_at=existing.renews_at.isoformat(),
                renews_at=renews_at.isoformat(),
            )
            archived = await self._apply_renewal(existing, existing.renews_at)

        billing_type = BillingType(existing.billing_type)
        match billing_type:
            case BillingType.USAGE_BASED:
                # Seats track admin changes, not the line item quantity
                pass
            case BillingType.QUANTITY_BASED:
                fields["current_seats"] = quantity
            case _:
                assert_never(billing_type)

        updated = await self._subscriptions.sync(existing.id, **fields)
        current_seats = updated.current_seats if updated else existing.current_seats
        if existing.status != attributes["status"]:
            logger.info(
                "subscription_status_changed",
                subscription_id=existing.id,
                previous=existing.status,
                status=attributes["status"],
            )
        return EventResult(
            success=True,
            data={
                "subscription_id": existing.id,
                "org_id": existing.org_id,
                "current_seats": current_seats,
                "archived_members": archived,
            },
        )

    async def process_subscription_cancelled(self, payload: dict[str, Any]) -> EventResult:
        """Handles both cancellation and expiry: no seats remain billed."""
        data = payload["data"]
        attributes = data["attributes"]
        existing = await self._subscriptions.get_by_provider_id(str(data["id"]))
        if existing is None:
            return EventResult(success=False, error=f"Subscription not found: {data['id']}")

        await self._subscriptions.sync(
            existing.id,
            status=attributes["status"],
            current_seats=0,
            quantity=0,
            renews_at=None,
            ends_at=parse_timestamp(attributes.get("ends_at")),
        )
        logger.info(
            "webhook_subscription_cancelled",
            subscription_id=existing.id,
            org_id=existing.org_id,
            status=attributes["status"],
        )
        return EventResult(
            success=True,
            data={"subscription_id": existing.id, "org_id": existing.org_id, "current_seats": 0},
        )

    async def process_subscription_status(self, payload: dict[str, Any]) -> EventResult:
        """Paused, resumed and unpaused events only move the status and dates."""
        data = payload["data"]
        attributes = data["attributes"]
        existing = await self._subscriptions.get_by_provider_id(str(data["id"]))
        if existing is None:
            return EventResult(success=False, error=f"Subscription not found: {data['id']}")

        fields: dict[str, Any] = {"status": attributes["status"]}
        if "renews_at" in attributes:
            fields["renews_at"] = parse_timestamp(attributes.get("renews_at"))
        if "ends_at" in attributes:
            fields["ends_at"] = parse_timestamp(attributes.get("ends_at"))
        await self._subscriptions.sync(existing.id, **fields)
        logger.info(
            "subscription_status_changed",
            subscription_id=existing.id,
            previous=existing.status,
            status=attributes["status"],
        )
        return EventResult(
            success=True,
            data={"subscription_id": existing.id, "org_id": existing.org_id},
        )

    async def process_subscription_payment_failed(self, payload: dict[str, Any]) -> EventResult:
        existing = await self._subscription_for_invoice(payload)
        if existing is None:
            return _invoice_subscription_missing(payload)
        await self._subscriptions.sync(existing.id, status=SubscriptionStatus.PAST_DUE)
        logger.warning(
            "subscription_payment_failed",
            subscription_id=existing.id,
            org_id=existing.org_id,
        )
        return EventResult(
            success=True,
            data={"subscription_id": existing.id, "org_id": existing.org_id},
        )

    async def process_subscription_payment_success(self, payload: dict[str, Any]) -> EventResult:
        """A paid renewal invoice ends the grace period of due removals."""
        existing = await self._subscription_for_invoice(payload)
        if existing is None:
            return _invoice_subscription_missing(payload)
        archived = await self._apply_renewal(existing, self._clock())
        if existing.status == SubscriptionStatus.PAST_DUE:
            await self._subscriptions.sync(existing.id, status=SubscriptionStatus.ACTIVE)
        return EventResult(
            success=True,
            data={
                "subscription_id": existing.id,
                "org_id": existing.org_id,
                "archived_members": archived,
            },
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def detect_billing_type(self, variant_id: Any) -> BillingType:
        """Monthly variant bills by usage, yearly by quantity. Anything else is fatal."""
        variant = str(variant_id or "")
        if variant and variant == self._monthly_variant_id:
            return BillingType.USAGE_BASED
        if variant and variant == self._yearly_variant_id:
            return BillingType.QUANTITY_BASED
        raise UnknownVariant(variant, self._monthly_variant_id, self._yearly_variant_id)

    async def _apply_renewal(self, subscription: Subscription, cutoff: datetime) -> int:
        """Archive removals due by ``cutoff`` and drop their seats from usage billing."""
        archived = await self._lifecycle.archive_due_removals(subscription.org_id, cutoff)
        if not archived or subscription.billing_type != BillingType.USAGE_BASED:
            return archived

        fresh = await self._subscriptions.get_by_id(subscription.id)
        current = fresh.current_seats if fresh else subscription.current_seats
        new_seats = max(0, current - archived)
        await self._subscriptions.set_current_seats(subscription.id, new_seats)
        if subscription.provider_subscription_item_id:
            await self._report_usage(
                subscription.provider_subscription_item_id,
                new_seats,
                subscription_id=subscription.id,
                reason="renewal",
            )
        return archived

    async def _report_usage(
        self, item_id: str, quantity: int, *, subscription_id: str, reason: str
    ) -> None:
        """Best effort: a failed usage record never fails the webhook."""
        try:
            await self._provider.create_usage_record(item_id, quantity)
        except ProviderError as exc:
            logger.error(
                "webhook_usage_record_failed",
                subscription_id=subscription_id,
                subscription_item_id=item_id,
                quantity=quantity,
                reason=reason,
                status_code=exc.status_code,
                error=exc.message,
            )

    async def _retire_live_subscriptions(
        self, org_id: str, provider_id: str, migrate_from: Any
    ) -> None:
        """Keep a single live subscription per organization; the newest one wins."""
        live = await self._subscriptions.get_live_for_org(org_id)
        while live is not None and live.provider_subscription_id != provider_id:
            if migrate_from and live.provider_subscription_id == str(migrate_from):
                logger.info("subscription_migrated", old_subscription_id=live.id, org_id=org_id)
            else:
                logger.warning("live_subscription_superseded", old_subscription_id=live.id)
            await self._subscriptions.sync(live.id, status=SubscriptionStatus.CANCELLED)
            live = await self._subscriptions.get_live_for_org(org_id)

    async def _cancel_migrated_subscription(self, provider_subscription_id: str) -> None:
        old = await self._subscriptions.get_by_provider_id(provider_subscription_id)
        if old is not None and old.status in LIVE_SUBSCRIPTION_STATUSES:
            await self._subscriptions.sync(old.id, status=SubscriptionStatus.CANCELLED)
        try:
            await self._provider.cancel_subscription(provider_subscription_id)
        except ProviderError as exc:
            logger.error(
                "migration_cancel_failed",
                provider_subscription_id=provider_subscription_id,
                status_code=exc.status_code,
                error=exc.message,
            )

    async def _subscription_for_invoice(self, payload: dict[str, Any]) -> Subscription | None:
        provider_id = payload["data"]["attributes"].get("subscription_id")
        if not provider_id:
            return None
        return await self._subscriptions.get_by_provider_id(str(provider_id))


def validate_payload(payload: Any) -> str | None:
    """Return an error message for a malformed payload, or None."""
    if not isinstance(payload, dict):
        return "Payload must be a JSON object"
    meta = payload.get("meta")
    data = payload.get("data")
    if not isinstance(meta, dict) or not meta.get("event_name"):
        return "Missing meta.event_name"
    if not isinstance(data, dict) or not data.get("id"):
        return "Missing data.id"
    attributes = data.get("attributes")
    if not isinstance(attributes, dict):
        return "Missing data.attributes"
    status = attributes.get("status")
    if not isinstance(status, str):
        return "Missing data.attributes.status"
    event_name = meta["event_name"]
    if event_name.startswith("subscription_") and event_name not in _INVOICE_EVENTS:
        if status not in _VALID_STATUSES:
            return f"Invalid subscription status: {status}"
    return None


def event_id_for(payload: dict[str, Any]) -> str:
    """Provider event id, or a deterministic stand-in when the provider omits one."""
    meta = payload["meta"]
    for key in ("event_id", "webhook_id"):
        if meta.get(key):
            return str(meta[key])
    data = payload["data"]
    updated_at = data["attributes"].get("updated_at", "")
    return f"{meta['event_name']}-{data['id']}-{updated_at}"


def _provider_subscription_id(payload: dict[str, Any], event_name: str) -> str | None:
    if event_name in _INVOICE_EVENTS:
        return _str_or_none(payload["data"]["attributes"].get("subscription_id"))
    return str(payload["data"]["id"])


def _invoice_subscription_missing(payload: dict[str, Any]) -> EventResult:
    provider_id = payload["data"]["attributes"].get("subscription_id")
    return EventResult(success=False, error=f"Subscription not found: {provider_id}")


def _billing_period(tier: Any, billing_type: BillingType) -> str:
    if tier in ("annual", "yearly"):
        return BillingPeriod.YEARLY
    if tier == "monthly":
        return BillingPeriod.MONTHLY
    if billing_type == BillingType.QUANTITY_BASED:
        return BillingPeriod.YEARLY
    return BillingPeriod.MONTHLY


def _str_or_none(value: Any) -> str | None:
    return str(value) if value not in (None, "") else None

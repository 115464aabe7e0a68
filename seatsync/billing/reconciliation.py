"""Provider-vs-ledger drift detection.

Webhooks are the primary sync path; this job is the safety net run on a
schedule. It fetches every live subscription from the provider and compares
it with the local ledger. Drift is reported, never auto-corrected.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from seatsync.exceptions import ProviderError
from seatsync.models.api import ReconciliationFailure, ReconciliationReport, SubscriptionDrift
from seatsync.types import BillingType

if TYPE_CHECKING:
    from seatsync.billing.provider import BillingProviderBase, ProviderSubscription
    from seatsync.models.database import Subscription
    from seatsync.storage.repositories.subscriptions import DatabaseSubscriptionRepository

logger = structlog.get_logger(__name__)


class SubscriptionReconciler:
    def __init__(
        self,
        subscriptions: DatabaseSubscriptionRepository,
        provider: BillingProviderBase,
        request_delay_seconds: float = 0.0,
    ) -> None:
        self._subscriptions = subscriptions
        self._provider = provider
        self._delay = request_delay_seconds

    async def reconcile_subscriptions(self) -> ReconciliationReport:
        live = await self._subscriptions.list_live()
        report = ReconciliationReport(checked=len(live))

        for index, subscription in enumerate(live):
            if index and self._delay > 0:
                await asyncio.sleep(self._delay)
            provider_id = subscription.provider_subscription_id or ""
            try:
                remote = await self._provider.get_subscription(provider_id)
            except ProviderError as exc:
                logger.warning(
                    "reconciliation_fetch_failed",
                    subscription_id=subscription.id,
                    provider_subscription_id=provider_id,
                    org_id=subscription.org_id,
                    error=exc.message,
                )
                report.errors.append(
                    ReconciliationFailure(
                        subscription_id=subscription.id,
                        provider_subscription_id=provider_id,
                        org_id=subscription.org_id,
                        error=exc.message,
                    )
                )
                continue

            drift = _compare(subscription, remote)
            if not drift:
                report.matches += 1
                continue
            for item in drift:
                logger.error(
                    "subscription_out_of_sync",
                    subscription_id=item.subscription_id,
                    provider_subscription_id=item.provider_subscription_id,
                    org_id=item.org_id,
                    field=item.field,
                    ledger_value=item.ledger_value,
                    provider_value=item.provider_value,
                )
            report.mismatches.extend(drift)

        if report.in_sync:
            logger.info("reconciliation_in_sync", checked=report.checked)
        else:
            logger.warning(
                "reconciliation_drift_detected",
                checked=report.checked,
                matches=report.matches,
                mismatches=len(report.mismatches),
                errors=len(report.errors),
            )
        return report


def _compare(subscription: Subscription, remote: ProviderSubscription) -> list[SubscriptionDrift]:
    pairs: list[tuple[str, object, object]] = []
    if remote.status and remote.status != subscription.status:
        pairs.append(("status", subscription.status, remote.status))
    # Usage-based items carry a flat quantity; their seats are reported as usage
    if (
        subscription.billing_type == BillingType.QUANTITY_BASED
        and remote.quantity is not None
        and remote.quantity != subscription.current_seats
    ):
        pairs.append(("current_seats", subscription.current_seats, remote.quantity))
    return [
        SubscriptionDrift(
            subscription_id=subscription.id,
            provider_subscription_id=subscription.provider_subscription_id or "",
            org_id=subscription.org_id,
            field=field,
            ledger_value=ledger,
            provider_value=provider,
        )
        for field, ledger, provider in pairs
    ]

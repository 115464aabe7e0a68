"""Lemon Squeezy billing provider implementation."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from seatsync.billing.provider import (
    BillingProviderBase,
    ProviderSubscription,
    SubscriptionItem,
    UsageRecord,
    parse_timestamp,
)
from seatsync.exceptions import ProviderError, ProviderTimeout

logger = structlog.get_logger(__name__)

_JSON_API = "application/vnd.api+json"


class LemonSqueezyProvider(BillingProviderBase):
    """Lemon Squeezy JSON:API client."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.lemonsqueezy.com/v1",
        timeout: float = 15.0,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    async def create_usage_record(self, subscription_item_id: str, quantity: int) -> UsageRecord:
        payload = {
            "data": {
                "type": "usage-records",
                "attributes": {"quantity": quantity},
                "relationships": {
                    "subscription-item": {
                        "data": {"type": "subscription-items", "id": str(subscription_item_id)}
                    }
                },
            }
        }
        data = await self._request("POST", "/usage-records", payload)
        record = data.get("data", {})
        logger.info(
            "usage_record_created",
            subscription_item_id=subscription_item_id,
            quantity=quantity,
            usage_record_id=record.get("id"),
        )
        return UsageRecord(
            id=str(record.get("id", "")),
            quantity=int(record.get("attributes", {}).get("quantity", quantity)),
        )

    async def update_subscription_item(
        self, subscription_item_id: str, quantity: int, invoice_immediately: bool = True
    ) -> SubscriptionItem:
        payload = {
            "data": {
                "type": "subscription-items",
                "id": str(subscription_item_id),
                "attributes": {"quantity": quantity, "invoice_immediately": invoice_immediately},
            }
        }
        data = await self._request("PATCH", f"/subscription-items/{subscription_item_id}", payload)
        item = data.get("data", {})
        logger.info(
            "subscription_item_updated",
            subscription_item_id=subscription_item_id,
            quantity=quantity,
            invoice_immediately=invoice_immediately,
        )
        return SubscriptionItem(
            id=str(item.get("id", subscription_item_id)),
            quantity=int(item.get("attributes", {}).get("quantity", quantity)),
        )

    async def get_subscription(self, subscription_id: str) -> ProviderSubscription:
        data = await self._request("GET", f"/subscriptions/{subscription_id}")
        sub = data.get("data", {})
        attributes = sub.get("attributes", {})
        item = attributes.get("first_subscription_item") or {}
        quantity = item.get("quantity", attributes.get("quantity"))
        return ProviderSubscription(
            id=str(sub.get("id", subscription_id)),
            status=str(attributes.get("status", "")),
            renews_at=parse_timestamp(attributes.get("renews_at")),
            quantity=int(quantity) if quantity is not None else None,
        )

    async def cancel_subscription(self, subscription_id: str) -> None:
        await self._request("DELETE", f"/subscriptions/{subscription_id}")
        logger.info("provider_subscription_cancelled", provider_subscription_id=subscription_id)

    async def _request(
        self, method: str, path: str, payload: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        headers = {
            "Accept": _JSON_API,
            "Content-Type": _JSON_API,
            "Authorization": f"Bearer {self._api_key}",
        }
        url = f"{self._base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.request(method, url, json=payload, headers=headers)
                resp.raise_for_status()
        except httpx.TimeoutException as exc:
            logger.warning("provider_timeout", method=method, path=path, timeout=self._timeout)
            raise ProviderTimeout(f"{method} {path} timed out after {self._timeout}s") from exc
        except httpx.HTTPStatusError as exc:
            body = _response_body(exc.response)
            logger.error(
                "provider_request_failed",
                method=method,
                path=path,
                status_code=exc.response.status_code,
                body=body,
            )
            raise ProviderError(
                f"Billing provider rejected {method} {path}",
                status_code=exc.response.status_code,
                body=body,
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("provider_unreachable", method=method, path=path, error=str(exc))
            raise ProviderError(f"Billing provider unreachable: {exc}") from exc

        if not resp.content:
            return {}
        result: dict[str, Any] = resp.json()
        return result


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text

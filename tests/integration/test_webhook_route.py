"""Integration tests for the Lemon Squeezy webhook endpoint."""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from seatsync.config.settings import get_settings
from seatsync.storage.repositories.subscriptions import DatabaseSubscriptionRepository
from seatsync.web.app import create_app
from seatsync.web.dependencies import get_billing_provider, get_db_engine

SECRET = "whsec-integration"


def _signed(payload: dict[str, Any], secret: str = SECRET) -> tuple[bytes, dict[str, str]]:
    body = json.dumps(payload).encode()
    signature = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return body, {"X-Signature": signature, "Content-Type": "application/json"}


def _created(variant_id: str = "111", event_id: str = "evt-1") -> dict[str, Any]:
    return {
        "meta": {
            "event_name": "subscription_created",
            "event_id": event_id,
            "custom_data": {"organization_id": "org-1", "user_count": 5},
        },
        "data": {
            "type": "subscriptions",
            "id": "ls-sub-1",
            "attributes": {
                "status": "active",
                "variant_id": variant_id,
                "first_subscription_item": {"id": "item-1", "quantity": 1},
                "renews_at": "2026-12-01T00:00:00Z",
            },
        },
    }


@pytest.fixture()
def configure(monkeypatch: pytest.MonkeyPatch):
    def _configure(secret: str = SECRET) -> None:
        monkeypatch.setenv("LEMONSQUEEZY_WEBHOOK_SECRET", secret)
        monkeypatch.setenv("LEMONSQUEEZY_MONTHLY_VARIANT_ID", "111")
        monkeypatch.setenv("LEMONSQUEEZY_YEARLY_VARIANT_ID", "222")
        get_settings.cache_clear()

    yield _configure
    get_settings.cache_clear()


@pytest.fixture()
async def client(configure, async_engine, fake_provider):
    configure()
    app = create_app()
    app.dependency_overrides[get_db_engine] = lambda: async_engine
    app.dependency_overrides[get_billing_provider] = lambda: fake_provider
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.mark.integration
class TestWebhookEndpoint:
    async def test_health_probe(self, client) -> None:
        resp = await client.get("/api/webhooks/lemonsqueezy")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    async def test_valid_event_processed(
        self, client, seed, async_engine, fake_provider
    ) -> None:
        await seed.org()
        body, headers = _signed(_created())

        resp = await client.post("/api/webhooks/lemonsqueezy", content=body, headers=headers)

        assert resp.status_code == 200
        data = resp.json()
        assert data["event_id"] == "evt-1"
        assert data["data"]["billing_type"] == "usage_based"
        sub = await DatabaseSubscriptionRepository(async_engine).get_by_provider_id("ls-sub-1")
        assert sub is not None
        assert fake_provider.usage_records == [("item-1", 5)]

    async def test_redelivery_acknowledged(self, client, seed, fake_provider) -> None:
        await seed.org()
        body, headers = _signed(_created())

        first = await client.post("/api/webhooks/lemonsqueezy", content=body, headers=headers)
        second = await client.post("/api/webhooks/lemonsqueezy", content=body, headers=headers)

        assert first.status_code == second.status_code == 200
        assert second.json()["data"]["message"] == "Event already processed"
        assert len(fake_provider.usage_records) == 1

    async def test_invalid_signature(self, client, seed) -> None:
        await seed.org()
        body, headers = _signed(_created(), secret="wrong")
        resp = await client.post("/api/webhooks/lemonsqueezy", content=body, headers=headers)
        assert resp.status_code == 401

    async def test_missing_signature(self, client) -> None:
        resp = await client.post("/api/webhooks/lemonsqueezy", content=b"{}")
        assert resp.status_code == 401

    async def test_invalid_json(self, client) -> None:
        body = b"not json"
        signature = hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()
        resp = await client.post(
            "/api/webhooks/lemonsqueezy", content=body, headers={"X-Signature": signature}
        )
        assert resp.status_code == 400

    async def test_invalid_payload(self, client) -> None:
        body, headers = _signed({"meta": {"event_name": "subscription_created"}})
        resp = await client.post("/api/webhooks/lemonsqueezy", content=body, headers=headers)
        assert resp.status_code == 400

    async def test_processing_failure_returns_500(
        self, client, seed, async_engine
    ) -> None:
        await seed.org()
        body, headers = _signed(_created(variant_id="999"))

        resp = await client.post("/api/webhooks/lemonsqueezy", content=body, headers=headers)

        assert resp.status_code == 500
        assert "Unknown variant ID" in resp.json()["details"]
        repo = DatabaseSubscriptionRepository(async_engine)
        assert await repo.get_by_provider_id("ls-sub-1") is None

    async def test_unconfigured_secret(self, client, configure) -> None:
        configure(secret="")
        body, headers = _signed(_created())
        resp = await client.post("/api/webhooks/lemonsqueezy", content=body, headers=headers)
        assert resp.status_code == 500

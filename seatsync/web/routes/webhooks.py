"""Lemon Squeezy webhook receiver."""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from seatsync.billing.webhooks import WebhookReconciler, event_id_for, validate_payload
from seatsync.config.settings import get_settings
from seatsync.web.dependencies import get_webhook_reconciler

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def verify_signature(payload: bytes, signature: str, secret: str) -> bool:
    """Check the X-Signature header: hex HMAC-SHA256 of the raw body."""
    if not payload or not signature or not secret:
        return False
    if signature.startswith("sha256="):
        signature = signature[7:]
    expected = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


@router.get("/lemonsqueezy")
async def webhook_health() -> dict[str, str]:
    return {"status": "ok", "endpoint": "lemonsqueezy"}


@router.post("/lemonsqueezy")
async def lemonsqueezy_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
) -> JSONResponse:
    """Verify, then reconcile one subscription event."""
    secret = get_settings().lemonsqueezy_webhook_secret
    if not secret:
        logger.error("webhook_secret_missing")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    body = await request.body()
    if not verify_signature(body, request.headers.get("x-signature", ""), secret):
        logger.warning("webhook_signature_invalid")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        payload: Any = json.loads(body)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc

    error = validate_payload(payload)
    if error:
        logger.warning("webhook_payload_invalid", error=error)
        raise HTTPException(status_code=400, detail=error)

    event_name = payload["meta"]["event_name"]
    event_id = event_id_for(payload)
    logger.info("webhook_received", event_name=event_name, event_id=event_id)

    result = await reconciler.handle(payload)
    if result.success:
        return JSONResponse(
            {
                "message": "Webhook processed successfully",
                "event_name": event_name,
                "event_id": event_id,
                "data": result.data,
            }
        )
    logger.error("webhook_failed", event_name=event_name, event_id=event_id, error=result.error)
    return JSONResponse(
        {
            "error": "Webhook processing failed",
            "event_name": event_name,
            "event_id": event_id,
            "details": result.error,
        },
        status_code=500,
    )

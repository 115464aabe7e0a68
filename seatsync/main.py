"""SeatSync entrypoints."""

import asyncio
import sys

import structlog
import uvicorn

from seatsync.config.logging import setup_logging
from seatsync.config.settings import get_settings
from seatsync.models.api import ReconciliationReport
from seatsync.web.dependencies import (
    get_availability,
    get_billing_provider,
    get_db_engine,
    get_invitation_service,
    get_subscription_reconciler,
)

logger = structlog.get_logger(__name__)


def cli() -> None:
    """Serve the API."""
    settings = get_settings()
    uvicorn.run("seatsync.web.app:create_app", factory=True, reload=settings.debug)


async def _expire_invitations() -> int:
    engine = get_db_engine()
    service = get_invitation_service(engine=engine, availability=get_availability(engine=engine))
    try:
        expired = await service.expire_invitations()
    finally:
        await engine.dispose()
    logger.info("expire_invitations_done", expired=expired)
    return expired


def expire_invitations_cli() -> None:
    """Mark overdue pending invitations as expired, releasing their seats."""
    settings = get_settings()
    setup_logging(log_level=settings.log_level, json_output=True)
    asyncio.run(_expire_invitations())


async def _reconcile_subscriptions() -> ReconciliationReport:
    engine = get_db_engine()
    reconciler = get_subscription_reconciler(engine=engine, provider=get_billing_provider())
    try:
        return await reconciler.reconcile_subscriptions()
    finally:
        await engine.dispose()


def reconcile_subscriptions_cli() -> None:
    """Compare live subscriptions with the provider; exit non-zero on drift."""
    settings = get_settings()
    setup_logging(log_level=settings.log_level, json_output=True)
    report = asyncio.run(_reconcile_subscriptions())
    logger.info(
        "reconcile_subscriptions_done",
        checked=report.checked,
        matches=report.matches,
        mismatches=len(report.mismatches),
        errors=len(report.errors),
    )
    if not report.in_sync:
        sys.exit(1)


if __name__ == "__main__":
    cli()

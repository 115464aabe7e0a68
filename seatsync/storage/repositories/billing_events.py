"""Billing event log and webhook idempotency store."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import and_, or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from seatsync.models.database import BillingEvent, _utc_now
from seatsync.types import BillingEventStatus

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


class DatabaseBillingEventRepository:
    """Insert-if-absent claims on provider event ids."""

    def __init__(
        self,
        engine: AsyncEngine,
        lease_seconds: int = 300,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._engine = engine
        self._lease = timedelta(seconds=lease_seconds)
        self._clock = clock

    async def claim(self, provider_event_id: str, event_name: str, payload_json: str) -> bool:
        """Claim an event for processing.

        Returns True when the caller should process the event: either it was
        never seen, a previous attempt failed, or a previous attempt has held
        the claim longer than the lease (the worker died mid-handler).
        Processed, skipped and in-flight events return False.
        """
        now = self._clock()
        try:
            async with AsyncSession(self._engine) as session:
                session.add(
                    BillingEvent(
                        provider_event_id=provider_event_id,
                        event_name=event_name,
                        payload_json=payload_json,
                        status=BillingEventStatus.PROCESSING,
                        claimed_at=now,
                    )
                )
                await session.commit()
            return True
        except IntegrityError:
            logger.debug("billing_event_already_claimed", provider_event_id=provider_event_id)

        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                update(BillingEvent)
                .where(
                    col(BillingEvent.provider_event_id) == provider_event_id,
                    or_(
                        col(BillingEvent.status) == BillingEventStatus.FAILED,
                        and_(
                            col(BillingEvent.status) == BillingEventStatus.PROCESSING,
                            col(BillingEvent.claimed_at) < now - self._lease,
                        ),
                    ),
                )
                .values(status=BillingEventStatus.PROCESSING, error_message=None, claimed_at=now)
            )
            await session.commit()
        reclaimed = bool(result.rowcount)
        if reclaimed:
            logger.info("billing_event_retry", provider_event_id=provider_event_id)
        return reclaimed

    async def finish(
        self,
        provider_event_id: str,
        status: BillingEventStatus,
        *,
        org_id: str | None = None,
        provider_subscription_id: str | None = None,
        error_message: str | None = None,
    ) -> None:
        async with AsyncSession(self._engine) as session:
            await session.execute(
                update(BillingEvent)
                .where(col(BillingEvent.provider_event_id) == provider_event_id)
                .values(
                    status=status,
                    org_id=org_id,
                    provider_subscription_id=provider_subscription_id,
                    error_message=error_message,
                    processed_at=_utc_now(),
                )
            )
            await session.commit()

    async def get(self, provider_event_id: str) -> BillingEvent | None:
        async with AsyncSession(self._engine) as session:
            stmt = select(BillingEvent).where(
                col(BillingEvent.provider_event_id) == provider_event_id
            )
            result = await session.execute(stmt)
            return result.scalars().first()

"""Fixed-window rate limiters for admin-initiated seat operations."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import text

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


class RateLimiterBase(ABC):
    """Allows at most ``max_requests`` hits per key within ``window_seconds``."""

    def __init__(self, max_requests: int = 10, window_seconds: int = 60) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    @abstractmethod
    async def hit(self, key: str) -> bool:
        """Record one request for ``key``; return False when over the limit."""


class InMemoryRateLimiter(RateLimiterBase):
    """Process-local limiter. Only correct with a single worker."""

    def __init__(self, max_requests: int = 10, window_seconds: int = 60) -> None:
        super().__init__(max_requests, window_seconds)
        self._hits: dict[str, list[float]] = defaultdict(list)

    async def hit(self, key: str) -> bool:
        now = time.monotonic()
        self._hits[key] = [t for t in self._hits[key] if now - t < self.window_seconds]
        if len(self._hits[key]) >= self.max_requests:
            logger.warning("rate_limit_exceeded", key=key, limit=self.max_requests)
            return False
        self._hits[key].append(now)
        return True


class DatabaseRateLimiter(RateLimiterBase):
    """Limiter backed by a shared counter table, safe across instances.

    Uses atomic INSERT ON CONFLICT DO UPDATE so concurrent hits never lose
    increments.
    """

    def __init__(
        self, engine: AsyncEngine, max_requests: int = 10, window_seconds: int = 60
    ) -> None:
        super().__init__(max_requests, window_seconds)
        self._engine = engine

    async def hit(self, key: str) -> bool:
        window_start = int(time.time()) // self.window_seconds * self.window_seconds
        async with self._engine.begin() as conn:
            result = await conn.execute(
                text(
                    "INSERT INTO rate_limit_windows "
                    "(key, window_start, count, created_at, updated_at) "
                    "VALUES (:key, :window_start, 1, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP) "
                    "ON CONFLICT (key, window_start) "
                    "DO UPDATE SET count = rate_limit_windows.count + 1, "
                    "updated_at = CURRENT_TIMESTAMP RETURNING count"
                ),
                {"key": key, "window_start": window_start},
            )
            row = result.fetchone()
            count = int(row[0]) if row else 1
        logger.debug("rate_limit_hit", key=key, count=count, window_start=window_start)
        if count > self.max_requests:
            logger.warning("rate_limit_exceeded", key=key, count=count, limit=self.max_requests)
            return False
        return True

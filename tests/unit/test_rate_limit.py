"""Unit tests for the in-memory and database-backed rate limiters."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest

from seatsync.billing.rate_limit import DatabaseRateLimiter, InMemoryRateLimiter

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


@pytest.mark.unit
class TestInMemoryRateLimiter:
    def test_default_parameters(self) -> None:
        limiter = InMemoryRateLimiter()
        assert limiter.max_requests == 10
        assert limiter.window_seconds == 60

    async def test_allows_up_to_limit(self) -> None:
        limiter = InMemoryRateLimiter(max_requests=3)
        assert [await limiter.hit("k") for _ in range(4)] == [True, True, True, False]

    async def test_keys_are_independent(self) -> None:
        limiter = InMemoryRateLimiter(max_requests=1)
        assert await limiter.hit("a") is True
        assert await limiter.hit("b") is True
        assert await limiter.hit("a") is False

    async def test_window_expiry(self) -> None:
        limiter = InMemoryRateLimiter(max_requests=1, window_seconds=10)
        with patch("seatsync.billing.rate_limit.time.monotonic", return_value=100.0):
            assert await limiter.hit("k") is True
            assert await limiter.hit("k") is False
        with patch("seatsync.billing.rate_limit.time.monotonic", return_value=111.0):
            assert await limiter.hit("k") is True


@pytest.mark.unit
class TestDatabaseRateLimiter:
    async def test_allows_up_to_limit(self, async_engine: AsyncEngine) -> None:
        limiter = DatabaseRateLimiter(async_engine, max_requests=2, window_seconds=60)
        with patch("seatsync.billing.rate_limit.time.time", return_value=1_000_000.0):
            results = [await limiter.hit("invitations:org-1") for _ in range(3)]
        assert results == [True, True, False]

    async def test_new_window_resets_count(self, async_engine: AsyncEngine) -> None:
        limiter = DatabaseRateLimiter(async_engine, max_requests=1, window_seconds=60)
        with patch("seatsync.billing.rate_limit.time.time", return_value=1_000_020.0):
            assert await limiter.hit("k") is True
            assert await limiter.hit("k") is False
        with patch("seatsync.billing.rate_limit.time.time", return_value=1_000_080.0):
            assert await limiter.hit("k") is True

    async def test_counts_are_shared_between_instances(self, async_engine: AsyncEngine) -> None:
        first = DatabaseRateLimiter(async_engine, max_requests=1)
        second = DatabaseRateLimiter(async_engine, max_requests=1)
        with patch("seatsync.billing.rate_limit.time.time", return_value=1_000_000.0):
            assert await first.hit("k") is True
            assert await second.hit("k") is False

"""Health check endpoint logic."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import text

from seatsync import __version__

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


async def check_health(engine: AsyncEngine) -> dict[str, object]:
    """Return service health with a database probe."""
    result: dict[str, object] = {
        "status": "healthy",
        "version": __version__,
        "database": "connected",
    }
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("health_check_db_failed", error=str(exc))
        result["database"] = "unavailable"
        result["status"] = "degraded"
    return result

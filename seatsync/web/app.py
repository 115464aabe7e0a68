"""FastAPI application factory."""

from __future__ import annotations

import structlog
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncEngine

from seatsync import __version__
from seatsync.config.logging import setup_logging
from seatsync.config.settings import get_settings
from seatsync.web.dependencies import get_db_engine
from seatsync.web.errors import register_error_handlers
from seatsync.web.health import check_health
from seatsync.web.middleware import RequestIDMiddleware
from seatsync.web.routes.billing import router as billing_router
from seatsync.web.routes.members import router as members_router
from seatsync.web.routes.seats import router as seats_router
from seatsync.web.routes.webhooks import router as webhooks_router

logger = structlog.get_logger(__name__)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    setup_logging(log_level=settings.log_level, json_output=not settings.debug)

    app = FastAPI(
        title="SeatSync",
        description="Seat-billing reconciliation for multi-tenant organizations",
        version=__version__,
    )
    register_error_handlers(app)

    # Middleware (order matters: last added runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )
    app.add_middleware(RequestIDMiddleware)

    # Provider webhooks (public, signature-verified internally)
    app.include_router(webhooks_router)

    @app.get("/api/health")
    async def health_check(engine: AsyncEngine = Depends(get_db_engine)) -> dict[str, object]:
        return await check_health(engine)

    # Bearer-token routes
    for router in (seats_router, billing_router, members_router):
        app.include_router(router)

    logger.info("app_created")
    return app

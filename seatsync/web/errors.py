"""Map SeatSync errors onto HTTP responses."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from fastapi.responses import JSONResponse

from seatsync.exceptions import (
    AdmissionError,
    AuthorizationError,
    ConfigurationError,
    NotFoundError,
    ProviderError,
    ProviderTimeout,
    RateLimitExceeded,
    SeatSyncError,
    StateError,
    ValidationError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request

logger = structlog.get_logger(__name__)

# Most specific first
_STATUS_CODES: list[tuple[type[SeatSyncError], int]] = [
    (ProviderTimeout, 504),
    (ProviderError, 502),
    (RateLimitExceeded, 429),
    (AdmissionError, 409),
    (StateError, 409),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (ValidationError, 400),
    (ConfigurationError, 500),
]


def status_code_for(exc: SeatSyncError) -> int:
    for exc_type, status_code in _STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return 500


async def seatsync_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, SeatSyncError)  # nosec B101
    status_code = status_code_for(exc)
    log = logger.error if status_code >= 500 else logger.info
    log("request_failed", path=request.url.path, code=exc.code, status_code=status_code)

    headers = {}
    if isinstance(exc, RateLimitExceeded):
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(status_code=status_code, content=exc.detail(), headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SeatSyncError, seatsync_error_handler)

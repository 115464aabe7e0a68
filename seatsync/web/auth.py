"""Bearer token verification and organization role checks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import jwt
import structlog
from fastapi import HTTPException, Request

from seatsync.config.settings import get_settings

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class AuthenticatedUser:
    """Claims of a verified access token."""

    id: str  # auth provider user id (``sub``)
    email: str


def verify_access_token(token: str, secret: str, audience: str | None = None) -> AuthenticatedUser:
    """Verify an HS256 access token and return its subject.

    Raises jwt.PyJWTError on invalid or expired tokens.
    """
    options: dict[str, Any] = {"require": ["sub", "exp"]}
    if not audience:
        options["verify_aud"] = False
    payload: dict[str, Any] = jwt.decode(
        token,
        secret,
        algorithms=["HS256"],
        audience=audience or None,
        options=options,
    )
    return AuthenticatedUser(id=str(payload["sub"]), email=str(payload.get("email", "")))


async def get_current_user(request: Request) -> AuthenticatedUser:
    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token")

    settings = get_settings()
    try:
        return verify_access_token(
            auth_header[7:], settings.auth_jwt_secret, settings.auth_jwt_audience
        )
    except jwt.PyJWTError as exc:
        logger.warning("access_token_invalid", error=str(exc))
        raise HTTPException(status_code=401, detail="Invalid token") from exc

from __future__ import annotations

import logging
from typing import Any, Dict

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from .settings import get_settings, require_app_secret

_bearer_scheme = HTTPBearer(auto_error=False)

logger = logging.getLogger(__name__)


class SessionContext(BaseModel):
    user_id: int
    email: str | None
    claims: Dict[str, Any]


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def require_session(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> SessionContext:
    """Identify the caller from a session JWT signed with the application secret."""

    if credentials is None:
        raise _unauthorized("Missing bearer token")

    # The token itself is never logged.
    token = credentials.credentials
    settings = get_settings()

    try:
        payload = jwt.decode(
            token,
            require_app_secret(settings),
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as error:
        logger.warning("Session token expired")
        raise _unauthorized("Token expired") from error
    except jwt.InvalidTokenError as error:
        logger.warning("Session token invalid", exc_info=error)
        raise _unauthorized("Invalid token") from error

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError) as error:
        logger.warning("Session token subject is not a user id", extra={"sub": payload.get("sub")})
        raise _unauthorized("Token subject must be a user id") from error

    return SessionContext(user_id=user_id, email=payload.get("email"), claims=payload)

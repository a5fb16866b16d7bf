"""Synchronizer-token CSRF protection kept entirely in cookies.

``csrfSecret`` holds a per-browser secret. ``XSRF-TOKEN`` holds
``<salt>-<hash>`` where the hash is the unpadded base64url SHA-1 of
``<salt>-<secret>``; that token is HMAC-signed with the application secret
before it is sent.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
from functools import lru_cache

from fastapi import Depends, Request, Response
from itsdangerous import BadSignature, Signer

from .errors import InvalidCSRFError
from .settings import get_settings

logger = logging.getLogger(__name__)

SECRET_COOKIE_NAME = "csrfSecret"
TOKEN_COOKIE_NAME = "XSRF-TOKEN"


class CSRFConfigurationError(RuntimeError):
    """Raised when CSRF protection is used without a signing secret."""


def _hash(value: str) -> str:
    digest = hashlib.sha1(value.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def tokenize(secret: str, salt: str) -> str:
    return f"{salt}-{_hash(f'{salt}-{secret}')}"


def verify_token(secret: str, token: str) -> bool:
    salt, separator, _ = token.partition("-")
    if not separator:
        return False
    return hmac.compare_digest(token.encode(), tokenize(secret, salt).encode())


def create_token(secret: str) -> str:
    return tokenize(secret, secrets.token_hex(32))


class CSRFManager:
    def __init__(self, signing_secret: str | None, *, secure: bool = False):
        if not signing_secret:
            raise CSRFConfigurationError("APP_SECRET must be set to issue CSRF tokens")
        self._signer = Signer(signing_secret, salt="csrf-token", digest_method=hashlib.sha256)
        self._cookie_options = {
            "httponly": True,
            "path": "/",
            "samesite": "lax",
            "secure": secure,
        }

    def _sign(self, token: str) -> str:
        return self._signer.sign(token).decode("ascii")

    def _unsign(self, signed_token: str) -> str | None:
        try:
            return self._signer.unsign(signed_token).decode("ascii")
        except (BadSignature, UnicodeDecodeError):
            return None

    def _set_token_cookie(self, response: Response, secret: str) -> None:
        response.set_cookie(TOKEN_COOKIE_NAME, self._sign(create_token(secret)), **self._cookie_options)

    def setup(self, request: Request, response: Response) -> None:
        """Issue a token, reusing the browser's secret when it already has one."""

        secret = request.cookies.get(SECRET_COOKIE_NAME) or secrets.token_urlsafe(18)
        response.set_cookie(SECRET_COOKIE_NAME, secret, **self._cookie_options)
        self._set_token_cookie(response, secret)

    def verify(self, request: Request, response: Response) -> None:
        """Reject the request unless its token matches its secret; rotate the token otherwise."""

        if "cookie" not in request.headers:
            raise InvalidCSRFError()

        signed_token = request.cookies.get(TOKEN_COOKIE_NAME)
        secret = request.cookies.get(SECRET_COOKIE_NAME)
        if not signed_token or not secret:
            raise InvalidCSRFError()

        token = self._unsign(signed_token)
        if token is None:
            logger.warning("CSRF token signature invalid", extra={"path": request.url.path})
            raise InvalidCSRFError()

        if not verify_token(secret, token):
            logger.warning("CSRF token does not match secret", extra={"path": request.url.path})
            raise InvalidCSRFError()

        self._set_token_cookie(response, secret)


@lru_cache(maxsize=1)
def get_csrf_manager() -> CSRFManager:
    settings = get_settings()
    return CSRFManager(settings.app_secret, secure=settings.is_production)


def require_csrf(
    request: Request,
    response: Response,
    manager: CSRFManager = Depends(get_csrf_manager),
) -> None:
    manager.verify(request, response)

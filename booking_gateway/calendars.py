from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Optional, Union

import httpx
import jwt
from fastapi import status

from .errors import HttpError
from .platforms import GOOGLE_CALENDAR
from .schemas import DelegatedCredential, StoredCredential
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME_SECONDS = 3600


class CalendarError(HttpError):
    """Raised when a calendar provider cannot be reached."""

    status_code = status.HTTP_502_BAD_GATEWAY


class CalendarAppNotFoundError(HttpError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, app_name: str):
        super().__init__(f"{app_name} app not found")


class GoogleCalendarService:
    """Google Calendar adapter, reduced to what delegation needs."""

    def __init__(self, credential: Union[StoredCredential, DelegatedCredential], settings: Settings):
        self._credential = credential
        self._settings = settings

    def _build_assertion(self, subject: str) -> tuple[str, str]:
        key = self._credential.delegated_to.service_account_key
        token_uri = key.token_uri or self._settings.google_token_uri
        issued_at = int(time.time())
        claims = {
            "iss": key.client_email,
            "sub": subject,
            "scope": GOOGLE_CALENDAR_SCOPE,
            "aud": token_uri,
            "iat": issued_at,
            "exp": issued_at + ASSERTION_LIFETIME_SECONDS,
        }
        try:
            assertion = jwt.encode(claims, key.private_key, algorithm="RS256")
        except (jwt.PyJWTError, ValueError, TypeError) as error:
            raise CalendarError("Service-account private key is not a valid PEM key") from error
        return assertion, token_uri

    async def test_delegation_setup(self) -> bool:
        """Check that the service account may impersonate the credential's user."""

        credential = self._credential
        if not isinstance(credential, DelegatedCredential) or credential.delegated_to is None:
            logger.warning("Delegation setup probe requires a delegated credential with a service-account key")
            return False

        assertion, token_uri = self._build_assertion(credential.user_email)
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout_seconds) as client:
                response = await client.post(
                    token_uri,
                    data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as error:
            logger.warning(
                "Delegation setup probe rejected",
                extra={
                    "delegation_id": credential.delegated_to_id,
                    "status_code": error.response.status_code,
                },
            )
            return False
        except httpx.RequestError as error:
            raise CalendarError(f"Failed to contact Google: {error}") from error

        try:
            payload = response.json()
        except ValueError:
            return False
        return bool(payload.get("access_token"))


CalendarFactory = Callable[[Union[StoredCredential, DelegatedCredential], Settings], object]

CALENDAR_SERVICES: Dict[str, CalendarFactory] = {
    GOOGLE_CALENDAR.type: GoogleCalendarService,
}


def get_calendar(
    credential: Optional[Union[StoredCredential, DelegatedCredential]],
    settings: Settings | None = None,
):
    """Return the calendar adapter for a credential, or None when there is none."""

    if credential is None:
        return None
    factory = CALENDAR_SERVICES.get(credential.type)
    if factory is None:
        logger.warning("Calendar app not found", extra={"type": credential.type})
        return None
    return factory(credential, settings or get_settings())

"""Resolve domain-wide delegations into per-user credentials.

The repository lookups deliberately skip any feature flag: turning a
delegation off in the organization settings is what stops it from producing
credentials.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, TypeVar

from sqlalchemy.orm import Session

from .calendars import CalendarAppNotFoundError, get_calendar
from .credentials import (
    AnyCredential,
    build_all_credentials,
    build_delegated_calendar_credential_with_key,
    build_delegated_credentials,
    is_calendar_credential,
    is_conferencing_credential,
)
from .platforms import GOOGLE_PLATFORM_SLUG
from .repositories import CredentialRepository, DelegationRepository, UserRepository, email_domain
from .schemas import DelegatedCredential, DelegationConfig, HostWithUser, UserRef, UserWithCredentials

logger = logging.getLogger(__name__)

TUser = TypeVar("TUser", bound=UserWithCredentials)
THost = TypeVar("THost", bound=HostWithUser)


def _user_ref(user) -> UserRef:
    return UserRef(id=user.id, email=user.email)


def get_all_delegated_credentials_for_user(db: Session, user: UserRef) -> List[DelegatedCredential]:
    """Calendar and conferencing credentials the user gets from their organization's delegation."""

    config = DelegationRepository(db).find_by_email(user.email, sensitive=True)
    credentials = build_delegated_credentials(config, user)
    logger.debug("Resolved delegated credentials", extra={"user_id": user.id, "count": len(credentials)})
    return credentials


def get_all_delegated_calendar_credentials_for_user(db: Session, user: UserRef) -> List[DelegatedCredential]:
    return [credential for credential in get_all_delegated_credentials_for_user(db, user) if is_calendar_credential(credential)]


def get_all_delegated_credentials_for_user_by_app_type(
    db: Session,
    user: UserRef,
    app_type: str,
) -> List[DelegatedCredential]:
    return [credential for credential in get_all_delegated_credentials_for_user(db, user) if credential.type == app_type]


def get_all_delegated_credentials_for_user_by_app_slug(
    db: Session,
    user: UserRef,
    app_slug: str,
) -> List[DelegatedCredential]:
    return [credential for credential in get_all_delegated_credentials_for_user(db, user) if credential.app_id == app_slug]


def get_delegated_credentials_map_per_user(
    db: Session,
    organization_id: Optional[int],
    users: Sequence[UserRef],
) -> Dict[int, List[DelegatedCredential]]:
    """Map user id to delegated credentials for a batch of members of one organization.

    The email domain of the first user selects the delegation for the whole
    batch. Users missing from the result get no delegated credentials.
    """

    if organization_id is None:
        return {}
    if not users:
        raise ValueError("Cannot resolve an organization's delegation for an empty batch of users")

    domain = email_domain(users[0].email)
    config = DelegationRepository(db).find_by_org_and_domain(organization_id, domain, sensitive=True)
    if config is None or not config.enabled:
        return {}

    credentials_by_user_id: Dict[int, List[DelegatedCredential]] = {}
    for user in users:
        credentials = build_delegated_credentials(config, user)
        logger.debug("Resolved delegated credentials for user", extra={"user_id": user.id, "count": len(credentials)})
        credentials_by_user_id[user.id] = credentials
    return credentials_by_user_id


def _with_credentials(user: TUser, credentials: List[AnyCredential]) -> TUser:
    return user.model_copy(update={"credentials": credentials})


def enrich_users_with_delegated_credentials(
    db: Session,
    organization_id: Optional[int],
    users: Sequence[TUser],
) -> List[TUser]:
    if not users:
        return []
    credentials_map = get_delegated_credentials_map_per_user(db, organization_id, [_user_ref(user) for user in users])
    enriched = [
        _with_credentials(
            user,
            build_all_credentials(credentials_map.get(user.id, []), user.credentials),
        )
        for user in users
    ]
    logger.debug("Enriched users with delegated credentials", extra={"org_id": organization_id, "count": len(enriched)})
    return enriched


def enrich_hosts_with_delegated_credentials(
    db: Session,
    organization_id: Optional[int],
    hosts: Sequence[THost],
) -> List[THost]:
    if not hosts:
        return []
    credentials_map = get_delegated_credentials_map_per_user(
        db,
        organization_id,
        [_user_ref(host.user) for host in hosts],
    )
    enriched = [
        host.model_copy(
            update={
                "user": _with_credentials(
                    host.user,
                    build_all_credentials(credentials_map.get(host.user.id, []), host.user.credentials),
                )
            }
        )
        for host in hosts
    ]
    logger.debug("Enriched hosts with delegated credentials", extra={"org_id": organization_id, "count": len(enriched)})
    return enriched


def enrich_user_with_delegated_credentials_without_org_id(db: Session, user: TUser) -> TUser:
    delegated = get_all_delegated_credentials_for_user(db, _user_ref(user))
    return _with_credentials(user, build_all_credentials(delegated, user.credentials))


def enrich_user_with_delegated_conferencing_credentials_without_org_id(db: Session, user: TUser) -> TUser:
    enriched = enrich_user_with_delegated_credentials_without_org_id(db, user)
    return _with_credentials(enriched, [credential for credential in enriched.credentials if is_conferencing_credential(credential)])


def get_delegated_or_find_stored_credential(
    db: Session,
    *,
    credential_id: Optional[int],
    delegation_credential_id: Optional[str],
    delegated_credentials: Sequence[DelegatedCredential],
) -> Optional[AnyCredential]:
    """Take a delegated credential from memory or load a stored one by id."""

    if delegation_credential_id:
        return next(
            (
                credential
                for credential in delegated_credentials
                if credential.delegated_to_id == delegation_credential_id
            ),
            None,
        )
    if credential_id:
        return CredentialRepository(db).find_by_id(credential_id)
    return None


def find_delegated_credentials(db: Session, user_id: int, delegation_id: str) -> List[DelegatedCredential]:
    config = DelegationRepository(db).find_by_id(delegation_id, sensitive=True)
    user = UserRepository(db).find_by_id(user_id)
    if user is None:
        return []
    return build_delegated_credentials(config, _user_ref(user))


def find_delegated_calendar_credential(db: Session, user_id: int, delegation_id: str) -> Optional[DelegatedCredential]:
    calendar_credentials = [
        credential
        for credential in find_delegated_credentials(db, user_id, delegation_id)
        if is_calendar_credential(credential)
    ]
    if len(calendar_credentials) > 1:
        logger.error(
            "More than one calendar credential found for user and delegation",
            extra={"user_id": user_id, "delegation_id": delegation_id, "count": len(calendar_credentials)},
        )
    return calendar_credentials[0] if calendar_credentials else None


async def check_configured_in_workspace(config: DelegationConfig, user: UserRef) -> bool:
    """Probe the workspace platform to confirm the delegation can act as the user."""

    if config.workspace_platform_slug != GOOGLE_PLATFORM_SLUG:
        logger.warning(
            "Only Google workspaces can be checked, skipping",
            extra={"platform": config.workspace_platform_slug},
        )
        return False

    credential = build_delegated_calendar_credential_with_key(config, user)
    calendar = get_calendar(credential)
    if calendar is None:
        raise CalendarAppNotFoundError("Google Calendar")

    test_setup = getattr(calendar, "test_delegation_setup", None)
    if test_setup is None:
        return False
    return await test_setup()

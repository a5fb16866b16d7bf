"""Delegated credential synthesis, merging and lookup.

Delegated credentials are built in memory from an organization's
domain-wide delegation; stored credentials come from the ``credentials``
table. The two are told apart by ``delegated_to_id`` and are never matched
against each other's identifiers.
"""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Union

from .platforms import Capability, get_app_by_slug, get_platform_app
from .schemas import (
    DELEGATED_CREDENTIAL_ID,
    DelegatedCredential,
    DelegatedTo,
    DelegationConfig,
    StoredCredential,
    UserRef,
)

logger = logging.getLogger(__name__)

AnyCredential = Union[StoredCredential, DelegatedCredential]

_CONFERENCING_SUFFIXES = ("_video", "_conferencing", "_messaging")


def is_delegated_credential_id(credential_id: Optional[int]) -> bool:
    return credential_id == DELEGATED_CREDENTIAL_ID


def is_calendar_credential(credential: AnyCredential) -> bool:
    return credential.type.endswith("_calendar")


def is_conferencing_credential(credential: AnyCredential) -> bool:
    return credential.type.endswith(_CONFERENCING_SUFFIXES)


def _build_delegated_credential(
    config: DelegationConfig,
    user: UserRef,
    capability: Capability,
) -> Optional[DelegatedCredential]:
    app = get_platform_app(config.workspace_platform_slug, capability)
    if app is None:
        logger.warning(
            "Workspace platform not supported for delegation, skipping",
            extra={"platform": config.workspace_platform_slug, "capability": capability.value},
        )
        return None

    delegated_to = None
    if config.service_account_key is not None:
        delegated_to = DelegatedTo(service_account_key=config.service_account_key)

    return DelegatedCredential(
        type=app.type,
        app_id=app.slug,
        user_id=user.id,
        user_email=user.email,
        delegated_to_id=config.id,
        delegated_to=delegated_to,
    )


def build_delegated_credentials(config: Optional[DelegationConfig], user: UserRef) -> List[DelegatedCredential]:
    """Synthesize one credential per supported capability of the delegation's platform.

    Returns an empty list when there is no delegation, when it is disabled,
    or when its platform is not supported.
    """

    if config is None or not config.enabled:
        return []

    logger.debug("Building delegated credentials", extra={"delegation_id": config.id, "user_id": user.id})
    credentials = [_build_delegated_credential(config, user, capability) for capability in Capability]
    return [credential for credential in credentials if credential is not None]


def build_delegated_calendar_credential_with_key(
    config: DelegationConfig,
    user: UserRef,
) -> Optional[DelegatedCredential]:
    """Build the calendar credential, always carrying the sensitive service-account key."""

    if config.service_account_key is None:
        raise ValueError(f"Delegation {config.id} was loaded without its service-account key")

    credential = _build_delegated_credential(config, user, Capability.CALENDAR)
    if credential is None:
        return None
    return credential.model_copy(
        update={"delegated_to": DelegatedTo(service_account_key=config.service_account_key)}
    )


def build_non_delegated_credential(credential: StoredCredential) -> StoredCredential:
    return StoredCredential(
        id=credential.id,
        type=credential.type,
        app_id=credential.app_id,
        user_id=credential.user_id,
        team_id=credential.team_id,
        key=dict(credential.key),
        invalid=credential.invalid,
    )


def build_non_delegated_credentials(credentials: Iterable[StoredCredential]) -> List[StoredCredential]:
    return [build_non_delegated_credential(credential) for credential in credentials]


def build_all_credentials(
    delegated_credentials: Sequence[DelegatedCredential],
    existing_credentials: Sequence[AnyCredential],
) -> List[AnyCredential]:
    """Merge delegated and stored credentials for calendar and booking operations.

    Delegated credentials come first. A delegated credential is dropped when
    an earlier one has the same delegation and app, so enriching the same
    user more than once does not produce duplicates.
    """

    non_delegated = [
        credential
        for credential in existing_credentials
        if isinstance(credential, StoredCredential) and not is_delegated_credential_id(credential.id)
    ]
    candidates: List[AnyCredential] = [*delegated_credentials, *build_non_delegated_credentials(non_delegated)]

    merged: List[AnyCredential] = []
    for credential in candidates:
        if isinstance(credential, StoredCredential):
            merged.append(credential)
            continue
        duplicate = any(
            isinstance(kept, DelegatedCredential)
            and kept.delegated_to_id == credential.delegated_to_id
            and kept.app_id == credential.app_id
            for kept in merged
        )
        if not duplicate:
            merged.append(credential)
    return merged


def get_delegated_or_stored_credential(
    credentials: Sequence[AnyCredential],
    *,
    credential_id: Optional[int],
    delegation_id: Optional[str],
) -> Optional[AnyCredential]:
    """Find a credential in an already merged list.

    Delegated credentials only match ``delegation_id`` and stored ones only
    match ``credential_id``; unset ids never match.
    """

    for credential in credentials:
        if isinstance(credential, DelegatedCredential):
            if delegation_id and credential.delegated_to_id == delegation_id:
                return credential
        elif credential_id and credential.id == credential_id:
            return credential
    return None


def get_first_conferencing_credential(credentials: Sequence[AnyCredential]) -> Optional[AnyCredential]:
    return next((credential for credential in credentials if is_conferencing_credential(credential)), None)


def get_first_conferencing_credential_app_location(credentials: Sequence[AnyCredential]) -> Optional[str]:
    credential = get_first_conferencing_credential(credentials)
    if credential is None or credential.app_id is None:
        return None
    app = get_app_by_slug(credential.app_id)
    return app.location_type if app is not None else None

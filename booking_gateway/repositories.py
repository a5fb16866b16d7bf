"""Query helpers over the SQLAlchemy models.

Repositories take a request-scoped session and return schema objects, so the
credential and slot logic never touches ORM rows directly.
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .models import (
    Booking,
    BookingInternalNote,
    Credential,
    DomainWideDelegation,
    EventType,
    InternalNotePreset,
    User,
)
from .schemas import (
    BookingWithEventType,
    DelegationConfig,
    EventTypeRef,
    ServiceAccountKey,
    StoredCredential,
    UserWithCredentials,
)

logger = logging.getLogger(__name__)


def email_domain(email: str) -> str:
    _, _, domain = email.rpartition("@")
    if not domain:
        raise ValueError(f"Email address has no domain: {email!r}")
    return domain.lower()


def to_stored_credential(row: Credential) -> StoredCredential:
    return StoredCredential(
        id=row.id,
        type=row.type,
        app_id=row.app_id,
        user_id=row.user_id,
        team_id=row.team_id,
        key=dict(row.key or {}),
        invalid=bool(row.invalid),
    )


def to_user_with_credentials(row: User) -> UserWithCredentials:
    return UserWithCredentials(
        id=row.id,
        email=row.email,
        username=row.username,
        name=row.name,
        organization_id=row.organization_id,
        credentials=[to_stored_credential(credential) for credential in row.credentials],
    )


class DelegationRepository:
    """Lookups for domain-wide delegations.

    The service-account key is only attached when ``sensitive=True``.
    """

    def __init__(self, db: Session):
        self._db = db

    @staticmethod
    def _to_config(row: Optional[DomainWideDelegation], sensitive: bool) -> Optional[DelegationConfig]:
        if row is None:
            return None
        key = None
        if sensitive and row.service_account_key:
            key = ServiceAccountKey.model_validate(row.service_account_key)
        return DelegationConfig(
            id=row.id,
            workspace_platform_slug=row.workspace_platform_slug,
            enabled=bool(row.enabled),
            service_account_key=key,
        )

    def find_by_org_and_domain(
        self,
        organization_id: int,
        domain: str,
        *,
        sensitive: bool = False,
    ) -> Optional[DelegationConfig]:
        row = (
            self._db.query(DomainWideDelegation)
            .filter(
                DomainWideDelegation.organization_id == organization_id,
                func.lower(DomainWideDelegation.domain) == domain.lower(),
            )
            .first()
        )
        return self._to_config(row, sensitive)

    def find_by_email(self, email: str, *, sensitive: bool = False) -> Optional[DelegationConfig]:
        """Resolve the delegation of the organization the member with this exact email belongs to."""

        user = self._db.query(User).filter(User.email == email).first()
        if user is None or user.organization_id is None:
            logger.debug("No organization member for email", extra={"email": email})
            return None
        return self.find_by_org_and_domain(user.organization_id, email_domain(email), sensitive=sensitive)

    def find_by_id(self, delegation_id: str, *, sensitive: bool = False) -> Optional[DelegationConfig]:
        row = self._db.query(DomainWideDelegation).filter(DomainWideDelegation.id == delegation_id).first()
        return self._to_config(row, sensitive)


class UserRepository:
    def __init__(self, db: Session):
        self._db = db

    def find_by_id(self, user_id: int) -> Optional[User]:
        return self._db.query(User).filter(User.id == user_id).first()

    def find_by_username(self, username: str) -> Optional[User]:
        return self._db.query(User).filter(User.username == username).first()


class EventTypeRepository:
    def __init__(self, db: Session):
        self._db = db

    @staticmethod
    def _to_ref(row: Optional[EventType]) -> Optional[EventTypeRef]:
        if row is None:
            return None
        return EventTypeRef(id=row.id, slug=row.slug, length=row.length, team_id=row.team_id)

    def get_by_id(self, event_type_id: int) -> Optional[EventTypeRef]:
        return self._to_ref(self._db.query(EventType).filter(EventType.id == event_type_id).first())

    def get_by_slug_for_user(self, user_id: int, slug: str) -> Optional[EventTypeRef]:
        row = (
            self._db.query(EventType)
            .filter(EventType.user_id == user_id, EventType.slug == slug)
            .first()
        )
        return self._to_ref(row)


class CredentialRepository:
    def __init__(self, db: Session):
        self._db = db

    def find_by_id(self, credential_id: int) -> Optional[StoredCredential]:
        row = self._db.query(Credential).filter(Credential.id == credential_id).first()
        if row is None:
            return None
        return to_stored_credential(row)


class BookingRepository:
    def __init__(self, db: Session):
        self._db = db

    def get_with_event_type(self, booking_id: int) -> Optional[BookingWithEventType]:
        booking = self._db.query(Booking).filter(Booking.id == booking_id).first()
        if booking is None:
            return None
        event_type = booking.event_type
        if event_type is None:
            return BookingWithEventType(id=booking.id)
        return BookingWithEventType(
            id=booking.id,
            host_user_ids=[host.user_id for host in event_type.hosts],
            owner_id=event_type.owner_id,
        )


class InternalNoteRepository:
    def __init__(self, db: Session):
        self._db = db

    def find_preset(self, preset_id: int, team_id: Optional[int]) -> Optional[InternalNotePreset]:
        return (
            self._db.query(InternalNotePreset)
            .filter(InternalNotePreset.id == preset_id, InternalNotePreset.team_id == team_id)
            .first()
        )

    def create(
        self,
        *,
        booking_id: int,
        created_by: int,
        text: Optional[str] = None,
        note_preset_id: Optional[int] = None,
    ) -> BookingInternalNote:
        note = BookingInternalNote(
            booking_id=booking_id,
            note_preset_id=note_preset_id,
            text=text,
            created_by=created_by,
        )
        self._db.add(note)
        self._db.commit()
        self._db.refresh(note)
        return note

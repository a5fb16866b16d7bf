"""Database models for users, credentials, event types and bookings."""
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship, validates

from .database import Base
from .encrypted_type import EncryptedJSON


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    username = Column(String, unique=True, nullable=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=True)
    organization_id = Column(Integer, nullable=True, index=True)

    credentials = relationship("Credential", back_populates="user", order_by="Credential.id")


class Credential(Base):
    """A stored provider credential. Delegated credentials are never persisted."""

    __tablename__ = "credentials"

    id = Column(Integer, primary_key=True)
    type = Column(String, nullable=False)
    app_id = Column(String, nullable=True)
    key = Column(JSON, nullable=False, default=dict)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    team_id = Column(Integer, nullable=True)
    invalid = Column(Boolean, nullable=False, default=False)

    user = relationship("User", back_populates="credentials")


class DomainWideDelegation(Base):
    """An organization's grant to act on behalf of members of a verified domain.

    The service-account key is encrypted at rest and only loaded by the
    sensitive repository lookups.
    """

    __tablename__ = "domain_wide_delegations"
    __table_args__ = (UniqueConstraint("organization_id", "domain"),)

    id = Column(String, primary_key=True)
    organization_id = Column(Integer, nullable=False, index=True)
    domain = Column(String, nullable=False)
    workspace_platform_slug = Column(String, nullable=False)
    enabled = Column(Boolean, nullable=False, default=False)
    service_account_key = Column(EncryptedJSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    @validates("domain")
    def _normalize_domain(self, key, value):
        return value.strip().lower() if value else value


class EventType(Base):
    __tablename__ = "event_types"
    __table_args__ = (UniqueConstraint("user_id", "slug"),)

    id = Column(Integer, primary_key=True)
    slug = Column(String, nullable=False)
    title = Column(String, nullable=False)
    length = Column(Integer, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    team_id = Column(Integer, nullable=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    hosts = relationship("Host", back_populates="event_type")


class Host(Base):
    __tablename__ = "hosts"

    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    event_type_id = Column(Integer, ForeignKey("event_types.id"), primary_key=True)

    user = relationship("User")
    event_type = relationship("EventType", back_populates="hosts")


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True)
    uid = Column(String, unique=True, nullable=False)
    event_type_id = Column(Integer, ForeignKey("event_types.id"), nullable=True)

    event_type = relationship("EventType")


class InternalNotePreset(Base):
    __tablename__ = "internal_note_presets"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    team_id = Column(Integer, nullable=True, index=True)


class BookingInternalNote(Base):
    __tablename__ = "booking_internal_notes"

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    note_preset_id = Column(Integer, ForeignKey("internal_note_presets.id"), nullable=True)
    text = Column(Text, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

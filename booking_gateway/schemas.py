from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# Delegated credentials are never persisted, so they all share this placeholder id.
DELEGATED_CREDENTIAL_ID = -1
NOOP_DELEGATION_ACCESS_TOKEN = "NOOP_UNUSED_DELEGATION_TOKEN"


class ServiceAccountKey(BaseModel):
    client_email: str
    client_id: str
    private_key: str
    token_uri: Optional[str] = None

    model_config = ConfigDict(extra='allow')


class DelegationConfig(BaseModel):
    id: str
    workspace_platform_slug: str = Field(alias='workspacePlatformSlug')
    enabled: bool
    service_account_key: Optional[ServiceAccountKey] = Field(default=None, alias='serviceAccountKey')

    model_config = ConfigDict(populate_by_name=True)


class UserRef(BaseModel):
    id: int
    email: str

    model_config = ConfigDict(frozen=True)


class DelegatedTo(BaseModel):
    service_account_key: ServiceAccountKey = Field(alias='serviceAccountKey')

    model_config = ConfigDict(populate_by_name=True)


class StoredCredential(BaseModel):
    kind: Literal['stored'] = 'stored'
    id: int
    type: str
    app_id: Optional[str] = Field(default=None, alias='appId')
    user_id: Optional[int] = Field(default=None, alias='userId')
    team_id: Optional[int] = Field(default=None, alias='teamId')
    key: Dict[str, Any] = Field(default_factory=dict)
    invalid: bool = False
    delegated_to_id: None = Field(default=None, alias='delegatedToId')

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class DelegatedCredential(BaseModel):
    kind: Literal['delegated'] = 'delegated'
    id: int = DELEGATED_CREDENTIAL_ID
    type: str
    app_id: str = Field(alias='appId')
    user_id: int = Field(alias='userId')
    user_email: str = Field(alias='userEmail')
    team_id: None = Field(default=None, alias='teamId')
    key: Dict[str, Any] = Field(default_factory=lambda: {'access_token': NOOP_DELEGATION_ACCESS_TOKEN})
    invalid: bool = False
    delegated_to_id: str = Field(alias='delegatedToId')
    delegated_to: Optional[DelegatedTo] = Field(default=None, alias='delegatedTo')

    model_config = ConfigDict(populate_by_name=True, frozen=True)


CalendarCredential = Annotated[Union[StoredCredential, DelegatedCredential], Field(discriminator='kind')]


class UserWithCredentials(BaseModel):
    id: int
    email: str
    credentials: List[CalendarCredential] = Field(default_factory=list)

    model_config = ConfigDict(extra='allow')


class HostWithUser(BaseModel):
    user: UserWithCredentials

    model_config = ConfigDict(extra='allow')


class EventTypeRef(BaseModel):
    id: int
    slug: str
    length: int
    team_id: Optional[int] = None


class GetSlotsInput(BaseModel):
    """Slot query as received; the event type is referenced by id, by slug and username, or not at all."""

    start: str
    end: str
    event_type_id: Optional[int] = Field(default=None, alias='eventTypeId')
    event_type_slug: Optional[str] = Field(default=None, alias='eventTypeSlug')
    username: Optional[str] = None
    usernames: Optional[List[str]] = None
    organization_slug: Optional[str] = Field(default=None, alias='organizationSlug')
    duration: Optional[int] = None
    time_zone: Optional[str] = Field(default=None, alias='timeZone')

    model_config = ConfigDict(populate_by_name=True)


class SlotQuery(BaseModel):
    is_team_event: bool = Field(alias='isTeamEvent')
    start_time: str = Field(alias='startTime')
    end_time: str = Field(alias='endTime')
    duration: Optional[int] = None
    event_type_id: int = Field(alias='eventTypeId')
    event_type_slug: str = Field(alias='eventTypeSlug')
    username_list: List[str] = Field(default_factory=list, alias='usernameList')
    time_zone: Optional[str] = Field(default=None, alias='timeZone')
    org_slug: Optional[str] = Field(default=None, alias='orgSlug')

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class InternalNoteInput(BaseModel):
    id: int
    name: str
    value: Optional[str] = None


class CreateInternalNoteRequest(BaseModel):
    internal_note: InternalNoteInput = Field(alias='internalNote')
    team_id: Optional[int] = Field(default=None, alias='teamId')

    model_config = ConfigDict(populate_by_name=True)


class BookingWithEventType(BaseModel):
    id: int
    host_user_ids: List[int] = Field(default_factory=list)
    owner_id: Optional[int] = None


class InternalNoteResponse(BaseModel):
    id: int
    booking_id: int = Field(alias='bookingId')
    note_preset_id: Optional[int] = Field(default=None, alias='notePresetId')
    text: Optional[str] = None
    created_by: int = Field(alias='createdBy')
    created_at: datetime = Field(alias='createdAt')

    model_config = ConfigDict(populate_by_name=True)

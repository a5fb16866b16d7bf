"""Normalize incoming slot queries before availability is computed."""
from __future__ import annotations

import logging
from datetime import datetime

from dateutil import tz
from dateutil.parser import isoparse

from .errors import BadRequestError, NotFoundError
from .repositories import EventTypeRepository, UserRepository
from .schemas import EventTypeRef, GetSlotsInput, SlotQuery

logger = logging.getLogger(__name__)

# Used when a query names no event type, e.g. a group booking across usernames.
DYNAMIC_EVENT_TYPE = EventTypeRef(id=0, slug="dynamic", length=30, team_id=None)


def _to_iso(value: datetime) -> str:
    return f"{value.strftime('%Y-%m-%dT%H:%M:%S')}.{value.microsecond // 1000:03d}Z"


def adjust_end_time(end_time: str) -> str:
    """Read ``end_time`` in UTC and move an exact midnight to 23:59:59 of the same day."""

    try:
        value = isoparse(end_time)
    except ValueError as error:
        raise BadRequestError(f"Invalid end time: {end_time}") from error

    if value.tzinfo is None:
        value = value.replace(tzinfo=tz.UTC)
    else:
        value = value.astimezone(tz.UTC)

    if value.hour == 0 and value.minute == 0 and value.second == 0:
        value = value.replace(hour=23, minute=59, second=59)
    return _to_iso(value)


class SlotInputService:
    def __init__(self, event_types: EventTypeRepository, users: UserRepository):
        self._event_types = event_types
        self._users = users

    def transform_get_slots_query(self, query: GetSlotsInput) -> SlotQuery:
        event_type = self._get_event_type(query)
        if event_type is None:
            raise NotFoundError("Event Type not found")

        return SlotQuery(
            is_team_event=bool(event_type.team_id),
            start_time=query.start,
            end_time=adjust_end_time(query.end),
            duration=query.duration,
            event_type_id=event_type.id,
            event_type_slug=event_type.slug,
            username_list=list(query.usernames or []),
            time_zone=query.time_zone,
            org_slug=query.organization_slug,
        )

    def _get_event_type(self, query: GetSlotsInput) -> EventTypeRef | None:
        if query.event_type_id is not None:
            return self._event_types.get_by_id(query.event_type_id)

        if query.event_type_slug is not None:
            if not query.username:
                raise BadRequestError("username is required when eventTypeSlug is given")
            user = self._users.find_by_username(query.username)
            if user is None:
                raise NotFoundError(f"User with username {query.username} not found")
            return self._event_types.get_by_slug_for_user(user.id, query.event_type_slug)

        logger.debug("No event type in slot query, using dynamic event type")
        if query.duration:
            return DYNAMIC_EVENT_TYPE.model_copy(update={"length": query.duration})
        return DYNAMIC_EVENT_TYPE

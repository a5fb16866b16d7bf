from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from .errors import ForbiddenError, NotFoundError
from .models import BookingInternalNote
from .repositories import InternalNoteRepository
from .schemas import BookingWithEventType, InternalNoteInput

logger = logging.getLogger(__name__)

# Preset id sent by the client for the free-text "Other" option.
FREEFORM_NOTE_ID = -1


def handle_internal_note(
    db: Session,
    *,
    internal_note: InternalNoteInput,
    booking: BookingWithEventType,
    user_id: int,
    team_id: Optional[int] = None,
) -> BookingInternalNote:
    """Attach an internal note to a booking on behalf of a host or the event-type owner."""

    user_is_host = user_id in booking.host_user_ids
    user_is_owner = booking.owner_id is not None and booking.owner_id == user_id
    if not user_is_host and not user_is_owner:
        logger.warning("Internal note rejected", extra={"booking_id": booking.id, "user_id": user_id})
        raise ForbiddenError("You do not have permission to add an internal note to this booking.")

    notes = InternalNoteRepository(db)

    if internal_note.id == FREEFORM_NOTE_ID:
        return notes.create(booking_id=booking.id, created_by=user_id, text=internal_note.value)

    if notes.find_preset(internal_note.id, team_id) is None:
        raise NotFoundError(f"Internal note preset {internal_note.id} not found")

    return notes.create(booking_id=booking.id, created_by=user_id, note_preset_id=internal_note.id)

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .auth import SessionContext, require_session
from .csrf import CSRFManager, get_csrf_manager, require_csrf
from .database import get_db
from .delegation import (
    check_configured_in_workspace,
    enrich_user_with_delegated_credentials_without_org_id,
    enrich_users_with_delegated_credentials,
)
from .errors import HttpError, NotFoundError, translate_http_error
from .internal_notes import handle_internal_note
from .repositories import (
    BookingRepository,
    DelegationRepository,
    EventTypeRepository,
    UserRepository,
    to_user_with_credentials,
)
from .schemas import CreateInternalNoteRequest, GetSlotsInput, InternalNoteResponse, UserRef
from .slots import SlotInputService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Refuse to boot without a CSRF signing secret.
    get_csrf_manager()
    logger.info("Booking gateway starting up")
    yield


app = FastAPI(title="Booking Gateway", lifespan=lifespan)

# Credential fields that carry secrets and never leave the service.
_PRIVATE_CREDENTIAL_FIELDS = {"key", "delegated_to"}


@app.exception_handler(HttpError)
async def http_error_handler(request: Request, exc: HttpError):
    error = translate_http_error(exc)
    return JSONResponse(
        status_code=error.status_code,
        content={"detail": error.detail}
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Validation error: {exc.errors()}")
    return JSONResponse(
        status_code=400,
        content={"detail": exc.errors()}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": str(exc)}
    )


def get_slot_input_service(db: Session = Depends(get_db)) -> SlotInputService:
    return SlotInputService(EventTypeRepository(db), UserRepository(db))


@app.get("/healthz", response_model=Dict[str, Any])
def healthcheck() -> Dict[str, Any]:
    """Expose a simple health endpoint for container orchestration."""
    return {"status": "ok"}


@app.get("/csrf", response_model=Dict[str, Any])
def issue_csrf_token(
    request: Request,
    response: Response,
    manager: CSRFManager = Depends(get_csrf_manager),
) -> Dict[str, Any]:
    """Set the CSRF secret and token cookies for the browser."""
    manager.setup(request, response)
    return {"status": "ok"}


@app.get("/slots/query", response_model=Dict[str, Any])
def normalize_slots_query(
    start: str,
    end: str,
    event_type_id: Optional[int] = Query(default=None, alias="eventTypeId"),
    event_type_slug: Optional[str] = Query(default=None, alias="eventTypeSlug"),
    username: Optional[str] = None,
    usernames: Optional[List[str]] = Query(default=None),
    organization_slug: Optional[str] = Query(default=None, alias="organizationSlug"),
    duration: Optional[int] = None,
    time_zone: Optional[str] = Query(default=None, alias="timeZone"),
    service: SlotInputService = Depends(get_slot_input_service),
) -> Dict[str, Any]:
    query = GetSlotsInput(
        start=start,
        end=end,
        event_type_id=event_type_id,
        event_type_slug=event_type_slug,
        username=username,
        usernames=usernames,
        organization_slug=organization_slug,
        duration=duration,
        time_zone=time_zone,
    )
    return service.transform_get_slots_query(query).model_dump(by_alias=True)


@app.get("/me/credentials", response_model=List[Dict[str, Any]])
def list_my_credentials(
    org_id: Optional[int] = Query(default=None, alias="orgId"),
    session: SessionContext = Depends(require_session),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    """List the caller's stored credentials merged with those from their organization's delegation."""
    row = UserRepository(db).find_by_id(session.user_id)
    if row is None:
        raise NotFoundError(f"User {session.user_id} not found")

    user = to_user_with_credentials(row)
    if org_id is None:
        enriched = enrich_user_with_delegated_credentials_without_org_id(db, user)
    else:
        enriched = enrich_users_with_delegated_credentials(db, org_id, [user])[0]

    return [
        credential.model_dump(by_alias=True, exclude=_PRIVATE_CREDENTIAL_FIELDS)
        for credential in enriched.credentials
    ]


@app.post("/delegations/{delegation_id}/check", response_model=Dict[str, Any])
async def check_delegation(
    delegation_id: str,
    session: SessionContext = Depends(require_session),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Probe the workspace platform to confirm the delegation can act as the caller."""
    config = DelegationRepository(db).find_by_id(delegation_id, sensitive=True)
    if config is None:
        raise NotFoundError(f"Delegation {delegation_id} not found")
    if config.service_account_key is None:
        raise NotFoundError(f"Delegation {delegation_id} has no service-account key")

    row = UserRepository(db).find_by_id(session.user_id)
    if row is None:
        raise NotFoundError(f"User {session.user_id} not found")

    configured = await check_configured_in_workspace(config, UserRef(id=row.id, email=row.email))
    return {"delegationId": delegation_id, "configured": configured}


@app.post(
    "/bookings/{booking_id}/internal-notes",
    response_model=Dict[str, Any],
    dependencies=[Depends(require_csrf)],
)
def create_internal_note(
    booking_id: int,
    payload: CreateInternalNoteRequest,
    session: SessionContext = Depends(require_session),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    booking = BookingRepository(db).get_with_event_type(booking_id)
    if booking is None:
        raise NotFoundError(f"Booking {booking_id} not found")

    note = handle_internal_note(
        db,
        internal_note=payload.internal_note,
        booking=booking,
        user_id=session.user_id,
        team_id=payload.team_id,
    )
    response = InternalNoteResponse(
        id=note.id,
        booking_id=note.booking_id,
        note_preset_id=note.note_preset_id,
        text=note.text,
        created_by=note.created_by,
        created_at=note.created_at,
    )
    return response.model_dump(by_alias=True, mode="json")

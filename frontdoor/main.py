import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import Body, Depends, FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from frontdoor.auth import ensure_authorized, get_subject, require_subject
from frontdoor.calls import (
    answer_call,
    end_call,
    find_door_bell,
    get_call_status,
    get_door_bell,
    ring_door_bell,
)
from frontdoor.config import settings
from frontdoor.directory import (
    get_building,
    get_household,
    list_building_door_bells,
    list_household_active_calls,
)
from frontdoor.events import InMemoryEventBus
from frontdoor.exceptions import FrontDoorError, InvalidInput, StoreFailure
from frontdoor.logging_utils import RequestLoggingMiddleware, log_call_data, setup_logging
from frontdoor.messaging import list_messages, post_message, validate_sender
from frontdoor.metrics import (
    get_metrics,
    get_metrics_content_type,
    record_call_transition,
    record_message,
)
from frontdoor.models import DoorBellCallSession, DoorBellMessage, MessageSender
from frontdoor.notifications import Notifier
from frontdoor.policy import Action, Subject
from frontdoor.scanner import route_timed_out_calls, run_periodic_scanner
from frontdoor.schemas import (
    ActiveCall,
    ActiveCallsResponse,
    CallActionResponse,
    CallSessionResponse,
    CallStatusResponse,
    CheckTimeoutResponse,
    DoorBellEntry,
    DoorBellListResponse,
    ErrorResponse,
    HealthResponse,
    HouseholdSummary,
    MessageResponse,
    MessagesResponse,
    PostMessageRequest,
    PostMessageResponse,
    RingData,
    RingRequest,
    RingResponse,
    RungDoorBell,
)
from frontdoor.storage import check_db_health, get_db, init_db
from frontdoor.utils import format_ts


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: create tables, wire the event bus and notifier, start the scanner tick
    - Shutdown: stop the scanner tick
    """
    init_db()
    app.state.event_bus = InMemoryEventBus()
    app.state.notifier = Notifier(app.state.event_bus)

    scanner_task = None
    if settings.SCANNER_INTERVAL_SECONDS > 0:
        scanner_task = asyncio.create_task(
            run_periodic_scanner(settings.SCANNER_INTERVAL_SECONDS, app.state.notifier)
        )
    yield
    if scanner_task is not None:
        scanner_task.cancel()
        with suppress(asyncio.CancelledError):
            await scanner_task


app = FastAPI(
    title="Front Door API",
    description="Door bell call sessions, guest messaging and front desk routing",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid input or no active call"},
    404: {"model": ErrorResponse, "description": "Door bell or building not found"},
}
PROTECTED_RESPONSES = {
    **ERROR_RESPONSES,
    401: {"model": ErrorResponse, "description": "Missing or invalid credential"},
    403: {"model": ErrorResponse, "description": "Not allowed for this resource"},
}


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


# =============================================================================
# Error Handlers
# =============================================================================

@app.exception_handler(FrontDoorError)
async def front_door_error_handler(request: Request, exc: FrontDoorError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report request validation failures as 400 with the first offending field."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = [
        str(part) for part in first.get("loc", ())
        if part not in ("body", "query", "path", "header")
    ]
    error = InvalidInput(first.get("msg", "Invalid request"), field=".".join(location) or None)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(SQLAlchemyError)
async def store_failure_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    route = request.scope.get("route")
    logger.error(
        "Store failure",
        extra={
            "operation": getattr(route, "name", request.url.path),
            "path_params": dict(request.path_params),
            "error": str(exc),
        },
    )
    error = StoreFailure(str(exc))
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# =============================================================================
# Serialization helpers
# =============================================================================

def _message_response(message: DoorBellMessage) -> MessageResponse:
    return MessageResponse(
        id=message.message_id,
        text=message.text,
        sender=message.sender,
        timestamp=format_ts(message.created_at),
    )


def _call_session_response(call_session: DoorBellCallSession) -> CallSessionResponse:
    return CallSessionResponse(
        id=call_session.id,
        door_bell_id=call_session.door_bell_id,
        status=call_session.status,
        started_at=format_ts(call_session.started_at),
        connected_at=format_ts(call_session.connected_at),
        ended_at=format_ts(call_session.ended_at),
    )


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse, response_model_exclude_none=True)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. DB is reachable and schema is applied
    2. SESSION_SECRET is set (non-empty)

    Otherwise returns 503 (Service Unavailable).
    """
    if not settings.SESSION_SECRET:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="SESSION_SECRET not configured")

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="Database not reachable or schema not applied")

    return HealthResponse(status="ready")


# =============================================================================
# Building Door Bell Routes
# =============================================================================

@app.get("/building/{building_id}/door-bell", response_model=DoorBellListResponse, responses=ERROR_RESPONSES)
def list_door_bells(building_id: str, db: Session = Depends(get_db)) -> DoorBellListResponse:
    """
    Public directory of a building's enabled door bells.

    Front door panels use it to find the door bell id to ring and poll.
    """
    door_bells = list_building_door_bells(db, building_id)
    return DoorBellListResponse(
        data=[
            DoorBellEntry(
                id=door_bell.id,
                door_bell_number=door_bell.door_bell_number,
                is_enabled=door_bell.is_enabled,
                household=HouseholdSummary(
                    id=door_bell.household.id,
                    name=door_bell.household.name,
                    unit_number=door_bell.household.unit_number,
                ) if door_bell.household else None,
            )
            for door_bell in door_bells
        ]
    )


@app.post("/building/{building_id}/door-bell/ring", response_model=RingResponse, responses=ERROR_RESPONSES)
def ring(
    building_id: str,
    request: Request,
    payload: RingRequest = Body(...),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> RingResponse:
    """
    Guest presses a door bell (public).

    Opens a ringing call unless the door bell already has a ringing or
    connected call, in which case that call is returned with created=false.
    """
    door_bell = find_door_bell(
        db,
        building_id,
        door_bell_id=payload.door_bell_id,
        door_bell_number=payload.door_bell_number,
    )
    call_session, created = ring_door_bell(db, door_bell)

    if created:
        record_call_transition("rung")
        try:
            notifier.door_bell_rung(db, call_session)
        except Exception as e:
            db.rollback()
            logger.error(f"Household notification failed for call session {call_session.id}: {e}")

    log_call_data(
        request,
        door_bell_id=door_bell.id,
        call_session_id=call_session.id,
        result="rung" if created else "joined",
    )
    return RingResponse(
        message="Door bell rung successfully" if created else "Call already in progress",
        data=RingData(
            call_session_id=call_session.id,
            created=created,
            door_bell=RungDoorBell(
                id=door_bell.id,
                door_bell_number=door_bell.door_bell_number,
                last_rung_at=format_ts(door_bell.last_rung_at),
            ),
        ),
    )


@app.post(
    "/building/{building_id}/door-bell/check-timeout",
    response_model=CheckTimeoutResponse,
    responses=PROTECTED_RESPONSES,
)
def check_timeout(
    building_id: str,
    request: Request,
    subject: Subject = Depends(require_subject),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> CheckTimeoutResponse:
    """
    Route this building's unanswered calls to the front desk.

    Accepts a signed-in user (X-Session-Token) or the scheduler's bearer
    token. Safe to call repeatedly or concurrently: each timed-out call is
    routed exactly once across all invocations.
    """
    building = get_building(db, building_id)
    ensure_authorized(subject, Action.BUILDING_CHECK_TIMEOUT, building)

    routed_count = route_timed_out_calls(db, building_id=building.id, notifier=notifier)
    log_call_data(request, result="routed" if routed_count else "none")
    return CheckTimeoutResponse(
        routed_count=routed_count,
        message=f"Routed {routed_count} timed-out call(s) to front desk",
    )


@app.post(
    "/building/{building_id}/door-bell/{door_bell_id}/answer",
    response_model=CallActionResponse,
    responses=PROTECTED_RESPONSES,
)
def answer(
    building_id: str,
    door_bell_id: str,
    request: Request,
    subject: Subject = Depends(require_subject),
    db: Session = Depends(get_db),
) -> CallActionResponse:
    """Household answers the ringing call at one of its door bells."""
    door_bell = find_door_bell(db, building_id, door_bell_id=door_bell_id)
    ensure_authorized(subject, Action.CALL_ANSWER, door_bell)

    call_session = answer_call(db, door_bell.id)
    record_call_transition("answered")
    log_call_data(request, door_bell_id=door_bell.id, call_session_id=call_session.id, result="answered")
    return CallActionResponse(call_session=_call_session_response(call_session))


@app.post(
    "/building/{building_id}/door-bell/{door_bell_id}/end-call",
    response_model=CallActionResponse,
    responses=PROTECTED_RESPONSES,
)
def end(
    building_id: str,
    door_bell_id: str,
    request: Request,
    subject: Subject = Depends(require_subject),
    db: Session = Depends(get_db),
) -> CallActionResponse:
    """Household hangs up the connected call."""
    door_bell = find_door_bell(db, building_id, door_bell_id=door_bell_id)
    ensure_authorized(subject, Action.CALL_END, door_bell)

    call_session = end_call(db, door_bell.id)
    record_call_transition("ended")
    log_call_data(request, door_bell_id=door_bell.id, call_session_id=call_session.id, result="ended")
    return CallActionResponse(call_session=_call_session_response(call_session))


@app.post(
    "/building/{building_id}/door-bell/{door_bell_id}/message",
    response_model=PostMessageResponse,
    responses=PROTECTED_RESPONSES,
)
def post_household_message(
    building_id: str,
    door_bell_id: str,
    request: Request,
    payload: PostMessageRequest = Body(...),
    subject: Subject = Depends(require_subject),
    db: Session = Depends(get_db),
) -> PostMessageResponse:
    """Household replies on the connected call; from defaults to household."""
    door_bell = find_door_bell(db, building_id, door_bell_id=door_bell_id)
    ensure_authorized(subject, Action.CALL_MESSAGE, door_bell)

    sender = payload.sender or MessageSender.HOUSEHOLD.value
    message = post_message(db, door_bell.id, payload.message, sender)
    record_message(message.sender)
    log_call_data(request, door_bell_id=door_bell.id, call_session_id=message.call_session_id, result="posted")
    return PostMessageResponse(message=_message_response(message))


# =============================================================================
# Public Door Bell Call Routes
# =============================================================================

@app.get(
    "/door-bell/{door_bell_id}/call-status",
    response_model=CallStatusResponse,
    response_model_exclude_none=True,
    responses=ERROR_RESPONSES,
)
def call_status(door_bell_id: str, db: Session = Depends(get_db)) -> CallStatusResponse:
    """
    Collapsed call status for polling clients.

    Returns ringing or connected with the session id and timestamps, or just
    ended when there is no active call (timed out, routed, hung up, or never rung).
    """
    get_door_bell(db, door_bell_id)
    view = get_call_status(db, door_bell_id)
    return CallStatusResponse(
        status=view.status,
        call_session_id=view.call_session_id,
        started_at=format_ts(view.started_at),
        connected_at=format_ts(view.connected_at),
    )


@app.get("/door-bell/{door_bell_id}/messages", response_model=MessagesResponse, responses=ERROR_RESPONSES)
def messages(door_bell_id: str, db: Session = Depends(get_db)) -> MessagesResponse:
    """Transcript of the connected call, oldest first. Empty when no call is connected."""
    get_door_bell(db, door_bell_id)
    return MessagesResponse(messages=[_message_response(m) for m in list_messages(db, door_bell_id)])


@app.post("/door-bell/{door_bell_id}/end-call", response_model=CallActionResponse, responses=ERROR_RESPONSES)
def end_public(door_bell_id: str, request: Request, db: Session = Depends(get_db)) -> CallActionResponse:
    """Guest hangs up the connected call from the front door panel."""
    door_bell = get_door_bell(db, door_bell_id)

    call_session = end_call(db, door_bell.id)
    record_call_transition("ended")
    log_call_data(request, door_bell_id=door_bell.id, call_session_id=call_session.id, result="ended")
    return CallActionResponse(call_session=_call_session_response(call_session))


@app.post("/door-bell/{door_bell_id}/message", response_model=PostMessageResponse, responses=PROTECTED_RESPONSES)
def post_public_message(
    door_bell_id: str,
    request: Request,
    payload: PostMessageRequest = Body(...),
    subject: Optional[Subject] = Depends(get_subject),
    db: Session = Depends(get_db),
) -> PostMessageResponse:
    """
    Post to the connected call.

    from is required here. Guests send from=guest without a credential;
    from=household needs a session authorized for the door bell.
    """
    door_bell = get_door_bell(db, door_bell_id)
    sender = validate_sender(payload.sender)
    if sender == MessageSender.HOUSEHOLD.value:
        ensure_authorized(subject, Action.CALL_MESSAGE, door_bell)

    message = post_message(db, door_bell.id, payload.message, sender)
    record_message(message.sender)
    log_call_data(request, door_bell_id=door_bell.id, call_session_id=message.call_session_id, result="posted")
    return PostMessageResponse(message=_message_response(message))


# =============================================================================
# Household Routes
# =============================================================================

@app.get(
    "/household/{household_id}/doorbell-calls",
    response_model=ActiveCallsResponse,
    responses=PROTECTED_RESPONSES,
)
def household_calls(
    household_id: str,
    subject: Subject = Depends(require_subject),
    db: Session = Depends(get_db),
) -> ActiveCallsResponse:
    """Ringing and connected calls at the household's door bells, for the household panel."""
    household = get_household(db, household_id)
    ensure_authorized(subject, Action.HOUSEHOLD_CALLS_READ, household)

    return ActiveCallsResponse(
        calls=[
            ActiveCall(
                id=call_session.id,
                door_bell_id=call_session.door_bell_id,
                door_bell_number=call_session.door_bell.door_bell_number,
                status=call_session.status,
                started_at=format_ts(call_session.started_at),
                connected_at=format_ts(call_session.connected_at),
                messages=[_message_response(m) for m in transcript],
            )
            for call_session, transcript in list_household_active_calls(db, household.id)
        ]
    )


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )

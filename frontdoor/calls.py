"""
Door bell call session store.

Owns the call lifecycle:

    ringing -> connected -> ended
    ringing -> timed_out -> routed   (scanner, see scanner.py)

Every state change is a single conditional UPDATE guarded on the current
status, so two racing requests (answer vs. timeout, or two answers) cannot
both win. Sessions are never deleted here.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from frontdoor.exceptions import InvalidInput, NoActiveSession, NotFound
from frontdoor.models import (
    ACTIVE_STATUSES,
    CallStatus,
    DoorBell,
    DoorBellCallSession,
)
from frontdoor.utils import utcnow

logger = logging.getLogger(__name__)


# Legal forward edges. Anything else, including every backward move, is rejected.
TRANSITIONS = {
    CallStatus.RINGING: frozenset({CallStatus.CONNECTED, CallStatus.TIMED_OUT, CallStatus.ROUTED}),
    CallStatus.TIMED_OUT: frozenset({CallStatus.ROUTED}),
    CallStatus.CONNECTED: frozenset({CallStatus.ENDED}),
    CallStatus.ROUTED: frozenset(),
    CallStatus.ENDED: frozenset(),
}


def can_transition(current, target) -> bool:
    return CallStatus(target) in TRANSITIONS[CallStatus(current)]


@dataclass
class CallStatusView:
    """Collapsed status of a door bell as seen by polling clients."""

    status: str
    call_session_id: Optional[str] = None
    started_at: Optional[datetime] = None
    connected_at: Optional[datetime] = None


def get_door_bell(db: Session, door_bell_id: str) -> DoorBell:
    door_bell = db.get(DoorBell, door_bell_id)
    if door_bell is None:
        raise NotFound(f"Door bell not found: {door_bell_id}")
    return door_bell


def find_door_bell(
    db: Session,
    building_id: str,
    door_bell_id: Optional[str] = None,
    door_bell_number: Optional[str] = None,
) -> DoorBell:
    """Resolve a door bell of a building by id or by its number."""
    if not door_bell_id and not door_bell_number:
        raise InvalidInput("doorBellId or doorBellNumber is required", field="doorBellId")

    if door_bell_id:
        door_bell = db.get(DoorBell, door_bell_id)
    else:
        door_bell = (
            db.query(DoorBell)
            .filter(DoorBell.building_id == building_id, DoorBell.door_bell_number == door_bell_number)
            .first()
        )

    if door_bell is None:
        raise NotFound("Door bell not found")
    if door_bell.building_id != building_id:
        raise InvalidInput("Door bell does not belong to this building", field="doorBellId")
    return door_bell


def get_latest_session(db: Session, door_bell_id: str) -> Optional[DoorBellCallSession]:
    return (
        db.query(DoorBellCallSession)
        .filter(DoorBellCallSession.door_bell_id == door_bell_id)
        .order_by(DoorBellCallSession.started_at.desc())
        .first()
    )


def get_active_session(db: Session, door_bell_id: str) -> Optional[DoorBellCallSession]:
    """The ringing or connected session of a door bell, if any."""
    return (
        db.query(DoorBellCallSession)
        .filter(
            DoorBellCallSession.door_bell_id == door_bell_id,
            DoorBellCallSession.status.in_(ACTIVE_STATUSES),
        )
        .order_by(DoorBellCallSession.started_at.desc())
        .first()
    )


def get_connected_session(
    db: Session,
    door_bell_id: str,
    for_update: bool = False,
) -> Optional[DoorBellCallSession]:
    """
    The connected session of a door bell. With for_update the row stays locked
    until the caller commits, so a concurrent end_call waits for it.
    """
    query = (
        db.query(DoorBellCallSession)
        .filter(
            DoorBellCallSession.door_bell_id == door_bell_id,
            DoorBellCallSession.status == CallStatus.CONNECTED.value,
        )
        .order_by(DoorBellCallSession.started_at.desc())
    )
    if for_update:
        query = query.with_for_update()
    return query.first()


def ring_door_bell(
    db: Session,
    door_bell: DoorBell,
    now: Optional[datetime] = None,
) -> Tuple[DoorBellCallSession, bool]:
    """
    Record a door bell press.

    Returns:
        Tuple of (session, created)
        - (new session, True): no call was active, a ringing session was opened
        - (active session, False): the door bell already has a ringing or connected call
    """
    if not door_bell.is_enabled:
        raise InvalidInput("Door bell is disabled", field="doorBellId")
    if door_bell.household_id is None:
        raise InvalidInput("Door bell not linked to a household", field="doorBellId")

    now = now or utcnow()
    door_bell.last_rung_at = now

    existing = get_active_session(db, door_bell.id)
    if existing is not None:
        db.commit()
        logger.info(f"Door bell {door_bell.id} pressed during active call {existing.id} ({existing.status})")
        return existing, False

    call_session = DoorBellCallSession(
        door_bell_id=door_bell.id,
        status=CallStatus.RINGING.value,
        started_at=now,
    )
    db.add(call_session)
    try:
        db.commit()
    except IntegrityError:
        # A simultaneous press won the partial unique index; join its call
        db.rollback()
        existing = get_active_session(db, door_bell.id)
        if existing is None:
            raise
        logger.info(f"Concurrent press on door bell {door_bell.id} joined call {existing.id}")
        return existing, False

    db.refresh(call_session)
    logger.info(f"Call session {call_session.id} ringing at door bell {door_bell.id}")
    return call_session, True


def _transition(
    db: Session,
    door_bell_id: str,
    current: CallStatus,
    target: CallStatus,
    values: dict,
) -> Optional[DoorBellCallSession]:
    """Move the door bell's session from current to target if it is still in current."""
    if not can_transition(current, target):
        raise ValueError(f"Illegal call transition {current.value} -> {target.value}")

    candidate = (
        db.query(DoorBellCallSession.id)
        .filter(
            DoorBellCallSession.door_bell_id == door_bell_id,
            DoorBellCallSession.status == current.value,
        )
        .order_by(DoorBellCallSession.started_at.desc())
        .first()
    )
    if candidate is None:
        return None

    updated = (
        db.query(DoorBellCallSession)
        .filter(
            DoorBellCallSession.id == candidate.id,
            DoorBellCallSession.status == current.value,
        )
        .update({"status": target.value, **values}, synchronize_session=False)
    )
    if updated != 1:
        db.rollback()
        return None

    db.commit()
    call_session = db.get(DoorBellCallSession, candidate.id)
    db.refresh(call_session)
    return call_session


def answer_call(db: Session, door_bell_id: str, now: Optional[datetime] = None) -> DoorBellCallSession:
    """Household picks up: ringing -> connected."""
    call_session = _transition(
        db,
        door_bell_id,
        CallStatus.RINGING,
        CallStatus.CONNECTED,
        {"connected_at": now or utcnow()},
    )
    if call_session is None:
        raise NoActiveSession("No ringing call to answer")
    logger.info(f"Call session {call_session.id} connected")
    return call_session


def end_call(db: Session, door_bell_id: str, now: Optional[datetime] = None) -> DoorBellCallSession:
    """Either party hangs up: connected -> ended."""
    call_session = _transition(
        db,
        door_bell_id,
        CallStatus.CONNECTED,
        CallStatus.ENDED,
        {"ended_at": now or utcnow()},
    )
    if call_session is None:
        raise NoActiveSession("No connected call to end")
    logger.info(f"Call session {call_session.id} ended")
    return call_session


def get_call_status(db: Session, door_bell_id: str) -> CallStatusView:
    """
    Report the most recent session's status if it is ringing or connected,
    otherwise "ended". timed_out/routed are never exposed to polling clients.
    """
    latest = get_latest_session(db, door_bell_id)
    if latest is None or latest.status not in ACTIVE_STATUSES:
        return CallStatusView(status=CallStatus.ENDED.value)
    return CallStatusView(
        status=latest.status,
        call_session_id=latest.id,
        started_at=latest.started_at,
        connected_at=latest.connected_at,
    )

"""
Ring timeout scanner.

Finds ringing calls older than their building's ring timeout and routes them
to the front desk. The scanner holds no state between runs: it may be
triggered by the check-timeout endpoint, by the optional in-process tick, or
by several workers at once. Each session is claimed with its own conditional
UPDATE (status still ringing) so a session is routed exactly once no matter
how many scans overlap.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from frontdoor.config import settings
from frontdoor.exceptions import NotFound
from frontdoor.metrics import record_call_transition, record_scanner_run
from frontdoor.models import Building, CallStatus, DoorBell, DoorBellCallSession
from frontdoor.notifications import Notifier
from frontdoor.storage import SessionLocal
from frontdoor.utils import utcnow

logger = logging.getLogger(__name__)


def _eligible_session_ids(db: Session, building: Building, cutoff: datetime) -> List[str]:
    rows = (
        db.query(DoorBellCallSession.id)
        .join(DoorBell, DoorBell.id == DoorBellCallSession.door_bell_id)
        .filter(
            DoorBell.building_id == building.id,
            DoorBellCallSession.status == CallStatus.RINGING.value,
            DoorBellCallSession.started_at <= cutoff,
        )
        .order_by(DoorBellCallSession.started_at.asc())
        .all()
    )
    return [row.id for row in rows]


def _claim_session(db: Session, session_id: str, now: datetime) -> bool:
    """
    Atomically move one session ringing -> routed.

    The timed_out label is not persisted on its own; the session goes straight
    to routed. Returns False when another scan got there first or the update
    failed.
    """
    try:
        updated = (
            db.query(DoorBellCallSession)
            .filter(
                DoorBellCallSession.id == session_id,
                DoorBellCallSession.status == CallStatus.RINGING.value,
            )
            .update(
                {"status": CallStatus.ROUTED.value, "routed_at": now},
                synchronize_session=False,
            )
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to route call session {session_id}: {e}")
        return False

    if updated != 1:
        logger.debug(f"Call session {session_id} no longer ringing, skipped")
        return False
    return True


def _dispatch(db: Session, notifier: Optional[Notifier], session_id: str) -> None:
    if notifier is None:
        return
    try:
        call_session = db.get(DoorBellCallSession, session_id)
        notifier.call_routed(db, call_session)
    except Exception as e:
        db.rollback()
        logger.error(f"Front desk notification failed for call session {session_id}: {e}")


def route_timed_out_calls(
    db: Session,
    building_id: Optional[str] = None,
    now: Optional[datetime] = None,
    notifier: Optional[Notifier] = None,
    default_timeout_seconds: Optional[int] = None,
) -> int:
    """
    Route every ringing call past its ring timeout.

    Args:
        db: Database session
        building_id: Restrict the scan to one building (all buildings when None)
        now: Reference time, defaults to the current UTC time
        notifier: Receives call_routed for each session this run routed
        default_timeout_seconds: Timeout for buildings without an override

    Returns:
        Number of sessions routed by this invocation
    """
    now = now or utcnow()
    if default_timeout_seconds is None:
        default_timeout_seconds = settings.RING_TIMEOUT_SECONDS

    query = db.query(Building)
    if building_id is not None:
        query = query.filter(Building.id == building_id)
    buildings = query.all()
    if building_id is not None and not buildings:
        raise NotFound(f"Building not found: {building_id}")

    routed_count = 0
    for building in buildings:
        timeout_seconds = building.doorbell_timeout_seconds or default_timeout_seconds
        cutoff = now - timedelta(seconds=timeout_seconds)

        for session_id in _eligible_session_ids(db, building, cutoff):
            logger.info(f"Call session {session_id} timed out after {timeout_seconds}s")
            if not _claim_session(db, session_id, now):
                continue
            routed_count += 1
            record_call_transition("routed")
            _dispatch(db, notifier, session_id)

    record_scanner_run(routed_count)
    if routed_count > 0:
        logger.info(f"Routed {routed_count} timed-out doorbell calls to front desk")
    return routed_count


def scan_once(notifier: Optional[Notifier] = None) -> int:
    """Run a system-wide scan with its own database session."""
    with SessionLocal() as db:
        return route_timed_out_calls(db, notifier=notifier)


async def run_periodic_scanner(interval_seconds: float, notifier: Optional[Notifier] = None) -> None:
    """Scan every interval_seconds until cancelled. Errors are logged and the loop continues."""
    logger.info(f"Periodic timeout scanner started (interval {interval_seconds}s)")
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(scan_once, notifier)
        except Exception as e:
            logger.error(f"Periodic timeout scan failed: {e}")

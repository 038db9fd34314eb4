"""
Read-only lookups: the public door bell directory of a building and the
active calls a household panel polls for.
"""

import logging
from typing import List, Tuple

from sqlalchemy.orm import Session, joinedload

from frontdoor.exceptions import NotFound
from frontdoor.messaging import list_session_messages
from frontdoor.models import (
    ACTIVE_STATUSES,
    Building,
    DoorBell,
    DoorBellCallSession,
    DoorBellMessage,
    Household,
)

logger = logging.getLogger(__name__)


def get_building(db: Session, building_id: str) -> Building:
    building = db.get(Building, building_id)
    if building is None:
        raise NotFound(f"Building not found: {building_id}")
    return building


def get_household(db: Session, household_id: str) -> Household:
    household = db.get(Household, household_id)
    if household is None:
        raise NotFound(f"Household not found: {household_id}")
    return household


def list_building_door_bells(db: Session, building_id: str) -> List[DoorBell]:
    """Enabled door bells of a building, ordered by number, with their households loaded."""
    get_building(db, building_id)
    return (
        db.query(DoorBell)
        .options(joinedload(DoorBell.household))
        .filter(DoorBell.building_id == building_id, DoorBell.is_enabled.is_(True))
        .order_by(DoorBell.door_bell_number.asc())
        .all()
    )


def list_household_active_calls(
    db: Session,
    household_id: str,
) -> List[Tuple[DoorBellCallSession, List[DoorBellMessage]]]:
    """Ringing and connected calls at the household's door bells, newest first."""
    sessions = (
        db.query(DoorBellCallSession)
        .join(DoorBell, DoorBell.id == DoorBellCallSession.door_bell_id)
        .options(joinedload(DoorBellCallSession.door_bell))
        .filter(
            DoorBell.household_id == household_id,
            DoorBellCallSession.status.in_(ACTIVE_STATUSES),
        )
        .order_by(DoorBellCallSession.started_at.desc())
        .all()
    )
    logger.debug(f"Household {household_id} has {len(sessions)} active calls")
    return [(session, list_session_messages(db, session.id)) for session in sessions]

"""
Notification dispatch for door bell calls.

The notifier writes one Notification row per recipient and publishes an event
on the matching bus topic. Callers treat it as fire-and-forget: a failure
here is logged by the caller and never undoes a call transition.
"""

import logging
from typing import List

from sqlalchemy.orm import Session

from frontdoor.events import EventBus, building_topic, household_topic
from frontdoor.models import (
    DoorBellCallSession,
    FrontDeskMember,
    HouseholdMember,
    Notification,
)
from frontdoor.utils import format_ts

logger = logging.getLogger(__name__)

DOOR_BELL_RUNG = "DOOR_BELL_RUNG"


class Notifier:
    """Dispatches household and front desk alerts for call sessions."""

    def __init__(self, bus: EventBus):
        self.bus = bus

    def door_bell_rung(self, db: Session, call_session: DoorBellCallSession) -> int:
        """Alert every member of the door bell's household. Returns notifications created."""
        door_bell = call_session.door_bell
        household = door_bell.household
        if household is None:
            logger.warning(f"Door bell {door_bell.id} has no household, ring not announced")
            return 0

        user_ids = [
            member.user_id
            for member in db.query(HouseholdMember).filter(HouseholdMember.household_id == household.id)
        ]
        payload = {
            "doorBellId": door_bell.id,
            "callSessionId": call_session.id,
        }
        self._create_notifications(
            db,
            user_ids,
            household_id=household.id,
            title="Door Bell",
            message=f"Someone is at the door ({door_bell.door_bell_number})",
            payload=payload,
        )

        self.bus.publish(household_topic(household.id), {
            "type": "ringing",
            "callSessionId": call_session.id,
            "doorBellId": door_bell.id,
            "doorBellNumber": door_bell.door_bell_number,
            "startedAt": format_ts(call_session.started_at),
        })
        return len(user_ids)

    def call_routed(self, db: Session, call_session: DoorBellCallSession) -> int:
        """Alert the building's front desk that an unanswered call was escalated."""
        door_bell = call_session.door_bell
        household_name = door_bell.household.name if door_bell.household else "Unknown"

        user_ids = [
            member.user_id
            for member in db.query(FrontDeskMember).filter(FrontDeskMember.building_id == door_bell.building_id)
        ]
        if not user_ids:
            logger.warning(f"No front desk members found for building {door_bell.building_id}")

        self._create_notifications(
            db,
            user_ids,
            household_id=None,
            title="Doorbell Call Routed",
            message=(
                f"Doorbell {door_bell.door_bell_number} ({household_name}) was not answered "
                f"and has been routed to front desk"
            ),
            payload={
                "doorBellId": door_bell.id,
                "buildingId": door_bell.building_id,
                "callSessionId": call_session.id,
                "routedToFrontDesk": True,
            },
        )

        self.bus.publish(building_topic(door_bell.building_id), {
            "type": "routed_to_frontdesk",
            "callSessionId": call_session.id,
            "doorBellId": door_bell.id,
            "doorBellNumber": door_bell.door_bell_number,
            "householdName": household_name,
            "startedAt": format_ts(call_session.started_at),
        })
        logger.info(
            f"Routed call {call_session.id} to front desk ({len(user_ids)} members notified)"
        )
        return len(user_ids)

    def _create_notifications(
        self,
        db: Session,
        user_ids: List[str],
        household_id,
        title: str,
        message: str,
        payload: dict,
    ) -> None:
        if not user_ids:
            return
        try:
            for user_id in user_ids:
                db.add(Notification(
                    user_id=user_id,
                    household_id=household_id,
                    type=DOOR_BELL_RUNG,
                    title=title,
                    message=message,
                    payload=payload,
                ))
            db.commit()
        except Exception:
            db.rollback()
            raise

"""
Capability checks.

authorize() is the single place that decides whether a subject may perform an
action on a resource. It is pure: the subject already carries its memberships
(see auth.py), so the rules can be tested without a request or a database.
"""

import enum
from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Union

from frontdoor.models import Building, DoorBell, Household


class Action(str, enum.Enum):
    CALL_ANSWER = "call.answer"
    CALL_END = "call.end"
    CALL_MESSAGE = "call.message"
    HOUSEHOLD_CALLS_READ = "household.calls.read"
    BUILDING_CHECK_TIMEOUT = "building.check_timeout"


DOOR_BELL_ACTIONS = frozenset({Action.CALL_ANSWER, Action.CALL_END, Action.CALL_MESSAGE})


@dataclass(frozen=True)
class Subject:
    """An authenticated caller: a user from the identity provider or the scanner service."""

    user_id: str
    household_ids: FrozenSet[str] = field(default_factory=frozenset)
    front_desk_building_ids: FrozenSet[str] = field(default_factory=frozenset)
    is_admin: bool = False
    is_service: bool = False


SERVICE_SUBJECT = Subject(user_id="service:scanner", is_service=True)

Resource = Union[Building, DoorBell, Household]


def authorize(subject: Optional[Subject], action: Union[Action, str], resource: Resource) -> bool:
    """Return True when subject may perform action on resource."""
    if subject is None:
        return False
    action = Action(action)

    if action is Action.BUILDING_CHECK_TIMEOUT:
        # Any authenticated caller or the scheduler may trigger a scan
        return isinstance(resource, Building)

    if subject.is_admin:
        return True
    if subject.is_service:
        return False

    if action in DOOR_BELL_ACTIONS:
        if not isinstance(resource, DoorBell):
            return False
        if resource.household_id is not None and resource.household_id in subject.household_ids:
            return True
        return resource.building_id in subject.front_desk_building_ids

    if action is Action.HOUSEHOLD_CALLS_READ:
        return isinstance(resource, Household) and resource.id in subject.household_ids

    return False

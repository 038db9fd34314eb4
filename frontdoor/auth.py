"""
Credential verification.

Two credentials are accepted:
- X-Session-Token issued by the identity provider for a signed-in user
- Authorization: Bearer <SCANNER_TOKEN> for automated check-timeout callers

Both resolve to a policy.Subject; anything else is anonymous.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from frontdoor.config import settings
from frontdoor.exceptions import Forbidden, Unauthorized
from frontdoor.models import FrontDeskMember, HouseholdMember
from frontdoor.policy import SERVICE_SUBJECT, Action, Resource, Subject, authorize
from frontdoor.storage import get_db
from frontdoor.utils import tokens_match, verify_session_token

logger = logging.getLogger(__name__)


def load_subject(db: Session, user_id: str) -> Subject:
    """Build a Subject with the user's household and front desk memberships."""
    household_ids = frozenset(
        row.household_id
        for row in db.query(HouseholdMember.household_id).filter(HouseholdMember.user_id == user_id)
    )
    building_ids = frozenset(
        row.building_id
        for row in db.query(FrontDeskMember.building_id).filter(FrontDeskMember.user_id == user_id)
    )
    return Subject(
        user_id=user_id,
        household_ids=household_ids,
        front_desk_building_ids=building_ids,
        is_admin=user_id in settings.admin_user_ids,
    )


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_subject(
    authorization: Annotated[Optional[str], Header()] = None,
    x_session_token: Annotated[Optional[str], Header(alias="X-Session-Token")] = None,
    db: Session = Depends(get_db),
) -> Optional[Subject]:
    """Resolve the caller, or None for anonymous requests."""
    if x_session_token:
        user_id = verify_session_token(x_session_token, settings.SESSION_SECRET)
        if user_id is not None:
            return load_subject(db, user_id)
        logger.warning("Rejected X-Session-Token with invalid signature")

    token = _bearer_token(authorization)
    if token is not None:
        if tokens_match(token, settings.SCANNER_TOKEN):
            return SERVICE_SUBJECT
        logger.warning("Rejected bearer token")

    return None


def require_subject(subject: Optional[Subject] = Depends(get_subject)) -> Subject:
    if subject is None:
        raise Unauthorized("Unauthorized")
    return subject


def ensure_authorized(subject: Optional[Subject], action: Action, resource: Resource) -> None:
    """Raise Unauthorized for anonymous callers and Forbidden for callers lacking the capability."""
    if subject is None:
        raise Unauthorized("Unauthorized")
    if not authorize(subject, action, resource):
        logger.warning(f"Denied {action.value} for {subject.user_id}")
        raise Forbidden("Forbidden")

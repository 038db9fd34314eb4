"""
Door bell call messaging.

Messages may only be added to a call that is currently connected. Reads never
fail for lack of a call: no connected session means an empty transcript.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from frontdoor.calls import get_connected_session
from frontdoor.config import settings
from frontdoor.exceptions import InvalidInput, NoActiveSession
from frontdoor.models import DoorBellMessage, MessageSender
from frontdoor.utils import utcnow

logger = logging.getLogger(__name__)

SENDERS = tuple(sender.value for sender in MessageSender)


def normalize_body(body: Optional[str], max_length: Optional[int] = None) -> str:
    """Trim a message body and reject empty or oversized text."""
    max_length = max_length or settings.MAX_MESSAGE_LENGTH
    if not isinstance(body, str) or not body.strip():
        raise InvalidInput("Message is required", field="message")
    text = body.strip()
    if len(text) > max_length:
        raise InvalidInput(f"Message exceeds {max_length} characters", field="message")
    return text


def validate_sender(sender: Optional[str]) -> str:
    if sender not in SENDERS:
        raise InvalidInput("from must be one of: guest, household", field="from")
    return sender


def post_message(
    db: Session,
    door_bell_id: str,
    body: Optional[str],
    sender: Optional[str],
    now: Optional[datetime] = None,
) -> DoorBellMessage:
    """
    Append a message to the door bell's connected call.

    Raises:
        InvalidInput: empty body or unknown sender
        NoActiveSession: the door bell has no connected call
    """
    text = normalize_body(body)
    sender = validate_sender(sender)

    call_session = get_connected_session(db, door_bell_id, for_update=True)
    if call_session is None:
        db.rollback()
        raise NoActiveSession("No active call session")

    message = DoorBellMessage(
        call_session_id=call_session.id,
        sender=sender,
        text=text,
        created_at=now or utcnow(),
    )
    db.add(message)
    db.commit()
    db.refresh(message)

    logger.info(f"Message {message.message_id} from {sender} added to call {call_session.id}")
    return message


def list_session_messages(db: Session, call_session_id: str) -> List[DoorBellMessage]:
    return (
        db.query(DoorBellMessage)
        .filter(DoorBellMessage.call_session_id == call_session_id)
        .order_by(DoorBellMessage.created_at.asc(), DoorBellMessage.id.asc())
        .all()
    )


def list_messages(db: Session, door_bell_id: str) -> List[DoorBellMessage]:
    """Transcript of the connected call, oldest first; empty when no call is connected."""
    call_session = get_connected_session(db, door_bell_id)
    if call_session is None:
        return []
    return list_session_messages(db, call_session.id)

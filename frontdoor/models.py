"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

import enum
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship

from frontdoor.storage import Base
from frontdoor.utils import utcnow


def new_id() -> str:
    return str(uuid.uuid4())


class CallStatus(str, enum.Enum):
    """Persisted lifecycle states of a door bell call session."""

    RINGING = "ringing"
    CONNECTED = "connected"
    TIMED_OUT = "timed_out"
    ROUTED = "routed"
    ENDED = "ended"


ACTIVE_STATUSES = (CallStatus.RINGING.value, CallStatus.CONNECTED.value)

_ACTIVE_WHERE = text("status IN ('ringing', 'connected')")


class MessageSender(str, enum.Enum):
    GUEST = "guest"
    HOUSEHOLD = "household"


class Building(Base):
    __tablename__ = "buildings"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    # Null means the configured RING_TIMEOUT_SECONDS applies
    doorbell_timeout_seconds = Column(Integer, nullable=True)

    households = relationship("Household", back_populates="building")
    door_bells = relationship("DoorBell", back_populates="building")
    front_desk_members = relationship("FrontDeskMember", back_populates="building")


class Household(Base):
    __tablename__ = "households"

    id = Column(String, primary_key=True, default=new_id)
    building_id = Column(String, ForeignKey("buildings.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    unit_number = Column(String, nullable=True)

    building = relationship("Building", back_populates="households")
    members = relationship("HouseholdMember", back_populates="household")
    door_bells = relationship("DoorBell", back_populates="household")


class HouseholdMember(Base):
    __tablename__ = "household_members"
    __table_args__ = (UniqueConstraint("household_id", "user_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    household_id = Column(String, ForeignKey("households.id"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)

    household = relationship("Household", back_populates="members")


class FrontDeskMember(Base):
    """A user who receives calls routed to the building's front desk."""

    __tablename__ = "front_desk_members"
    __table_args__ = (UniqueConstraint("building_id", "user_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    building_id = Column(String, ForeignKey("buildings.id"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=True)

    building = relationship("Building", back_populates="front_desk_members")


class DoorBell(Base):
    __tablename__ = "door_bells"
    __table_args__ = (UniqueConstraint("building_id", "door_bell_number"),)

    id = Column(String, primary_key=True, default=new_id)
    building_id = Column(String, ForeignKey("buildings.id"), nullable=False, index=True)
    household_id = Column(String, ForeignKey("households.id"), nullable=True, index=True)
    door_bell_number = Column(String, nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=True)
    last_rung_at = Column(DateTime, nullable=True)

    building = relationship("Building", back_populates="door_bells")
    household = relationship("Household", back_populates="door_bells")


class DoorBellCallSession(Base):
    """
    One ring-to-resolution episode at a door bell.

    Table: door_bell_call_sessions
    The partial unique index allows at most one ringing/connected session per
    door bell; terminal sessions are kept for history.
    """
    __tablename__ = "door_bell_call_sessions"
    __table_args__ = (
        Index(
            "uq_door_bell_call_sessions_active",
            "door_bell_id",
            unique=True,
            sqlite_where=_ACTIVE_WHERE,
            postgresql_where=_ACTIVE_WHERE,
        ),
        Index("ix_door_bell_call_sessions_status_started", "status", "started_at"),
    )

    id = Column(String, primary_key=True, default=new_id)
    door_bell_id = Column(String, ForeignKey("door_bells.id"), nullable=False, index=True)
    status = Column(String(16), nullable=False, default=CallStatus.RINGING.value)
    started_at = Column(DateTime, nullable=False, default=utcnow)
    connected_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)
    routed_at = Column(DateTime, nullable=True)

    door_bell = relationship("DoorBell")
    messages = relationship(
        "DoorBellMessage",
        back_populates="call_session",
        order_by=lambda: [DoorBellMessage.created_at, DoorBellMessage.id],
    )


class DoorBellMessage(Base):
    """
    Transcript line of a connected call.

    The integer primary key records insertion order and breaks created_at
    ties; message_id is the opaque id exposed to clients.
    """
    __tablename__ = "door_bell_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(String, nullable=False, unique=True, default=new_id)
    call_session_id = Column(
        String, ForeignKey("door_bell_call_sessions.id"), nullable=False, index=True
    )
    sender = Column(String(16), nullable=False)
    text = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    call_session = relationship("DoorBellCallSession", back_populates="messages")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, nullable=False, index=True)
    household_id = Column(String, nullable=True)
    type = Column(String, nullable=False, default="DOOR_BELL_RUNG")
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses

Wire names are camelCase; fields are declared in snake_case with aliases and
every model accepts either form.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _Schema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# Pydantic Request Models
# =============================================================================

class RingRequest(_Schema):
    """Door bell press from the front door panel. One of the two fields is required."""
    door_bell_id: Optional[str] = Field(None, alias="doorBellId")
    door_bell_number: Optional[str] = Field(None, alias="doorBellNumber")


class PostMessageRequest(_Schema):
    """
    Message for a connected call.

    Body and sender are checked by messaging.post_message so that an empty
    message or unknown sender is reported with the offending field.
    """
    message: Optional[str] = Field(None, description="Message text, trimmed before storage")
    sender: Optional[str] = Field(
        None,
        alias="from",
        description="guest or household",
    )

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "examples": [{"message": "On my way", "from": "guest"}]
        },
    )


# =============================================================================
# Pydantic Response Models
# =============================================================================

class ErrorResponse(_Schema):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")
    code: str = Field(..., description="Stable error code")
    field: Optional[str] = Field(None, description="Offending request field")


class HealthResponse(_Schema):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")


class HouseholdSummary(_Schema):
    id: str
    name: str
    unit_number: Optional[str] = Field(None, alias="unitNumber")


class DoorBellEntry(_Schema):
    id: str
    door_bell_number: str = Field(..., alias="doorBellNumber")
    is_enabled: bool = Field(True, alias="isEnabled")
    household: Optional[HouseholdSummary] = None


class DoorBellListResponse(_Schema):
    data: list[DoorBellEntry] = Field(default_factory=list)


class RungDoorBell(_Schema):
    id: str
    door_bell_number: str = Field(..., alias="doorBellNumber")
    last_rung_at: Optional[str] = Field(None, alias="lastRungAt")


class RingData(_Schema):
    call_session_id: str = Field(..., alias="callSessionId")
    created: bool = Field(..., description="False when the press joined an active call")
    door_bell: RungDoorBell = Field(..., alias="doorBell")


class RingResponse(_Schema):
    success: bool = True
    message: str
    data: RingData


class CallStatusResponse(_Schema):
    """Collapsed call status: ringing, connected or ended."""
    status: str
    call_session_id: Optional[str] = Field(None, alias="callSessionId")
    started_at: Optional[str] = Field(None, alias="startedAt")
    connected_at: Optional[str] = Field(None, alias="connectedAt")


class MessageResponse(_Schema):
    id: str
    text: str
    sender: str = Field(..., alias="from")
    timestamp: str


class MessagesResponse(_Schema):
    messages: list[MessageResponse] = Field(default_factory=list)


class PostMessageResponse(_Schema):
    success: bool = True
    message: MessageResponse


class CallSessionResponse(_Schema):
    id: str
    door_bell_id: str = Field(..., alias="doorBellId")
    status: str
    started_at: str = Field(..., alias="startedAt")
    connected_at: Optional[str] = Field(None, alias="connectedAt")
    ended_at: Optional[str] = Field(None, alias="endedAt")


class CallActionResponse(_Schema):
    success: bool = True
    call_session: CallSessionResponse = Field(..., alias="callSession")


class CheckTimeoutResponse(_Schema):
    success: bool = True
    routed_count: int = Field(..., ge=0, alias="routedCount")
    message: str


class ActiveCall(_Schema):
    id: str
    door_bell_id: str = Field(..., alias="doorBellId")
    door_bell_number: str = Field(..., alias="doorBellNumber")
    status: str
    started_at: str = Field(..., alias="startedAt")
    connected_at: Optional[str] = Field(None, alias="connectedAt")
    messages: list[MessageResponse] = Field(default_factory=list)


class ActiveCallsResponse(_Schema):
    calls: list[ActiveCall] = Field(default_factory=list)

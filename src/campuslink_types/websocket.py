"""
WebSocket frame DTOs for the realtime channel.

Events follow a namespaced pattern: "namespace:action". The two room control
events (``join-room`` / ``leave-room``) keep their historical names.

Namespaces:
- system: Transport-level frames (connected, ack, ping, pong, error). Reserved.
- notification / notifications: Per-user notifications
- activity / activities: Activity feed
- user: Presence

Frame kinds:
- request: client -> server, carries ``ack_id``; answered by exactly one ``system:ack``
- fire-and-forget: client -> server without ``ack_id``
- push: server -> client ``{"type", "data"}``
"""

import re
from datetime import datetime, timezone
from typing import Any, Optional, Literal

from pydantic import BaseModel, Field

from campuslink_types.errors import AckError


class EventName:
    """Event name registry."""

    # Notifications
    NOTIFICATIONS_GET = "notifications:get"
    NOTIFICATION_READ = "notification:read"
    NOTIFICATIONS_READ_ALL = "notifications:read-all"
    NOTIFICATIONS_CLEAR_ALL = "notifications:clear-all"
    NOTIFICATION_NEW = "notification:new"
    NOTIFICATION_UPDATE = "notification:update"
    NOTIFICATION_DELETE = "notification:delete"

    # Activity feed
    ACTIVITIES_GET = "activities:get"
    ACTIVITY_NEW = "activity:new"

    # Presence
    USER_GET_STATUS = "user:get-status"
    USER_SET_STATUS = "user:set-status"
    USER_UNWATCH_STATUS = "user:unwatch-status"
    USER_STATUS_UPDATE = "user:status-update"

    # Room control
    JOIN_ROOM = "join-room"
    LEAVE_ROOM = "leave-room"

    # System
    SYSTEM_CONNECTED = "system:connected"
    SYSTEM_ACK = "system:ack"
    SYSTEM_ERROR = "system:error"
    SYSTEM_PING = "system:ping"
    SYSTEM_PONG = "system:pong"


PUSH_EVENTS = frozenset({
    EventName.NOTIFICATION_NEW,
    EventName.NOTIFICATION_UPDATE,
    EventName.NOTIFICATION_DELETE,
    EventName.ACTIVITY_NEW,
    EventName.USER_STATUS_UPDATE,
})

ROOM_EVENTS = frozenset({EventName.JOIN_ROOM, EventName.LEAVE_ROOM})

SYSTEM_NAMESPACE = "system"

_EVENT_NAME_RE = re.compile(r"^[a-z][a-z0-9_-]*:[a-z0-9][a-z0-9_-]*$")


def is_reserved_event(event_name: str) -> bool:
    """True for names in the transport's own ``system:`` namespace."""
    return event_name.split(":", 1)[0] == SYSTEM_NAMESPACE


def is_valid_event_name(event_name: str) -> bool:
    """Namespaced ``feature:action`` names, plus the room control events."""
    if event_name in ROOM_EVENTS:
        return True
    return bool(_EVENT_NAME_RE.match(event_name or ""))


# =============================================================================
# Client -> Server
# =============================================================================

class WSEventBase(BaseModel):
    """Base class for all WebSocket frames."""
    type: str


class WSRequest(WSEventBase):
    """Any client frame. ``ack_id`` present means the client awaits a ``system:ack``."""
    data: Any = Field(default_factory=dict)
    ack_id: Optional[str] = Field(None, description="Correlation id for acknowledged requests")

    @property
    def wants_ack(self) -> bool:
        return self.ack_id is not None


class WSPing(WSEventBase):
    """Keep-alive ping from client."""
    type: Literal["system:ping"] = "system:ping"


class RoomRequest(BaseModel):
    """Payload of ``join-room`` / ``leave-room``."""
    room: str = Field(..., min_length=1, max_length=128)


# =============================================================================
# Server -> Client
# =============================================================================

class WSConnected(WSEventBase):
    """Handshake completed; always the first frame after a successful auth."""
    type: Literal["system:connected"] = "system:connected"
    user_id: str
    role: Optional[str] = None
    session_id: str


class WSAck(WSEventBase):
    """Exactly one per acknowledged request."""
    type: Literal["system:ack"] = "system:ack"
    ack_id: str
    success: bool
    data: Optional[Any] = None
    error: Optional[AckError] = None


class WSPush(WSEventBase):
    """Server push of a feature event."""
    data: Any = None


class WSPong(WSEventBase):
    """Keep-alive pong response."""
    type: Literal["system:pong"] = "system:pong"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class WSError(WSEventBase):
    """General error event, used where no ack can carry the failure."""
    type: Literal["system:error"] = "system:error"
    code: str = Field(..., description="Error code, e.g. AUTH_FAILED")
    message: str = Field(..., description="Human-readable error message")


def parse_client_frame(data: Any) -> Optional[WSRequest]:
    """
    Parse an incoming client frame.

    Args:
        data: Decoded JSON from the socket

    Returns:
        WSRequest or None if the frame is not a dict with a usable type
    """
    if not isinstance(data, dict):
        return None
    event_type = data.get("type")
    if not isinstance(event_type, str) or not event_type:
        return None
    if data.get("data") is None:
        data = {**data, "data": {}}
    try:
        return WSRequest.model_validate(data)
    except ValueError:
        return None

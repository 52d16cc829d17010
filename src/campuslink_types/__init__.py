"""CampusLink Types - Pydantic DTOs shared by the realtime backend and client."""

__version__ = "0.1.0"

from .errors import AckError, ErrorReason
from .notifications import (
    Notification,
    NotificationDeleted,
    NotificationReadRequest,
    NotificationReadResponse,
    NotificationsGetRequest,
    NotificationsGetResponse,
    NotificationsReadAllResponse,
)
from .activities import (
    Activity,
    ActivityFilter,
    ActivitiesGetRequest,
    ActivitiesGetResponse,
    ActivityType,
)
from .presence import (
    PresenceRecord,
    PresenceStatus,
    UserGetStatusRequest,
    UserSetStatusRequest,
    UserUnwatchStatus,
)
from .websocket import (
    EventName,
    WSAck,
    WSConnected,
    WSError,
    WSPing,
    WSPong,
    WSPush,
    WSRequest,
    RoomRequest,
    is_reserved_event,
    parse_client_frame,
)

__all__ = [
    "AckError",
    "ErrorReason",
    "Notification",
    "NotificationDeleted",
    "NotificationReadRequest",
    "NotificationReadResponse",
    "NotificationsGetRequest",
    "NotificationsGetResponse",
    "NotificationsReadAllResponse",
    "Activity",
    "ActivityFilter",
    "ActivitiesGetRequest",
    "ActivitiesGetResponse",
    "ActivityType",
    "PresenceRecord",
    "PresenceStatus",
    "UserGetStatusRequest",
    "UserSetStatusRequest",
    "UserUnwatchStatus",
    "EventName",
    "WSAck",
    "WSConnected",
    "WSError",
    "WSPing",
    "WSPong",
    "WSPush",
    "WSRequest",
    "RoomRequest",
    "is_reserved_event",
    "parse_client_frame",
]

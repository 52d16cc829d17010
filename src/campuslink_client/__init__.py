"""
CampusLink Client Library.

An async client for the CampusLink realtime channel.

Example usage:
    ```python
    from campuslink_client import create_realtime_session

    async with create_realtime_session("https://school.example") as session:
        await session.connect(token)

        # Notifications
        await session.notifications.fetch_initial()
        await session.notifications.mark_read(notification_id)

        # Rooms and presence
        session.rooms.join_room("class-10a")
        await session.presence.watch("lecturer-1", print)
    ```
"""

__version__ = "0.1.0"

from campuslink_client.realtime import (
    ActivityFeed,
    ConnectionManager,
    ConnectionState,
    EventMultiplexer,
    NotificationCenter,
    PresenceClient,
    RealtimeSession,
    RequestProtocol,
    RoomMembership,
    Transport,
    WebSocketTransport,
    create_realtime_session,
)

from campuslink_client.exceptions import (
    CampusLinkClientError,
    AuthenticationError,
    ConnectionError,
    ReconnectionExhaustedError,
    RequestError,
    NotConnectedError,
    TimeoutError,
    ServerRejectedError,
    InvalidStateTransition,
)

__all__ = [
    "__version__",
    # Session
    "create_realtime_session",
    "RealtimeSession",
    # Components
    "ActivityFeed",
    "ConnectionManager",
    "ConnectionState",
    "EventMultiplexer",
    "NotificationCenter",
    "PresenceClient",
    "RequestProtocol",
    "RoomMembership",
    "Transport",
    "WebSocketTransport",
    # Exceptions
    "CampusLinkClientError",
    "AuthenticationError",
    "ConnectionError",
    "ReconnectionExhaustedError",
    "RequestError",
    "NotConnectedError",
    "TimeoutError",
    "ServerRejectedError",
    "InvalidStateTransition",
]

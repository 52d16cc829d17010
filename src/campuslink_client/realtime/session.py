"""
Realtime session factory.

Every component is built here and handed its collaborators explicitly; there
is no module-level client state. Tests build sessions with an in-memory
transport.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from campuslink_client.realtime.activities import ActivityFeed
from campuslink_client.realtime.connection import ConnectionManager
from campuslink_client.realtime.multiplexer import EventMultiplexer
from campuslink_client.realtime.notifications import NotificationCenter
from campuslink_client.realtime.presence import PresenceClient
from campuslink_client.realtime.requests import RequestProtocol
from campuslink_client.realtime.rooms import RoomMembership
from campuslink_client.realtime.state import ConnectionState
from campuslink_client.realtime.transport import Transport

logger = logging.getLogger(__name__)


@dataclass
class RealtimeSession:
    """
    One user's realtime bundle.

    Example:
        >>> async with create_realtime_session("https://school.example") as session:
        ...     await session.connect(token)
        ...     await session.notifications.fetch_initial()
    """
    connection: ConnectionManager
    events: EventMultiplexer
    requests: RequestProtocol
    rooms: RoomMembership
    notifications: NotificationCenter
    presence: PresenceClient
    activities: ActivityFeed

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    async def connect(self, token: Optional[str]):
        await self.connection.connect(token)

    async def close(self):
        self.notifications.stop()
        self.presence.stop()
        self.activities.stop()
        self.rooms.close()
        await self.connection.disconnect()
        self.requests.close()
        self.events.clear()

    async def __aenter__(self) -> "RealtimeSession":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def create_realtime_session(
    url: str,
    *,
    transport: Optional[Transport] = None,
    request_timeout: float = 10.0,
    activity_display_limit: int = 20,
    **options,
) -> RealtimeSession:
    """
    Build a session for ``url``.

    Args:
        url: Server base URL or ``ws(s)://`` endpoint
        transport: Channel implementation; a ``WebSocketTransport`` when omitted
        request_timeout: Default acknowledgment timeout in seconds
        activity_display_limit: Activities kept in the live feed window
        **options: Passed to ``ConnectionManager`` (reconnect and keepalive tuning)
    """
    events = EventMultiplexer()
    connection = ConnectionManager(url, transport=transport, events=events, **options)
    requests = RequestProtocol(connection, default_timeout=request_timeout)
    rooms = RoomMembership(connection)
    notifications = NotificationCenter(requests, events)
    presence = PresenceClient(requests, events, connection)
    activities = ActivityFeed(requests, events, display_limit=activity_display_limit)

    notifications.start()
    presence.start()
    activities.start()

    logger.debug(f"Realtime session created for {url}")
    return RealtimeSession(
        connection=connection,
        events=events,
        requests=requests,
        rooms=rooms,
        notifications=notifications,
        presence=presence,
        activities=activities,
    )

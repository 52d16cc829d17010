"""
WebSocket Connection Manager.

Tracks live sessions and the channels they sit in, and forwards pub/sub
messages to the sessions of a channel.

Channels:
- ``user:<user_id>``     personal channel, every session of the user
- ``room:<room_id>``     client-joined rooms
- ``presence:<user_id>`` sessions watching a user's status
- ``all``                every session
"""

import asyncio
import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

from pydantic import ValidationError

from campuslink_backend.exceptions import ConnectionLimitError, InvalidRoomError
from campuslink_backend.settings import settings
from campuslink_backend.websocket.auth import Principal
from campuslink_backend.websocket.pubsub import PubSubBroker
from campuslink_types.websocket import WSConnected, WSPush

logger = logging.getLogger(__name__)

GLOBAL_CHANNEL = "all"

ROOM_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]{0,127}$")


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


def room_channel(room: str) -> str:
    return f"room:{room}"


def presence_channel(user_id: str) -> str:
    return f"presence:{user_id}"


def is_valid_room_id(room: Any) -> bool:
    return isinstance(room, str) and bool(ROOM_ID_RE.match(room))


@dataclass
class WebSocketMetrics:
    """Counters since process start. Active connections are derived."""
    total_connections: int = 0
    total_disconnections: int = 0
    total_messages_sent: int = 0
    total_messages_received: int = 0
    total_send_errors: int = 0
    total_send_timeouts: int = 0
    total_connection_limit_hits: int = 0
    total_auth_failures: int = 0

    def connection_opened(self):
        self.total_connections += 1

    def connection_closed(self):
        self.total_disconnections += 1

    def message_sent(self):
        self.total_messages_sent += 1

    def message_received(self):
        self.total_messages_received += 1

    def send_error(self):
        self.total_send_errors += 1

    def send_timeout(self):
        self.total_send_timeouts += 1

    def connection_limit_hit(self):
        self.total_connection_limit_hits += 1

    def auth_failed(self):
        self.total_auth_failures += 1

    def get_metrics(self) -> dict:
        metrics = asdict(self)
        metrics["active_connections"] = self.total_connections - self.total_disconnections
        failed = self.total_send_errors + self.total_send_timeouts
        attempted = self.total_messages_sent + failed
        metrics["error_rate"] = failed / attempted if attempted else 0.0
        return metrics


@dataclass
class Connection:
    """Represents an active WebSocket session."""
    websocket: Any
    principal: Principal
    session_id: str = field(default_factory=lambda: uuid4().hex)
    rooms: Set[str] = field(default_factory=set)
    channels: Set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def user_id(self) -> str:
        return self.principal.user_id


class ConnectionManager:
    """
    Manages WebSocket sessions and their channel membership.

    Features:
    - Track active sessions per user, with per-user and total limits
    - Room membership scoped to a session (additive, no ceiling)
    - Route pub/sub messages to the local sessions of a channel
    """

    def __init__(
        self,
        pubsub: PubSubBroker,
        metrics: Optional[WebSocketMetrics] = None,
        max_total_connections: Optional[int] = None,
        max_connections_per_user: Optional[int] = None,
        send_timeout: Optional[float] = None,
    ):
        self.pubsub = pubsub
        self.metrics = metrics or WebSocketMetrics()
        self._max_total = max_total_connections or settings.WS_MAX_TOTAL_CONNECTIONS
        self._max_per_user = max_connections_per_user or settings.WS_MAX_CONNECTIONS_PER_USER
        self._send_timeout = send_timeout or settings.WS_SEND_TIMEOUT

        self._connections: Dict[str, List[Connection]] = {}  # user_id -> connections
        self._sessions: Dict[str, Connection] = {}  # session_id -> connection
        self._channel_members: Dict[str, Set[str]] = {}  # channel -> session_ids
        self._running = False

    async def start(self):
        """Start the connection manager and pub/sub listener."""
        if self._running:
            return
        self._running = True
        self.pubsub.register_handler("connection_manager", self._handle_pubsub_message)
        await self.pubsub.start()
        logger.info("ConnectionManager started")

    async def stop(self):
        """Stop the connection manager and close every session."""
        logger.info("Stopping ConnectionManager...")
        self._running = False

        self.pubsub.unregister_handler("connection_manager")
        await self.pubsub.stop()

        close_tasks = [self._close_connection_safe(conn) for conn in list(self._sessions.values())]
        if close_tasks:
            try:
                await asyncio.wait_for(
                    asyncio.gather(*close_tasks, return_exceptions=True),
                    timeout=3.0
                )
            except asyncio.TimeoutError:
                logger.warning(f"Timeout closing {len(close_tasks)} WebSocket connections")

        self._connections.clear()
        self._sessions.clear()
        self._channel_members.clear()
        logger.info("ConnectionManager stopped")

    async def _close_connection_safe(self, conn: Connection):
        try:
            await asyncio.wait_for(conn.websocket.close(code=1001), timeout=1.0)
        except asyncio.TimeoutError:
            logger.debug(f"Timeout closing session {conn.session_id}")
        except Exception as e:
            logger.debug(f"Error closing session {conn.session_id}: {e}")

    async def connect(self, websocket: Any, principal: Principal) -> Connection:
        """
        Register a new, already authenticated WebSocket connection.

        Raises:
            ConnectionLimitError: If connection limits are exceeded
        """
        user_id = principal.user_id

        total_connections = self.get_connection_count()
        if total_connections >= self._max_total:
            logger.warning(f"Total connection limit reached: {total_connections}/{self._max_total}")
            self.metrics.connection_limit_hit()
            raise ConnectionLimitError("Server connection limit reached", code=4008)

        user_connections = len(self._connections.get(user_id, []))
        if user_connections >= self._max_per_user:
            logger.warning(f"User {user_id} connection limit reached: {user_connections}/{self._max_per_user}")
            self.metrics.connection_limit_hit()
            raise ConnectionLimitError(f"Too many connections (max {self._max_per_user})", code=4008)

        await websocket.accept()

        connection = Connection(websocket=websocket, principal=principal)
        # system:connected goes out before the session can receive any push
        await self._send_with_timeout(connection, WSConnected(
            user_id=user_id,
            role=principal.role,
            session_id=connection.session_id,
        ).model_dump())

        self._connections.setdefault(user_id, []).append(connection)
        self._sessions[connection.session_id] = connection

        await self._add_to_channel(connection, user_channel(user_id))
        await self._add_to_channel(connection, GLOBAL_CHANNEL)

        self.metrics.connection_opened()
        logger.info(
            f"WebSocket connected: user={user_id}, session={connection.session_id}, "
            f"user_connections={len(self._connections[user_id])}, total={self.get_connection_count()}"
        )
        return connection

    async def disconnect(self, connection: Connection):
        """Remove a session and drop it from every channel it sat in."""
        if self._sessions.pop(connection.session_id, None) is None:
            return

        user_id = connection.user_id
        if user_id in self._connections:
            self._connections[user_id] = [
                c for c in self._connections[user_id] if c is not connection
            ]
            if not self._connections[user_id]:
                del self._connections[user_id]

        for channel in list(connection.channels):
            await self._remove_from_channel(connection, channel)
        connection.rooms.clear()

        self.metrics.connection_closed()
        logger.info(f"WebSocket disconnected: user={user_id}, session={connection.session_id}")

    async def _add_to_channel(self, connection: Connection, channel: str):
        connection.channels.add(channel)
        members = self._channel_members.get(channel)
        if members is None:
            members = self._channel_members[channel] = set()
            await self.pubsub.subscribe(channel)
        members.add(connection.session_id)

    async def _remove_from_channel(self, connection: Connection, channel: str):
        connection.channels.discard(channel)
        members = self._channel_members.get(channel)
        if members is None:
            return
        members.discard(connection.session_id)
        if not members:
            del self._channel_members[channel]
            await self.pubsub.unsubscribe(channel)

    async def join_room(self, connection: Connection, room: str) -> bool:
        """
        Add the session to a room.

        Returns:
            False if the session was already in the room

        Raises:
            InvalidRoomError: If the room id is malformed
        """
        if not is_valid_room_id(room):
            raise InvalidRoomError(f"Invalid room id: {room!r}")
        if room in connection.rooms:
            return False
        connection.rooms.add(room)
        await self._add_to_channel(connection, room_channel(room))
        logger.debug(f"Session {connection.session_id} joined room {room}")
        return True

    async def leave_room(self, connection: Connection, room: str) -> bool:
        """Remove the session from a room. Leaving a room not joined is a no-op."""
        if room not in connection.rooms:
            return False
        connection.rooms.discard(room)
        await self._remove_from_channel(connection, room_channel(room))
        logger.debug(f"Session {connection.session_id} left room {room}")
        return True

    async def watch_presence(self, connection: Connection, user_id: str):
        await self._add_to_channel(connection, presence_channel(user_id))

    async def unwatch_presence(self, connection: Connection, user_id: str):
        await self._remove_from_channel(connection, presence_channel(user_id))

    async def publish(self, channel: str, event_type: str, data: Any):
        """Publish an event to a channel through the broker."""
        await self.pubsub.publish(channel, event_type, data)

    async def publish_to_user(self, user_id: str, event_type: str, data: Any):
        await self.publish(user_channel(user_id), event_type, data)

    async def publish_to_room(self, room: str, event_type: str, data: Any):
        await self.publish(room_channel(room), event_type, data)

    async def broadcast(self, event_type: str, data: Any):
        await self.publish(GLOBAL_CHANNEL, event_type, data)

    async def _send_with_timeout(self, conn: Connection, data: dict) -> bool:
        """
        Send data to a connection with timeout.

        Returns:
            True if successful, False otherwise
        """
        try:
            await asyncio.wait_for(conn.websocket.send_json(data), timeout=self._send_timeout)
            self.metrics.message_sent()
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Send timeout to user {conn.user_id} session {conn.session_id}")
            self.metrics.send_timeout()
            return False
        except Exception as e:
            logger.error(f"Failed to send to user {conn.user_id} session {conn.session_id}: {e}")
            self.metrics.send_error()
            return False

    async def _handle_pubsub_message(self, channel: str, message: dict):
        """
        Forward a pub/sub message to every local session in the channel.

        Sends run concurrently; per session the order of publishes is kept.
        """
        session_ids = set(self._channel_members.get(channel, set()))
        if not session_ids:
            logger.debug(f"No local sessions for channel: {channel}")
            return

        try:
            frame = WSPush(type=message.get("type"), data=message.get("data")).model_dump()
        except ValidationError:
            logger.warning(f"Dropping pub/sub message without an event type on channel {channel}")
            return

        send_tasks = [
            self._send_with_timeout(self._sessions[session_id], frame)
            for session_id in session_ids
            if session_id in self._sessions
        ]
        if send_tasks:
            results = await asyncio.gather(*send_tasks, return_exceptions=True)
            success_count = sum(1 for r in results if r is True)
            logger.debug(f"Broadcast {frame['type']} to channel {channel}: {success_count}/{len(send_tasks)} successful")

    async def send_to_connection(self, connection: Connection, event: dict) -> bool:
        """Send a frame directly to one session."""
        return await self._send_with_timeout(connection, event)

    def get_connection(self, session_id: str) -> Optional[Connection]:
        return self._sessions.get(session_id)

    def get_connection_count(self) -> int:
        return len(self._sessions)

    def get_user_count(self) -> int:
        return len(self._connections)

    def is_user_connected(self, user_id: str) -> bool:
        return bool(self._connections.get(user_id))

    def room_sessions(self, room: str) -> Set[str]:
        """Session ids currently in a room."""
        return set(self._channel_members.get(room_channel(room), set()))

    def get_metrics(self) -> dict:
        metrics = self.metrics.get_metrics()
        metrics.update({
            "current_connections": self.get_connection_count(),
            "current_users": self.get_user_count(),
            "active_channels": len(self._channel_members),
            "active_rooms": sum(1 for c in self._channel_members if c.startswith("room:")),
        })
        return metrics

"""Client-side room membership, re-applied after every reconnection."""

import logging
from typing import Set

from campuslink_client.exceptions import NotConnectedError
from campuslink_client.realtime.connection import ConnectionManager
from campuslink_types.websocket import EventName

logger = logging.getLogger(__name__)


class RoomMembership:
    """
    Join and leave rooms (fire-and-forget).

    ``rooms`` is the set re-joined after a reconnection. Joining while the
    channel is not open is a logged no-op; leaving while not open still
    removes the room from the set, so it is not re-joined later.
    """

    def __init__(self, connection: ConnectionManager):
        self.connection = connection
        self._rooms: Set[str] = set()
        self._dispose_reopen = connection.add_reopen_hook(self.rejoin)

    @property
    def rooms(self) -> Set[str]:
        return set(self._rooms)

    def join_room(self, room: str) -> bool:
        """Returns False when the channel is not open and nothing was sent."""
        if not room:
            raise ValueError("room must be a non-empty string")
        if not self.connection.is_open:
            logger.warning(f"Not joining room {room}: connection is {self.connection.state.value}")
            return False
        try:
            self.connection.send_nowait({"type": EventName.JOIN_ROOM, "data": {"room": room}})
        except NotConnectedError as e:
            logger.warning(f"Not joining room {room}: {e.message}")
            return False
        self._rooms.add(room)
        logger.debug(f"Joined room {room}")
        return True

    def leave_room(self, room: str) -> bool:
        self._rooms.discard(room)
        if not self.connection.is_open:
            logger.info(f"Left room {room} locally; connection is {self.connection.state.value}")
            return False
        try:
            self.connection.send_nowait({"type": EventName.LEAVE_ROOM, "data": {"room": room}})
        except NotConnectedError as e:
            logger.warning(f"Could not send leave for room {room}: {e.message}")
            return False
        logger.debug(f"Left room {room}")
        return True

    def rejoin(self):
        """Send a join for every room held before the channel dropped."""
        for room in sorted(self._rooms):
            try:
                self.connection.send_nowait({"type": EventName.JOIN_ROOM, "data": {"room": room}})
            except NotConnectedError as e:
                logger.warning(f"Re-join of {room} failed: {e.message}")
                return
        if self._rooms:
            logger.info(f"Re-joined {len(self._rooms)} room(s)")

    def close(self):
        self._dispose_reopen()

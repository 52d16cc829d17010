"""Client-side presence: status lookups and live watches on other users."""

import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from campuslink_client.exceptions import CampusLinkClientError, NotConnectedError
from campuslink_client.realtime.connection import ConnectionManager
from campuslink_client.realtime.multiplexer import EventMultiplexer
from campuslink_client.realtime.requests import RequestProtocol
from campuslink_types.presence import PresenceRecord, PresenceStatus
from campuslink_types.websocket import EventName

logger = logging.getLogger(__name__)

PresenceListener = Callable[[PresenceRecord], None]


class PresenceClient:
    """
    Tracks the status of watched users.

    Asking the server for a user's status also subscribes this session to
    that user's status changes. Watches registered before the channel
    opens, or lost with a dropped channel, are established by asking again
    every time the channel opens.
    """

    def __init__(self, requests: RequestProtocol, events: EventMultiplexer, connection: ConnectionManager):
        self.requests = requests
        self.events = events
        self.connection = connection
        self._records: Dict[str, PresenceRecord] = {}
        self._watchers: Dict[str, List[PresenceListener]] = {}
        self._dispose_push: Optional[Callable[[], None]] = None
        self._dispose_open: Optional[Callable[[], None]] = None

    def start(self):
        if self._dispose_push is not None:
            return
        self._dispose_push = self.events.subscribe(EventName.USER_STATUS_UPDATE, self._on_status_update)
        self._dispose_open = self.connection.add_open_hook(self.rewatch)

    def stop(self):
        if self._dispose_push is not None:
            self._dispose_push()
            self._dispose_push = None
        if self._dispose_open is not None:
            self._dispose_open()
            self._dispose_open = None

    @property
    def watched_users(self) -> List[str]:
        return sorted(self._watchers)

    def status_of(self, user_id: str) -> Optional[PresenceRecord]:
        """Last known record for ``user_id``, or None when never fetched."""
        return self._records.get(user_id)

    async def get_status(self, user_id: str) -> PresenceRecord:
        data = await self.requests.request(EventName.USER_GET_STATUS, {"user_id": user_id})
        record = PresenceRecord.model_validate(data)
        self._apply(record)
        return record

    async def set_status(self, status: PresenceStatus) -> PresenceRecord:
        """Set this user's status to online or away."""
        status = PresenceStatus(status)
        if status == PresenceStatus.OFFLINE:
            raise ValueError("offline cannot be set; it follows from closing every session")
        data = await self.requests.request(EventName.USER_SET_STATUS, {"status": status.value})
        record = PresenceRecord.model_validate(data)
        self._apply(record)
        return record

    async def watch(self, user_id: str, listener: PresenceListener) -> Callable[[], None]:
        """
        Call ``listener(record)`` whenever ``user_id``'s status changes.

        The current status is fetched right away when the channel is open,
        otherwise as soon as it opens.

        Returns:
            A disposer; the last disposer for a user ends the server-side watch
        """
        listeners = self._watchers.setdefault(user_id, [])
        listeners.append(listener)

        def dispose():
            current = self._watchers.get(user_id)
            if current is None or listener not in current:
                return
            current.remove(listener)
            if not current:
                del self._watchers[user_id]
                self._send_unwatch(user_id)

        if self.connection.is_open:
            await self.get_status(user_id)
        return dispose

    def _send_unwatch(self, user_id: str):
        if not self.connection.is_open:
            return
        try:
            self.connection.send_nowait({"type": EventName.USER_UNWATCH_STATUS, "data": {"user_id": user_id}})
        except NotConnectedError as e:
            logger.debug(f"Unwatch of {user_id} not sent: {e.message}")

    async def rewatch(self):
        for user_id in list(self._watchers):
            try:
                await self.get_status(user_id)
            except CampusLinkClientError as e:
                logger.warning(f"Re-watching {user_id} failed: {e}")

    def _on_status_update(self, data: Any):
        try:
            record = PresenceRecord.model_validate(data)
        except ValidationError:
            logger.warning("Ignoring malformed user:status-update push")
            return
        self._apply(record)

    def _apply(self, record: PresenceRecord):
        self._records[record.user_id] = record
        for listener in list(self._watchers.get(record.user_id, ())):
            try:
                listener(record)
            except Exception as e:
                logger.exception(f"Presence listener for {record.user_id} failed: {e}")

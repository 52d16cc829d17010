"""
Client-side notification state.

The center holds the most recent notifications (newest first) and is their
only writer. ``unread_count`` is always the number of held notifications with
``read == False``. ``total_unread`` is the server's count, which can be larger
than the held window; it is reconciled from every acknowledgment.

Mutations are optimistic: local state changes first, then the request goes
out. A failed request is re-raised to the caller and the local change stays.
"""

import logging
from typing import Any, Callable, List, Optional

from pydantic import ValidationError

from campuslink_client.exceptions import RequestError
from campuslink_client.realtime.multiplexer import EventMultiplexer
from campuslink_client.realtime.requests import RequestProtocol
from campuslink_types.notifications import (
    Notification,
    NotificationDeleted,
    NotificationReadResponse,
    NotificationsGetResponse,
    NotificationsReadAllResponse,
)
from campuslink_types.websocket import EventName

logger = logging.getLogger(__name__)

NotificationListener = Callable[["NotificationCenter"], None]


class NotificationCenter:

    def __init__(self, requests: RequestProtocol, events: EventMultiplexer):
        self.requests = requests
        self.events = events
        self._items: List[Notification] = []
        self.total_unread = 0
        self._listeners: List[NotificationListener] = []
        self._disposers: List[Callable[[], None]] = []

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def notifications(self) -> List[Notification]:
        return list(self._items)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._items if not n.read)

    def get(self, notification_id: str) -> Optional[Notification]:
        for notification in self._items:
            if notification.id == notification_id:
                return notification
        return None

    def add_listener(self, listener: NotificationListener) -> Callable[[], None]:
        """Call ``listener(center)`` after every change. Returns a disposer."""
        self._listeners.append(listener)

        def dispose():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return dispose

    def _changed(self):
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.exception(f"Notification listener failed: {e}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        if self._disposers:
            return
        self._disposers = [
            self.events.subscribe(EventName.NOTIFICATION_NEW, self._on_new),
            self.events.subscribe(EventName.NOTIFICATION_UPDATE, self._on_update),
            self.events.subscribe(EventName.NOTIFICATION_DELETE, self._on_delete),
        ]

    def stop(self):
        for dispose in self._disposers:
            dispose()
        self._disposers = []

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def fetch_initial(self, limit: int = 20) -> NotificationsGetResponse:
        data = await self.requests.request(EventName.NOTIFICATIONS_GET, {"limit": limit})
        response = NotificationsGetResponse.model_validate(data or {})

        seen = set()
        items = []
        for notification in response.notifications:
            if notification.id not in seen:
                seen.add(notification.id)
                items.append(notification)
        self._items = items
        self.total_unread = response.unread_count
        self._changed()
        return response

    async def mark_read(self, notification_id: str) -> NotificationReadResponse:
        """
        Mark one notification read. Idempotent: an already-read notification
        never lowers the counts again.
        """
        for index, notification in enumerate(self._items):
            if notification.id == notification_id:
                if not notification.read:
                    self._items[index] = notification.model_copy(update={"read": True})
                    self.total_unread = max(0, self.total_unread - 1)
                    self._changed()
                break

        try:
            data = await self.requests.request(EventName.NOTIFICATION_READ, {"notification_id": notification_id})
        except RequestError as e:
            logger.warning(f"Marking notification {notification_id} read failed: {e}")
            raise

        response = NotificationReadResponse.model_validate(data)
        self.total_unread = response.unread_count
        self._changed()
        return response

    async def mark_all_read(self) -> NotificationsReadAllResponse:
        self._items = [
            n if n.read else n.model_copy(update={"read": True})
            for n in self._items
        ]
        self.total_unread = 0
        self._changed()

        try:
            data = await self.requests.request(EventName.NOTIFICATIONS_READ_ALL)
        except RequestError as e:
            logger.warning(f"Marking all notifications read failed: {e}")
            raise

        response = NotificationsReadAllResponse.model_validate(data)
        self.total_unread = response.unread_count
        self._changed()
        return response

    async def clear_all(self) -> Any:
        self._items = []
        self.total_unread = 0
        self._changed()

        try:
            return await self.requests.request(EventName.NOTIFICATIONS_CLEAR_ALL)
        except RequestError as e:
            logger.warning(f"Clearing notifications failed: {e}")
            raise

    # ------------------------------------------------------------------
    # Pushes
    # ------------------------------------------------------------------

    def _on_new(self, data: Any):
        try:
            notification = Notification.model_validate(data)
        except ValidationError:
            logger.warning("Ignoring malformed notification:new push")
            return

        existing = self.get(notification.id)
        if existing is not None:
            # Same id again: replace in place, never revert read
            if existing.read and not notification.read:
                notification = notification.model_copy(update={"read": True})
            self._items = [notification if n.id == notification.id else n for n in self._items]
        else:
            self._items.insert(0, notification)
            if not notification.read:
                self.total_unread += 1
        self._changed()

    def _on_update(self, data: Any):
        try:
            notification = Notification.model_validate(data)
        except ValidationError:
            logger.warning("Ignoring malformed notification:update push")
            return

        for index, existing in enumerate(self._items):
            if existing.id != notification.id:
                continue
            if existing.read:
                notification = notification.model_copy(update={"read": True})
            elif notification.read:
                self.total_unread = max(0, self.total_unread - 1)
            self._items[index] = notification
            self._changed()
            return
        logger.debug(f"Update for notification {notification.id} outside the held window")

    def _on_delete(self, data: Any):
        try:
            notification_id = NotificationDeleted.model_validate(data).notification_id
        except ValidationError:
            logger.warning("Ignoring malformed notification:delete push")
            return

        removed = self.get(notification_id)
        if removed is None:
            return
        self._items = [n for n in self._items if n.id != notification_id]
        if not removed.read:
            self.total_unread = max(0, self.total_unread - 1)
        self._changed()

"""
Notification delivery engine (server side).

Notifications are owned by one user and move one way, unread -> read. Every
mutation is pushed to the owner's personal channel so all of the user's
sessions stay in step.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from campuslink_backend.exceptions import NotFoundError
from campuslink_backend.settings import settings
from campuslink_types.notifications import (
    Notification,
    NotificationDeleted,
    NotificationReadResponse,
    NotificationsGetResponse,
    NotificationsReadAllResponse,
)
from campuslink_types.websocket import EventName

logger = logging.getLogger(__name__)

# (user_id, event_type, data)
UserPublisher = Callable[[str, str, Any], Awaitable[None]]


class NotificationRepository:
    """Storage for notifications. All methods are scoped to one user."""

    async def add(self, notification: Notification) -> Notification:
        raise NotImplementedError

    async def get(self, user_id: str, notification_id: str) -> Optional[Notification]:
        raise NotImplementedError

    async def list_recent(self, user_id: str, limit: int) -> List[Notification]:
        """Newest first."""
        raise NotImplementedError

    async def list_unread(self, user_id: str) -> List[Notification]:
        raise NotImplementedError

    async def count_unread(self, user_id: str) -> int:
        raise NotImplementedError

    async def save(self, notification: Notification) -> Notification:
        raise NotImplementedError

    async def delete(self, user_id: str, notification_id: str) -> bool:
        raise NotImplementedError

    async def delete_all(self, user_id: str) -> List[str]:
        """Remove everything the user owns and return the removed ids."""
        raise NotImplementedError


class InMemoryNotificationRepository(NotificationRepository):

    def __init__(self):
        self._items: Dict[str, Dict[str, Notification]] = {}  # user_id -> id -> notification

    async def add(self, notification: Notification) -> Notification:
        self._items.setdefault(notification.user_id, {})[notification.id] = notification
        return notification

    async def get(self, user_id: str, notification_id: str) -> Optional[Notification]:
        return self._items.get(user_id, {}).get(notification_id)

    async def list_recent(self, user_id: str, limit: int) -> List[Notification]:
        items = sorted(
            self._items.get(user_id, {}).values(),
            key=lambda n: n.created_at,
            reverse=True,
        )
        return items[:limit]

    async def list_unread(self, user_id: str) -> List[Notification]:
        return [n for n in self._items.get(user_id, {}).values() if not n.read]

    async def count_unread(self, user_id: str) -> int:
        return sum(1 for n in self._items.get(user_id, {}).values() if not n.read)

    async def save(self, notification: Notification) -> Notification:
        return await self.add(notification)

    async def delete(self, user_id: str, notification_id: str) -> bool:
        return self._items.get(user_id, {}).pop(notification_id, None) is not None

    async def delete_all(self, user_id: str) -> List[str]:
        return list(self._items.pop(user_id, {}).keys())


class NotificationService:
    """Applies notification commands and pushes the resulting changes."""

    def __init__(
        self,
        repository: NotificationRepository,
        publish_to_user: UserPublisher,
        fetch_max: Optional[int] = None,
    ):
        self.repository = repository
        self._publish_to_user = publish_to_user
        self._fetch_max = fetch_max or settings.NOTIFICATIONS_FETCH_MAX

    async def _push(self, user_id: str, event_type: str, data: Any):
        await self._publish_to_user(user_id, event_type, data)

    async def list_recent(self, user_id: str, limit: int = 20) -> NotificationsGetResponse:
        limit = max(1, min(limit, self._fetch_max))
        notifications = await self.repository.list_recent(user_id, limit)
        unread_count = await self.repository.count_unread(user_id)
        return NotificationsGetResponse(notifications=notifications, unread_count=unread_count)

    async def mark_read(self, user_id: str, notification_id: str) -> NotificationReadResponse:
        """
        Mark one notification read.

        Idempotent: an already-read notification is left alone and nothing is
        pushed, so the unread count drops at most once per notification.

        Raises:
            NotFoundError: If the user owns no such notification
        """
        notification = await self.repository.get(user_id, notification_id)
        if notification is None:
            raise NotFoundError(f"Notification {notification_id} not found")

        changed = not notification.read
        if changed:
            notification = notification.model_copy(update={"read": True})
            await self.repository.save(notification)
            await self._push(user_id, EventName.NOTIFICATION_UPDATE, notification.model_dump(mode="json"))

        unread_count = await self.repository.count_unread(user_id)
        return NotificationReadResponse(
            notification_id=notification_id,
            changed=changed,
            unread_count=unread_count,
        )

    async def mark_all_read(self, user_id: str) -> NotificationsReadAllResponse:
        unread = await self.repository.list_unread(user_id)
        for notification in unread:
            notification = notification.model_copy(update={"read": True})
            await self.repository.save(notification)
            await self._push(user_id, EventName.NOTIFICATION_UPDATE, notification.model_dump(mode="json"))

        logger.debug(f"Marked {len(unread)} notification(s) read for user {user_id}")
        return NotificationsReadAllResponse(updated=len(unread), unread_count=0)

    async def clear_all(self, user_id: str) -> Dict[str, int]:
        removed = await self.repository.delete_all(user_id)
        for notification_id in removed:
            await self._push(
                user_id,
                EventName.NOTIFICATION_DELETE,
                NotificationDeleted(notification_id=notification_id).model_dump(),
            )
        logger.debug(f"Cleared {len(removed)} notification(s) for user {user_id}")
        return {"removed": len(removed), "unread_count": 0}

    async def create(self, notification: Notification) -> Notification:
        """Store a new notification and push ``notification:new`` to its owner."""
        if not notification.user_id:
            raise ValueError("Notification requires a user_id")
        await self.repository.add(notification)
        await self._push(notification.user_id, EventName.NOTIFICATION_NEW, notification.model_dump(mode="json"))
        logger.info(f"Notification {notification.id} created for user {notification.user_id}")
        return notification

    async def update(self, user_id: str, notification_id: str, **changes: Any) -> Notification:
        """
        Change fields of a stored notification and push ``notification:update``.

        ``read`` can only move to True here; unread is never restored.
        """
        notification = await self.repository.get(user_id, notification_id)
        if notification is None:
            raise NotFoundError(f"Notification {notification_id} not found")

        changes.pop("id", None)
        changes.pop("user_id", None)
        if notification.read:
            changes["read"] = True

        notification = notification.model_copy(update=changes)
        await self.repository.save(notification)
        await self._push(user_id, EventName.NOTIFICATION_UPDATE, notification.model_dump(mode="json"))
        return notification

    async def delete(self, user_id: str, notification_id: str) -> bool:
        removed = await self.repository.delete(user_id, notification_id)
        if not removed:
            raise NotFoundError(f"Notification {notification_id} not found")
        await self._push(
            user_id,
            EventName.NOTIFICATION_DELETE,
            NotificationDeleted(notification_id=notification_id).model_dump(),
        )
        return True

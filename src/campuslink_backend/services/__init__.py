"""Notification, presence and activity engines behind the realtime channel."""

from campuslink_backend.services.activities import (
    ActivityRepository,
    ActivityService,
    InMemoryActivityRepository,
)
from campuslink_backend.services.notifications import (
    InMemoryNotificationRepository,
    NotificationRepository,
    NotificationService,
)
from campuslink_backend.services.presence import (
    InMemoryPresenceStore,
    PresenceStore,
    PresenceTracker,
    RedisPresenceStore,
)

__all__ = [
    "ActivityRepository",
    "ActivityService",
    "InMemoryActivityRepository",
    "InMemoryNotificationRepository",
    "NotificationRepository",
    "NotificationService",
    "InMemoryPresenceStore",
    "PresenceStore",
    "PresenceTracker",
    "RedisPresenceStore",
]

"""
Server composition: connection manager, engines and authenticator, built
once per process and handed to the endpoint.
"""

import logging
from typing import Optional

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
from campuslink_backend.settings import settings
from campuslink_backend.websocket.auth import TokenAuthenticator, create_authenticator
from campuslink_backend.websocket.connection_manager import ConnectionManager, presence_channel
from campuslink_backend.websocket.pubsub import PubSubBroker, create_pubsub

logger = logging.getLogger(__name__)


class RealtimeHub:
    """Everything a WebSocket session needs, with one start/stop lifecycle."""

    def __init__(
        self,
        manager: ConnectionManager,
        authenticator: TokenAuthenticator,
        notifications: NotificationService,
        presence: PresenceTracker,
        activities: ActivityService,
    ):
        self.manager = manager
        self.authenticator = authenticator
        self.notifications = notifications
        self.presence = presence
        self.activities = activities

    async def start(self):
        await self.manager.start()
        logger.info("Realtime hub started")

    async def stop(self):
        await self.presence.stop()
        await self.manager.stop()
        logger.info("Realtime hub stopped")


def create_hub(
    pubsub: Optional[PubSubBroker] = None,
    authenticator: Optional[TokenAuthenticator] = None,
    notification_repository: Optional[NotificationRepository] = None,
    presence_store: Optional[PresenceStore] = None,
    activity_repository: Optional[ActivityRepository] = None,
    presence_grace_period: Optional[float] = None,
) -> RealtimeHub:
    """
    Build a hub, taking anything not passed in from settings.

    Example:
        >>> hub = create_hub(authenticator=StaticTokenAuthenticator({"t1": "u1"}))
        >>> await hub.start()
    """
    manager = ConnectionManager(pubsub or create_pubsub())

    if presence_store is None:
        presence_store = RedisPresenceStore() if settings.WS_PRESENCE_IN_REDIS else InMemoryPresenceStore()

    async def publish_presence(user_id: str, event_type: str, data):
        await manager.publish(presence_channel(user_id), event_type, data)

    async def publish_activity(room: Optional[str], event_type: str, data):
        if room:
            await manager.publish_to_room(room, event_type, data)
        else:
            await manager.broadcast(event_type, data)

    return RealtimeHub(
        manager=manager,
        authenticator=authenticator or create_authenticator(),
        notifications=NotificationService(
            notification_repository or InMemoryNotificationRepository(),
            manager.publish_to_user,
        ),
        presence=PresenceTracker(presence_store, publish_presence, grace_period=presence_grace_period),
        activities=ActivityService(
            activity_repository or InMemoryActivityRepository(),
            publish_activity,
        ),
    )

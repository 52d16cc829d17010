"""Activity feed stream (server side): an append-only log, read newest first."""

import logging
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from campuslink_backend.settings import settings
from campuslink_types.activities import Activity, ActivitiesGetResponse, ActivityFilter
from campuslink_types.websocket import EventName

logger = logging.getLogger(__name__)

# (room or None for everyone, event_type, data)
ActivityPublisher = Callable[[Optional[str], str, Any], Awaitable[None]]


class ActivityRepository:

    async def append(self, activity: Activity) -> Activity:
        raise NotImplementedError

    async def query(self, activity_filter: ActivityFilter, limit: int, offset: int) -> Tuple[List[Activity], bool]:
        """Matching activities newest first, and whether more exist past this page."""
        raise NotImplementedError


class InMemoryActivityRepository(ActivityRepository):

    def __init__(self):
        self._log: List[Activity] = []

    async def append(self, activity: Activity) -> Activity:
        self._log.append(activity)
        return activity

    async def query(self, activity_filter: ActivityFilter, limit: int, offset: int) -> Tuple[List[Activity], bool]:
        matching = [a for a in reversed(self._log) if activity_filter.matches(a)]
        page = matching[offset:offset + limit + 1]
        return page[:limit], len(page) > limit


class ActivityService:

    def __init__(
        self,
        repository: ActivityRepository,
        publish: ActivityPublisher,
        page_max: Optional[int] = None,
    ):
        self.repository = repository
        self._publish = publish
        self._page_max = page_max or settings.ACTIVITIES_PAGE_MAX

    async def list(
        self,
        activity_filter: Optional[ActivityFilter] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> ActivitiesGetResponse:
        activity_filter = activity_filter or ActivityFilter()
        limit = max(1, min(limit, self._page_max))
        activities, has_more = await self.repository.query(activity_filter, limit, max(0, offset))
        return ActivitiesGetResponse(activities=activities, has_more=has_more)

    async def record(self, activity: Activity, room: Optional[str] = None) -> Activity:
        """
        Append an activity and push ``activity:new``.

        Args:
            activity: The activity to store
            room: Push only to sessions in this room; None pushes to every session
        """
        await self.repository.append(activity)
        await self._publish(room, EventName.ACTIVITY_NEW, activity.model_dump(mode="json"))
        logger.debug(f"Recorded activity {activity.id} ({activity.type.value}) room={room}")
        return activity

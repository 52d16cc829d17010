"""
Client-side activity feed.

Holds a filtered, newest-first page window. ``fetch_page`` with offset 0
replaces the list; a later offset appends. Live ``activity:new`` pushes that
match the current filter are prepended and the list is cut back to
``display_limit`` unless more pages were loaded explicitly.
"""

import logging
from typing import Any, Callable, List, Optional

from pydantic import ValidationError

from campuslink_client.realtime.multiplexer import EventMultiplexer
from campuslink_client.realtime.requests import RequestProtocol
from campuslink_types.activities import ActivitiesGetResponse, Activity, ActivityFilter
from campuslink_types.websocket import EventName

logger = logging.getLogger(__name__)


class ActivityFeed:

    def __init__(
        self,
        requests: RequestProtocol,
        events: EventMultiplexer,
        display_limit: int = 20,
    ):
        self.requests = requests
        self.events = events
        self.display_limit = display_limit
        self.filter = ActivityFilter()
        self.has_more = False
        self._items: List[Activity] = []
        self._window = display_limit
        self._listeners: List[Callable[["ActivityFeed"], None]] = []
        self._dispose_push: Optional[Callable[[], None]] = None

    @property
    def activities(self) -> List[Activity]:
        return list(self._items)

    def start(self):
        if self._dispose_push is None:
            self._dispose_push = self.events.subscribe(EventName.ACTIVITY_NEW, self._on_new)

    def stop(self):
        if self._dispose_push is not None:
            self._dispose_push()
            self._dispose_push = None

    def add_listener(self, listener: Callable[["ActivityFeed"], None]) -> Callable[[], None]:
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
                logger.exception(f"Activity listener failed: {e}")

    async def fetch_page(
        self,
        activity_filter: Optional[ActivityFilter] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> ActivitiesGetResponse:
        if activity_filter is not None:
            self.filter = activity_filter
        limit = limit or self.display_limit

        payload = {"limit": limit, "offset": offset}
        payload.update(self.filter.model_dump(mode="json", exclude_none=True))
        data = await self.requests.request(EventName.ACTIVITIES_GET, payload)
        response = ActivitiesGetResponse.model_validate(data or {})

        if offset == 0:
            self._items = list(response.activities)
            self._window = max(self.display_limit, len(self._items))
        else:
            known = {a.id for a in self._items}
            self._items.extend(a for a in response.activities if a.id not in known)
            self._window = max(self._window, len(self._items))
        self.has_more = response.has_more
        self._changed()
        return response

    async def load_more(self, limit: Optional[int] = None) -> ActivitiesGetResponse:
        return await self.fetch_page(limit=limit, offset=len(self._items))

    async def set_filter(self, activity_filter: ActivityFilter) -> ActivitiesGetResponse:
        """Switch the filter and reload from the first page."""
        return await self.fetch_page(activity_filter, offset=0)

    def _on_new(self, data: Any):
        try:
            activity = Activity.model_validate(data)
        except ValidationError:
            logger.warning("Ignoring malformed activity:new push")
            return

        if not self.filter.matches(activity):
            return
        if any(a.id == activity.id for a in self._items):
            return

        self._items.insert(0, activity)
        if len(self._items) > self._window:
            del self._items[self._window:]
            self.has_more = True
        self._changed()

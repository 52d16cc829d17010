"""
Event multiplexer: fans server pushes out to feature handlers.

Handlers for one event name run in registration order. A failing handler is
logged and skipped; the others still receive the event.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Set

from campuslink_types.websocket import is_reserved_event, is_valid_event_name

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Any]


class _Subscription:
    __slots__ = ("event_name", "handler", "active")

    def __init__(self, event_name: str, handler: EventHandler):
        self.event_name = event_name
        self.handler = handler
        self.active = True


class EventMultiplexer:

    def __init__(self):
        self._subscriptions: Dict[str, List[_Subscription]] = {}
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(self, event_name: str, handler: EventHandler) -> Callable[[], None]:
        """
        Register ``handler`` for ``event_name``.

        Coroutine functions are allowed; each delivery is scheduled as a task.

        Returns:
            A disposer; calling it more than once is harmless

        Raises:
            ValueError: If the name is malformed or in the reserved ``system:`` namespace
        """
        if not is_valid_event_name(event_name):
            raise ValueError(f"Invalid event name: {event_name!r}")
        if is_reserved_event(event_name):
            raise ValueError(f"Event namespace 'system' is reserved: {event_name!r}")
        if not callable(handler):
            raise TypeError("handler must be callable")

        subscription = _Subscription(event_name, handler)
        self._subscriptions.setdefault(event_name, []).append(subscription)

        def dispose():
            if not subscription.active:
                return
            subscription.active = False
            subscriptions = self._subscriptions.get(event_name)
            if subscriptions is None:
                return
            if subscription in subscriptions:
                subscriptions.remove(subscription)
            if not subscriptions:
                del self._subscriptions[event_name]

        return dispose

    def publish(self, event_name: str, payload: Any) -> int:
        """
        Deliver ``payload`` to every handler of ``event_name``.

        Returns:
            Number of handlers the event was delivered to
        """
        subscriptions = list(self._subscriptions.get(event_name, ()))
        if not subscriptions:
            logger.debug(f"No handler for {event_name}, dropped")
            return 0

        delivered = 0
        for subscription in subscriptions:
            # Disposed by an earlier handler during this delivery
            if not subscription.active:
                continue
            delivered += 1
            try:
                result = subscription.handler(payload)
            except Exception as e:
                logger.exception(f"Handler for {event_name} failed: {e}")
                continue
            if inspect.isawaitable(result):
                self._schedule(event_name, result)
        return delivered

    def _schedule(self, event_name: str, awaitable: Any):
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)

        def _done(t: asyncio.Task):
            self._tasks.discard(t)
            if t.cancelled():
                return
            error = t.exception()
            if error is not None:
                logger.error(f"Async handler for {event_name} failed: {error!r}")

        task.add_done_callback(_done)

    def handler_count(self, event_name: str) -> int:
        return len(self._subscriptions.get(event_name, ()))

    def clear(self):
        """Drop every subscription and cancel running async deliveries."""
        for subscriptions in self._subscriptions.values():
            for subscription in subscriptions:
                subscription.active = False
        self._subscriptions.clear()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    async def drain(self):
        """Wait for async deliveries scheduled so far."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

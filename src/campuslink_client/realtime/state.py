"""Connection state machine and its observable signal."""

import asyncio
import logging
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional

from campuslink_client.exceptions import CampusLinkClientError, InvalidStateTransition

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"
    FAILED = "failed"


TRANSITIONS: Dict[ConnectionState, FrozenSet[ConnectionState]] = {
    ConnectionState.CLOSED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset({ConnectionState.OPEN, ConnectionState.CLOSED, ConnectionState.FAILED}),
    ConnectionState.OPEN: frozenset({ConnectionState.RECONNECTING, ConnectionState.CLOSED}),
    ConnectionState.RECONNECTING: frozenset({ConnectionState.OPEN, ConnectionState.CLOSED, ConnectionState.FAILED}),
    ConnectionState.FAILED: frozenset({ConnectionState.CONNECTING, ConnectionState.CLOSED}),
}

StateListener = Callable[[ConnectionState, Optional[CampusLinkClientError]], None]


class ConnectionStateSignal:
    """
    Observable connection state.

    Components read ``value`` (or subscribe) before sending instead of relying
    on every send to fail. ``error`` holds the failure behind the latest
    ``failed`` or ``closed`` state, if any.
    """

    def __init__(self, initial: ConnectionState = ConnectionState.CLOSED):
        self._value = initial
        self._error: Optional[CampusLinkClientError] = None
        self._listeners: List[StateListener] = []
        self._waiters: List[asyncio.Future] = []

    @property
    def value(self) -> ConnectionState:
        return self._value

    @property
    def error(self) -> Optional[CampusLinkClientError]:
        return self._error

    @property
    def is_open(self) -> bool:
        return self._value == ConnectionState.OPEN

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Call ``listener(state, error)`` on every change. Returns a disposer."""
        self._listeners.append(listener)

        def dispose():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return dispose

    def transition(self, new_state: ConnectionState, error: Optional[CampusLinkClientError] = None):
        """
        Move to ``new_state``.

        Raises:
            InvalidStateTransition: If the table does not allow the change
        """
        if new_state == self._value:
            if error is not None:
                self._error = error
            return
        if new_state not in TRANSITIONS[self._value]:
            raise InvalidStateTransition(f"Cannot go from {self._value.value} to {new_state.value}")

        logger.debug(f"Connection state {self._value.value} -> {new_state.value}")
        self._value = new_state
        self._error = error

        for waiter in list(self._waiters):
            if not waiter.done():
                waiter.set_result(new_state)

        for listener in list(self._listeners):
            try:
                listener(new_state, error)
            except Exception as e:
                logger.exception(f"Connection state listener failed: {e}")

    async def wait_for(self, state: ConnectionState, timeout: Optional[float] = None) -> ConnectionState:
        """Wait until the signal reaches ``state``."""

        async def _wait():
            loop = asyncio.get_running_loop()
            while self._value != state:
                waiter = loop.create_future()
                self._waiters.append(waiter)
                try:
                    await waiter
                finally:
                    self._waiters.remove(waiter)
            return self._value

        return await asyncio.wait_for(_wait(), timeout)

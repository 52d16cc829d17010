"""Pytest configuration and fixtures for the realtime tests."""

import asyncio
import json
import time
from typing import Any, Callable, Dict, List, Optional

import pytest
import pytest_asyncio

from campuslink_backend.websocket.auth import StaticTokenAuthenticator
from campuslink_backend.websocket.hub import RealtimeHub, create_hub
from campuslink_backend.websocket.pubsub import LocalPubSub
from campuslink_backend.websocket.router import serve_websocket
from campuslink_client.exceptions import ConnectionError
from campuslink_client.realtime.session import RealtimeSession, create_realtime_session
from campuslink_client.realtime.state import ConnectionState
from campuslink_client.realtime.transport import Transport, TransportClosed


TOKENS = {
    "token-alice": {"user_id": "alice", "role": "student"},
    "token-bob": {"user_id": "bob", "role": "student"},
    "token-carol": {"user_id": "carol", "role": "lecturer"},
}


# ============================================================================
# In-memory duplex channel
# ============================================================================


class MemoryServerSocket:
    """Server end of an in-memory channel, speaking the ASGI-style socket API."""

    def __init__(self):
        self.to_client: asyncio.Queue = asyncio.Queue()
        self.to_server: asyncio.Queue = asyncio.Queue()
        self.accepted = False
        self.closed = False
        self.close_code: Optional[int] = None
        self.sent: List[dict] = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, data: Any):
        if self.closed:
            raise RuntimeError("Socket is closed")
        # Same round trip as a real socket
        text = json.dumps(data, default=str)
        self.sent.append(json.loads(text))
        await self.to_client.put(text)

    async def receive(self) -> dict:
        return await self.to_server.get()

    async def close(self, code: int = 1000, reason: Optional[str] = None):
        if self.closed:
            return
        self.closed = True
        self.close_code = code
        await self.to_client.put(TransportClosed(code, reason or ""))
        # A closed socket reports a disconnect to its own receive loop
        await self.to_server.put({"type": "websocket.disconnect", "code": code})


class MemoryTransport(Transport):
    """
    Client transport that runs the real server loop against a memory socket.

    ``drop()`` simulates a network failure: the server sees a disconnect and
    the client reader sees the channel close.
    """

    def __init__(self, hub: RealtimeHub):
        self.hub = hub
        self.refuse_next = 0
        self.open_count = 0
        self.socket: Optional[MemoryServerSocket] = None
        self._server_task: Optional[asyncio.Task] = None

    async def open(self, url: str, token: str, timeout: float) -> None:
        await self.close()
        if self.refuse_next > 0:
            self.refuse_next -= 1
            raise ConnectionError("Connection refused")
        self.socket = MemoryServerSocket()
        self._server_task = asyncio.create_task(serve_websocket(self.socket, token, self.hub))
        self.open_count += 1

    async def send(self, text: str) -> None:
        socket = self.socket
        if socket is None or socket.closed:
            raise TransportClosed()
        await socket.to_server.put({"type": "websocket.receive", "text": text})

    async def receive(self) -> str:
        socket = self.socket
        if socket is None:
            raise TransportClosed()
        item = await socket.to_client.get()
        if isinstance(item, TransportClosed):
            raise item
        return item

    async def close(self) -> None:
        socket, task = self.socket, self._server_task
        self.socket = None
        self._server_task = None
        if socket is None:
            return
        if socket.closed:
            # Closed by the server or dropped; its loop winds down on its own
            return
        socket.closed = True
        await socket.to_server.put({"type": "websocket.disconnect", "code": 1000})
        if task is not None:
            await asyncio.wait_for(task, timeout=1.0)

    async def drop(self):
        socket = self.socket
        assert socket is not None, "transport is not open"
        socket.closed = True
        await socket.to_server.put({"type": "websocket.disconnect", "code": 1006})
        await socket.to_client.put(TransportClosed(1006, "dropped"))


# ============================================================================
# Helpers
# ============================================================================


async def wait_until(predicate: Callable[[], Any], timeout: float = 2.0, interval: float = 0.005):
    """Poll ``predicate`` until it is truthy; fail the test on timeout."""
    deadline = time.monotonic() + timeout
    while True:
        if predicate():
            return
        if time.monotonic() >= deadline:
            raise AssertionError("Condition not met within timeout")
        await asyncio.sleep(interval)


class FakeConnection:
    """
    Stand-in for the client ConnectionManager used by request protocol tests.

    Records every frame sent and lets the test deliver acks or drop the channel.
    """

    def __init__(self, is_open: bool = True):
        self.is_open = is_open
        self.state = ConnectionState.OPEN if is_open else ConnectionState.CLOSED
        self.sent: List[dict] = []
        self._ack_listeners: List[Callable] = []
        self._lost_hooks: List[Callable] = []
        self._reopen_hooks: List[Callable] = []
        self._open_hooks: List[Callable] = []

    def _add(self, hooks: list, hook):
        hooks.append(hook)

        def dispose():
            if hook in hooks:
                hooks.remove(hook)

        return dispose

    def add_ack_listener(self, listener):
        return self._add(self._ack_listeners, listener)

    def add_lost_hook(self, hook):
        return self._add(self._lost_hooks, hook)

    def add_reopen_hook(self, hook):
        return self._add(self._reopen_hooks, hook)

    def add_open_hook(self, hook):
        return self._add(self._open_hooks, hook)

    def send_nowait(self, frame: dict):
        self.sent.append(frame)

    def deliver_ack(self, frame: dict):
        for listener in list(self._ack_listeners):
            listener(frame)

    def lose(self, error):
        self.is_open = False
        self.state = ConnectionState.RECONNECTING
        for hook in list(self._lost_hooks):
            hook(error)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def authenticator():
    return StaticTokenAuthenticator(TOKENS)


@pytest_asyncio.fixture
async def hub(authenticator):
    """A started hub with in-process pub/sub and immediate offline transitions."""
    hub = create_hub(
        pubsub=LocalPubSub(handler_timeout=2.0),
        authenticator=authenticator,
        presence_grace_period=0,
    )
    await hub.start()
    yield hub
    await hub.stop()


@pytest.fixture
def session_factory(hub):
    """Build client sessions wired to ``hub`` through memory transports."""
    sessions: List[RealtimeSession] = []

    def factory(**options) -> RealtimeSession:
        transport = MemoryTransport(hub)
        defaults: Dict[str, Any] = {
            "keepalive_interval": None,
            "reconnect_delay": 0.01,
            "reconnect_delay_max": 0.05,
            "connect_timeout": 1.0,
            "request_timeout": 1.0,
        }
        defaults.update(options)
        session = create_realtime_session("ws://testserver/ws", transport=transport, **defaults)
        sessions.append(session)
        return session

    factory.sessions = sessions
    return factory


@pytest_asyncio.fixture
async def alice(session_factory):
    session = session_factory()
    await session.connect("token-alice")
    yield session
    await session.close()


@pytest_asyncio.fixture
async def bob(session_factory):
    session = session_factory()
    await session.connect("token-bob")
    yield session
    await session.close()


@pytest.fixture
def fake_connection():
    return FakeConnection()


@pytest.fixture
def wait():
    return wait_until

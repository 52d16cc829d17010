"""
Connection manager: owns the single channel to the server.

Lifecycle: closed -> connecting -> open, then open -> reconnecting -> open on a
drop. A rejected handshake or exhausted reconnection ends in failed.

Only this class writes to the transport. Outgoing frames go through an outbox
queue drained by a writer task; incoming frames are read by a reader task that
routes ``system:ack`` frames to ack listeners (the request protocol) and
everything else to the event multiplexer.
"""

import asyncio
import inspect
import json
import logging
from typing import Any, Callable, List, Optional

from campuslink_client.exceptions import (
    AuthenticationError,
    CampusLinkClientError,
    ConnectionError,
    NotConnectedError,
    ReconnectionExhaustedError,
)
from campuslink_client.realtime.multiplexer import EventMultiplexer
from campuslink_client.realtime.state import ConnectionState, ConnectionStateSignal
from campuslink_client.realtime.transport import Transport, TransportClosed, WebSocketTransport
from campuslink_types.websocket import EventName

logger = logging.getLogger(__name__)

AUTH_FAILED_CLOSE_CODE = 4001

AckListener = Callable[[dict], None]
LostHook = Callable[[NotConnectedError], None]
ReopenHook = Callable[[], Any]


def _add(hooks: list, hook) -> Callable[[], None]:
    hooks.append(hook)

    def dispose():
        if hook in hooks:
            hooks.remove(hook)

    return dispose


class ConnectionManager:
    """
    Persistent channel with bounded, exponentially backed-off reconnection.

    Args:
        url: Server endpoint, e.g. "wss://school.example/ws"
        transport: Channel implementation (``WebSocketTransport`` by default)
        events: Multiplexer receiving server pushes
        max_reconnect_attempts: Attempts after an unexpected drop before giving up
        reconnect_delay: Delay before the first attempt, doubled per attempt
        reconnect_delay_max: Upper bound of the delay
        connect_timeout: Bound on dialing plus the server handshake
        keepalive_interval: Seconds between ``system:ping`` frames; None disables
    """

    def __init__(
        self,
        url: str,
        *,
        transport: Optional[Transport] = None,
        events: Optional[EventMultiplexer] = None,
        max_reconnect_attempts: int = 5,
        reconnect_delay: float = 1.0,
        reconnect_delay_max: float = 5.0,
        connect_timeout: float = 20.0,
        keepalive_interval: Optional[float] = 25.0,
    ):
        self.url = url
        self.transport = transport or WebSocketTransport()
        self.events = events or EventMultiplexer()
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.reconnect_delay_max = reconnect_delay_max
        self.connect_timeout = connect_timeout
        self.keepalive_interval = keepalive_interval

        self.state_signal = ConnectionStateSignal()
        self.session_id: Optional[str] = None
        self.user_id: Optional[str] = None
        self.role: Optional[str] = None

        self._token: Optional[str] = None
        self._closing = False
        self._outbox: Optional[asyncio.Queue] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._keepalive_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

        self._ack_listeners: List[AckListener] = []
        self._lost_hooks: List[LostHook] = []
        self._reopen_hooks: List[ReopenHook] = []
        self._open_hooks: List[ReopenHook] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self.state_signal.value

    @property
    def is_open(self) -> bool:
        return self.state_signal.is_open

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnection attempt ``attempt`` (1-based)."""
        return min(self.reconnect_delay * (2 ** (attempt - 1)), self.reconnect_delay_max)

    # ------------------------------------------------------------------
    # Hooks used by the request protocol and the feature engines
    # ------------------------------------------------------------------

    def add_ack_listener(self, listener: AckListener) -> Callable[[], None]:
        return _add(self._ack_listeners, listener)

    def add_lost_hook(self, hook: LostHook) -> Callable[[], None]:
        """Called whenever the current channel goes away, expected or not."""
        return _add(self._lost_hooks, hook)

    def add_reopen_hook(self, hook: ReopenHook) -> Callable[[], None]:
        """Called after every successful reconnection; may return an awaitable."""
        return _add(self._reopen_hooks, hook)

    def add_open_hook(self, hook: ReopenHook) -> Callable[[], None]:
        """Called after every successful connect and reconnection; may return an awaitable."""
        return _add(self._open_hooks, hook)

    # ------------------------------------------------------------------
    # Connect / disconnect
    # ------------------------------------------------------------------

    async def connect(self, token: Optional[str]):
        """
        Open the channel and complete the server handshake.

        Raises:
            AuthenticationError: No token, or the server rejected it
            ConnectionError: The channel could not be opened
        """
        if not token:
            raise AuthenticationError("No token provided")

        if self.state in (ConnectionState.OPEN, ConnectionState.RECONNECTING):
            return
        if self._connect_task is not None and not self._connect_task.done():
            await asyncio.shield(self._connect_task)
            return

        self._token = token
        self._closing = False
        self.state_signal.transition(ConnectionState.CONNECTING)
        self._connect_task = asyncio.ensure_future(self._open_channel())

        try:
            await self._connect_task
        except asyncio.CancelledError:
            if self._closing:
                raise ConnectionError("Disconnected while connecting")
            raise
        except CampusLinkClientError as e:
            logger.warning(f"Connect failed: {e}")
            if self.state == ConnectionState.CONNECTING:
                self.state_signal.transition(ConnectionState.FAILED, e)
            raise
        finally:
            self._connect_task = None

        self._start_io()
        self.state_signal.transition(ConnectionState.OPEN)
        logger.info(f"Connected as user={self.user_id} session={self.session_id}")
        await self._run_hooks(self._open_hooks)

    async def disconnect(self):
        """
        Close the channel. Safe in any state, including mid-reconnection;
        an in-flight reconnection sequence is simply cancelled.
        """
        self._closing = True
        current = asyncio.current_task()

        tasks = [
            t for t in (self._connect_task, self._reconnect_task, self._reader_task,
                        self._writer_task, self._keepalive_task)
            if t is not None and t is not current and not t.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._reconnect_task = None
        self._reader_task = None
        self._writer_task = None
        self._keepalive_task = None
        self._outbox = None

        await self.transport.close()

        if self.state != ConnectionState.CLOSED:
            self.state_signal.transition(ConnectionState.CLOSED)
            self._notify_lost(NotConnectedError("Connection closed"))
            logger.info("Disconnected")

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def send_nowait(self, frame: dict):
        """
        Queue a frame for the writer task.

        Raises:
            NotConnectedError: If the channel is not open
        """
        if self.state != ConnectionState.OPEN or self._outbox is None:
            raise NotConnectedError(f"Cannot send {frame.get('type')} while {self.state.value}")
        self._outbox.put_nowait(json.dumps(frame, default=str))

    # ------------------------------------------------------------------
    # Channel internals
    # ------------------------------------------------------------------

    async def _open_channel(self):
        await self.transport.open(self.url, self._token, self.connect_timeout)
        handshake_done = False
        try:
            await self._handshake()
            handshake_done = True
        finally:
            if not handshake_done:
                await self.transport.close()

    async def _handshake(self):
        """The first frame is ``system:connected``, or ``system:error`` on rejection."""
        try:
            text = await asyncio.wait_for(self.transport.receive(), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            raise ConnectionError("Server did not complete the handshake")
        except TransportClosed as e:
            if e.code == AUTH_FAILED_CLOSE_CODE:
                raise AuthenticationError(e.reason or "Token rejected")
            raise ConnectionError(f"Channel closed during handshake: {e}")

        try:
            frame = json.loads(text)
        except json.JSONDecodeError:
            raise ConnectionError("Malformed handshake frame")
        if not isinstance(frame, dict):
            raise ConnectionError("Malformed handshake frame")

        frame_type = frame.get("type")
        if frame_type == EventName.SYSTEM_CONNECTED:
            self.user_id = frame.get("user_id")
            self.role = frame.get("role")
            self.session_id = frame.get("session_id")
            return

        if frame_type == EventName.SYSTEM_ERROR:
            code = frame.get("code")
            message = frame.get("message") or "Connection rejected"
            if code == "AUTH_FAILED":
                raise AuthenticationError(message, details={"code": code})
            raise ConnectionError(message, details={"code": code})

        raise ConnectionError(f"Unexpected handshake frame: {frame_type}")

    def _start_io(self):
        self._outbox = asyncio.Queue()
        self._reader_task = asyncio.create_task(self._read_loop())
        self._writer_task = asyncio.create_task(self._write_loop(self._outbox))
        if self.keepalive_interval:
            self._keepalive_task = asyncio.create_task(self._keepalive_loop())

    def _stop_io(self):
        current = asyncio.current_task()
        for task in (self._writer_task, self._keepalive_task, self._reader_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._writer_task = None
        self._keepalive_task = None
        self._reader_task = None
        self._outbox = None

    async def _read_loop(self):
        error: Optional[BaseException] = None
        try:
            while True:
                text = await self.transport.receive()
                self._dispatch(text)
        except TransportClosed as e:
            error = e
        except Exception as e:
            logger.exception(f"Reader failed: {e}")
            error = e

        if not self._closing:
            self._on_channel_lost(error)

    async def _write_loop(self, outbox: asyncio.Queue):
        while True:
            text = await outbox.get()
            try:
                await self.transport.send(text)
            except TransportClosed as e:
                logger.debug(f"Writer stopped: {e}")
                return
            except Exception as e:
                logger.error(f"Writer failed: {e}")
                return

    async def _keepalive_loop(self):
        while True:
            await asyncio.sleep(self.keepalive_interval)
            try:
                self.send_nowait({"type": EventName.SYSTEM_PING})
            except NotConnectedError:
                return

    def _dispatch(self, text: str):
        try:
            frame = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("Ignoring malformed frame from server")
            return
        if not isinstance(frame, dict):
            logger.warning("Ignoring non-object frame from server")
            return

        frame_type = frame.get("type")
        if frame_type == EventName.SYSTEM_ACK:
            for listener in list(self._ack_listeners):
                try:
                    listener(frame)
                except Exception as e:
                    logger.exception(f"Ack listener failed: {e}")
        elif frame_type == EventName.SYSTEM_ERROR:
            logger.warning(f"Server error {frame.get('code')}: {frame.get('message')}")
        elif frame_type in (EventName.SYSTEM_PONG, EventName.SYSTEM_CONNECTED):
            logger.debug(f"Received {frame_type}")
        elif isinstance(frame_type, str):
            self.events.publish(frame_type, frame.get("data"))
        else:
            logger.warning("Ignoring frame without a type")

    def _notify_lost(self, error: NotConnectedError):
        for hook in list(self._lost_hooks):
            try:
                hook(error)
            except Exception as e:
                logger.exception(f"Lost hook failed: {e}")

    def _on_channel_lost(self, error: Optional[BaseException]):
        if self.state != ConnectionState.OPEN:
            return
        logger.warning(f"Connection lost: {error}")
        self._stop_io()
        self.state_signal.transition(ConnectionState.RECONNECTING, ConnectionError(f"Connection lost: {error}"))
        self._notify_lost(NotConnectedError("Connection lost"))
        self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _reconnect(self):
        last_error: Optional[CampusLinkClientError] = None

        for attempt in range(1, self.max_reconnect_attempts + 1):
            delay = self.backoff_delay(attempt)
            logger.info(f"Reconnecting in {delay:.2f}s (attempt {attempt}/{self.max_reconnect_attempts})")
            await asyncio.sleep(delay)

            try:
                await self._open_channel()
            except AuthenticationError as e:
                logger.warning(f"Reconnection rejected: {e}")
                self.state_signal.transition(ConnectionState.FAILED, e)
                return
            except ConnectionError as e:
                logger.warning(f"Reconnection attempt {attempt} failed: {e}")
                last_error = e
                continue

            self._start_io()
            self.state_signal.transition(ConnectionState.OPEN)
            logger.info(f"Reconnected as user={self.user_id} session={self.session_id}")
            await self._run_hooks(self._reopen_hooks)
            await self._run_hooks(self._open_hooks)
            return

        error = ReconnectionExhaustedError(
            f"Gave up after {self.max_reconnect_attempts} attempts",
            attempts=self.max_reconnect_attempts,
            details={"last_error": str(last_error) if last_error else None},
        )
        logger.error(str(error))
        self.state_signal.transition(ConnectionState.FAILED, error)

    async def _run_hooks(self, hooks: List[ReopenHook]):
        for hook in list(hooks):
            try:
                result = hook()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.exception(f"Connection hook failed: {e}")

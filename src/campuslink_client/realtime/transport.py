"""
Transports carry JSON text frames over a full-duplex channel.

A transport object is reused across reconnections: every ``open`` dials a
fresh channel and drops the previous one.
"""

import asyncio
import logging
from typing import Optional
from urllib.parse import urlencode, urlsplit, urlunsplit, parse_qsl

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from campuslink_client.exceptions import ConnectionError

logger = logging.getLogger(__name__)


class TransportClosed(Exception):
    """The channel closed; ``code`` is the close code when one was received."""

    def __init__(self, code: Optional[int] = None, reason: str = ""):
        super().__init__(f"Channel closed (code={code}, reason={reason!r})")
        self.code = code
        self.reason = reason


class Transport:
    """Abstract full-duplex text channel."""

    async def open(self, url: str, token: str, timeout: float) -> None:
        """
        Dial the channel.

        Raises:
            ConnectionError: If the channel cannot be opened within ``timeout``
        """
        raise NotImplementedError

    async def send(self, text: str) -> None:
        """Raises ``TransportClosed`` if the channel is gone."""
        raise NotImplementedError

    async def receive(self) -> str:
        """Next text frame. Raises ``TransportClosed`` when the channel ends."""
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError


def with_token(url: str, token: str) -> str:
    """Append ``token`` as a query parameter, keeping any existing query."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query) if k != "token"]
    query.append(("token", token))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def to_ws_url(url: str) -> str:
    """Accept http(s) base URLs and point them at the ``/ws`` endpoint."""
    url = url.rstrip("/")
    if url.startswith("http://"):
        url = "ws://" + url[len("http://"):]
    elif url.startswith("https://"):
        url = "wss://" + url[len("https://"):]
    if not urlsplit(url).path.endswith("/ws"):
        url = f"{url}/ws"
    return url


class WebSocketTransport(Transport):
    """Transport over the ``websockets`` library."""

    def __init__(self, ping_interval: Optional[float] = 20.0, max_size: Optional[int] = 2 ** 20):
        self._ping_interval = ping_interval
        self._max_size = max_size
        self._ws = None

    async def open(self, url: str, token: str, timeout: float) -> None:
        await self.close()
        target = with_token(to_ws_url(url), token)
        logger.debug(f"Connecting to: {target.split('?')[0]}?token=***")
        try:
            self._ws = await asyncio.wait_for(
                websockets.connect(
                    target,
                    ping_interval=self._ping_interval,
                    max_size=self._max_size,
                    open_timeout=None,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise ConnectionError(f"Connection timed out after {timeout}s")
        except (OSError, InvalidHandshake, InvalidURI) as e:
            raise ConnectionError(f"Connection failed: {e}")

    async def send(self, text: str) -> None:
        if self._ws is None:
            raise TransportClosed()
        try:
            await self._ws.send(text)
        except ConnectionClosed as e:
            raise TransportClosed(self._close_code(e), self._close_reason(e))

    async def receive(self) -> str:
        if self._ws is None:
            raise TransportClosed()
        try:
            while True:
                message = await self._ws.recv()
                if isinstance(message, str):
                    return message
                # Binary frames are not part of the protocol
                logger.debug("Ignoring binary frame")
        except ConnectionClosed as e:
            raise TransportClosed(self._close_code(e), self._close_reason(e))

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except ConnectionClosed as e:
                logger.debug(f"Channel already closed: {e}")

    @staticmethod
    def _close_code(error: ConnectionClosed) -> Optional[int]:
        frame = error.rcvd
        return frame.code if frame is not None else None

    @staticmethod
    def _close_reason(error: ConnectionClosed) -> str:
        frame = error.rcvd
        return frame.reason if frame is not None else ""

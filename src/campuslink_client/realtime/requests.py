"""
Acknowledged request protocol.

Each request gets a correlation id and a pending entry holding a future. The
matching ``system:ack`` settles the future; timeout, channel loss or a send
failure settle it with an error. Whatever the outcome the entry is removed,
and a late ack for a removed id is ignored.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from uuid import uuid4

from campuslink_client.exceptions import NotConnectedError, RequestError, ServerRejectedError, TimeoutError
from campuslink_client.realtime.connection import ConnectionManager

logger = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    ack_id: str
    command: str
    future: asyncio.Future
    created_at: float = field(default_factory=time.monotonic)


class RequestProtocol:
    """
    Request/response over the event channel.

    Example:
        >>> data = await requests.request("notifications:get", {"limit": 20})
    """

    def __init__(self, connection: ConnectionManager, default_timeout: float = 10.0):
        self.connection = connection
        self.default_timeout = default_timeout
        self._pending: Dict[str, PendingRequest] = {}
        self._dispose_ack = connection.add_ack_listener(self._on_ack)
        self._dispose_lost = connection.add_lost_hook(self._on_channel_lost)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def request(self, command: str, payload: Optional[Any] = None, *, timeout: Optional[float] = None) -> Any:
        """
        Send ``command`` and wait for its acknowledgment.

        Returns:
            The ack's ``data``

        Raises:
            NotConnectedError: The channel is not open, or dropped while waiting
            TimeoutError: No ack within ``timeout`` (default ``default_timeout``)
            ServerRejectedError: The server answered ``success: false``
        """
        timeout = self.default_timeout if timeout is None else timeout
        if not self.connection.is_open:
            raise NotConnectedError(f"Cannot send {command} while {self.connection.state.value}", command=command)

        ack_id = uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[ack_id] = PendingRequest(ack_id=ack_id, command=command, future=future)

        try:
            self.connection.send_nowait({
                "type": command,
                "data": payload if payload is not None else {},
                "ack_id": ack_id,
            })
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Request {command} ({ack_id}) timed out after {timeout}s")
            raise TimeoutError(f"{command} timed out after {timeout}s", command=command, timeout=timeout)
        except RequestError as e:
            if e.command is None:
                e.command = command
            raise
        finally:
            self._pending.pop(ack_id, None)

    def _on_ack(self, frame: dict):
        ack_id = frame.get("ack_id")
        pending = self._pending.pop(ack_id, None) if isinstance(ack_id, str) else None
        if pending is None:
            logger.debug(f"Ignoring ack for unknown or settled request {ack_id}")
            return
        if pending.future.done():
            return

        if frame.get("success"):
            pending.future.set_result(frame.get("data"))
            return

        error = frame.get("error") or {}
        server_reason = error.get("reason") if isinstance(error, dict) else None
        message = error.get("message") if isinstance(error, dict) else None
        pending.future.set_exception(ServerRejectedError(
            message or f"{pending.command} rejected",
            command=pending.command,
            server_reason=server_reason,
            details=error.get("details") if isinstance(error, dict) else None,
        ))

    def _on_channel_lost(self, error: NotConnectedError):
        """The server never answers on a dropped channel; fail everything pending."""
        pending, self._pending = self._pending, {}
        for entry in pending.values():
            if not entry.future.done():
                entry.future.set_exception(NotConnectedError(error.message, command=entry.command))
        if pending:
            logger.info(f"Failed {len(pending)} pending request(s): {error.message}")

    def close(self):
        self._dispose_ack()
        self._dispose_lost()

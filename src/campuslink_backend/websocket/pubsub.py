"""
Pub/Sub abstraction for WebSocket fan-out.

Everything the server pushes goes through a broker: an event is published to
a logical channel ("user:<id>", "room:<id>", "presence:<id>", "all") and every
registered handler is called with ``(channel, message)``. The connection
manager is the only handler in practice; it forwards the message to the local
sessions that sit in that channel.

``LocalPubSub`` delivers in process. ``RedisPubSub`` goes through Redis so
that several backend instances can share the same channels.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Set, Any

from campuslink_backend.redis_cache import get_redis_client
from campuslink_backend.settings import settings

logger = logging.getLogger(__name__)

# Redis channel prefix
CHANNEL_PREFIX = "campuslink:ws:"

PubSubHandler = Callable[[str, dict], Awaitable[None]]


@dataclass
class RawPubSubMessage:
    """Raw message received from Redis pub/sub."""
    channel: str  # Full channel name with prefix
    data: bytes | str
    message_type: str  # Redis message type (e.g., "message", "subscribe")


@dataclass
class ParsedPubSubMessage:
    """Parsed pub/sub message ready for handling."""
    channel: str  # Logical channel name (prefix removed)
    data: dict


def build_message(channel: str, event_type: str, data: Any) -> dict:
    """The envelope every broker carries: what is pushed to clients plus the channel."""
    return {"type": event_type, "channel": channel, "data": data}


def parse_pubsub_message(raw: RawPubSubMessage) -> Optional[ParsedPubSubMessage]:
    """
    Parse and validate a raw pub/sub message.

    Args:
        raw: Raw message from Redis pub/sub

    Returns:
        ParsedPubSubMessage if valid, None if it should be skipped
    """
    if raw.message_type != "message":
        return None

    channel = raw.channel
    if isinstance(channel, bytes):
        channel = channel.decode("utf-8")

    if channel.startswith(CHANNEL_PREFIX):
        channel = channel[len(CHANNEL_PREFIX):]

    data = raw.data
    if isinstance(data, bytes):
        data = data.decode("utf-8")

    try:
        parsed_data = json.loads(data)
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON in pubsub message: {e}")
        return None

    if not isinstance(parsed_data, dict):
        logger.error(f"Unexpected pubsub payload on {channel}: {type(parsed_data).__name__}")
        return None

    return ParsedPubSubMessage(channel=channel, data=parsed_data)


class PubSubBroker:
    """
    Handler registry shared by all brokers.

    Subclasses implement ``subscribe``, ``unsubscribe`` and ``publish``;
    received messages are passed to ``_dispatch``.
    """

    def __init__(self, handler_timeout: Optional[float] = None):
        self._handlers: Dict[str, PubSubHandler] = {}
        self._handler_timeout = handler_timeout if handler_timeout is not None else settings.WS_HANDLER_TIMEOUT
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def register_handler(self, name: str, handler: PubSubHandler):
        """
        Register a message handler.

        Args:
            name: Unique name for this handler (for logging/debugging)
            handler: Async callback called with (channel: str, message: dict)
        """
        self._handlers[name] = handler
        logger.info(f"Registered pubsub handler: {name}")

    def unregister_handler(self, name: str):
        if name in self._handlers:
            del self._handlers[name]
            logger.info(f"Unregistered pubsub handler: {name}")

    async def start(self):
        self._running = True

    async def stop(self):
        self._running = False

    async def subscribe(self, channel: str):
        raise NotImplementedError

    async def unsubscribe(self, channel: str):
        raise NotImplementedError

    async def publish(self, channel: str, event_type: str, data: Any):
        raise NotImplementedError

    async def _run_handler_with_timeout(
        self,
        handler_name: str,
        handler: PubSubHandler,
        channel: str,
        data: dict
    ) -> bool:
        """
        Run a handler with timeout protection.

        Returns:
            True if handler completed successfully, False otherwise
        """
        try:
            await asyncio.wait_for(handler(channel, data), timeout=self._handler_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Handler '{handler_name}' timed out after {self._handler_timeout}s on channel {channel}")
            return False
        except Exception as e:
            logger.error(f"Error in pubsub handler '{handler_name}': {e}")
            return False

    async def _dispatch(self, channel: str, data: dict):
        """Call every registered handler concurrently."""
        handler_tasks = [
            self._run_handler_with_timeout(handler_name, handler, channel, data)
            for handler_name, handler in list(self._handlers.items())
        ]
        if handler_tasks:
            await asyncio.gather(*handler_tasks, return_exceptions=True)


class LocalPubSub(PubSubBroker):
    """
    In-process broker for single-instance deployments and tests.

    ``publish`` awaits delivery, so by the time it returns every local
    subscriber's send has been attempted.
    """

    def __init__(self, handler_timeout: Optional[float] = None):
        super().__init__(handler_timeout)
        self._subscribed_channels: Set[str] = set()

    async def start(self):
        await super().start()
        logger.info(f"Local PubSub started with {len(self._handlers)} handler(s)")

    async def stop(self):
        await super().stop()
        self._subscribed_channels.clear()
        logger.info("Local PubSub stopped")

    async def subscribe(self, channel: str):
        self._subscribed_channels.add(channel)

    async def unsubscribe(self, channel: str):
        self._subscribed_channels.discard(channel)

    async def publish(self, channel: str, event_type: str, data: Any):
        if channel not in self._subscribed_channels:
            logger.debug(f"No subscribers for {channel}, dropping {event_type}")
            return
        await self._dispatch(channel, build_message(channel, event_type, data))
        logger.debug(f"Published to {channel}: {event_type}")


class RedisPubSub(PubSubBroker):
    """
    Broker backed by Redis pub/sub, for running several backend instances.

    An instance only subscribes to the channels its own sessions sit in; a
    listener task reads from Redis and dispatches to the local handlers.
    """

    LISTEN_POLL_TIMEOUT = 0.5
    MAX_LISTENER_ERRORS = 10

    def __init__(self, handler_timeout: Optional[float] = None):
        super().__init__(handler_timeout)
        self._pubsub = None
        self._listener_task: Optional[asyncio.Task] = None
        self._channels: Set[str] = set()

    @staticmethod
    def _redis_channel(channel: str) -> str:
        return f"{CHANNEL_PREFIX}{channel}"

    async def start(self):
        if self._running:
            logger.warning("Redis PubSub already started")
            return

        redis_client = await get_redis_client()
        self._pubsub = redis_client.pubsub()
        self._running = True
        self._listener_task = asyncio.create_task(self._listen())
        logger.info(f"Redis PubSub started with {len(self._handlers)} handler(s)")

    async def stop(self):
        self._running = False

        task, self._listener_task = self._listener_task, None
        if task is not None:
            task.cancel()
            results = await asyncio.gather(task, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                    logger.warning(f"Redis PubSub listener ended with an error: {result}")

        pubsub, self._pubsub = self._pubsub, None
        if pubsub is not None:
            await self._shutdown_step("unsubscribe", pubsub.unsubscribe)
            await self._shutdown_step("close", pubsub.aclose)

        self._channels.clear()
        logger.info("Redis PubSub stopped")

    async def _shutdown_step(self, name: str, step: Callable[[], Awaitable[Any]]):
        try:
            await asyncio.wait_for(step(), timeout=1.0)
        except asyncio.TimeoutError:
            logger.warning(f"Redis PubSub {name} timed out")
        except Exception as e:
            logger.warning(f"Redis PubSub {name} failed: {e}")

    async def subscribe(self, channel: str):
        """Subscribe to logical ``channel``; a no-op before ``start``."""
        if self._pubsub is None:
            logger.warning(f"Redis PubSub not started, not subscribing to {channel}")
            return
        redis_channel = self._redis_channel(channel)
        if redis_channel in self._channels:
            return
        await self._pubsub.subscribe(redis_channel)
        self._channels.add(redis_channel)
        logger.debug(f"Subscribed to {redis_channel}")

    async def unsubscribe(self, channel: str):
        redis_channel = self._redis_channel(channel)
        if self._pubsub is None or redis_channel not in self._channels:
            return
        await self._pubsub.unsubscribe(redis_channel)
        self._channels.discard(redis_channel)
        logger.debug(f"Unsubscribed from {redis_channel}")

    async def publish(self, channel: str, event_type: str, data: Any):
        redis_client = await get_redis_client()
        message = json.dumps(build_message(channel, event_type, data), default=str)
        await redis_client.publish(self._redis_channel(channel), message)
        logger.debug(f"Published {event_type} to {channel} via Redis")

    async def _receive_once(self):
        if not self._channels:
            # get_message needs at least one subscription
            await asyncio.sleep(0.1)
            return
        raw_message = await self._pubsub.get_message(
            ignore_subscribe_messages=True,
            timeout=self.LISTEN_POLL_TIMEOUT,
        )
        if raw_message is not None and raw_message.get("type") == "message":
            await self._process_raw_message(raw_message)

    async def _listen(self):
        errors = 0
        logger.debug("Redis PubSub listener running")
        while self._running and self._pubsub is not None:
            try:
                await self._receive_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                errors += 1
                logger.error(f"Redis PubSub listener error {errors}/{self.MAX_LISTENER_ERRORS}: {e}")
                if errors >= self.MAX_LISTENER_ERRORS:
                    logger.critical("Redis PubSub listener giving up after repeated errors")
                    break
                await asyncio.sleep(min(0.1 * (2 ** (errors - 1)), 5.0))
            else:
                errors = 0
        logger.debug("Redis PubSub listener ended")

    async def _process_raw_message(self, raw_message: dict):
        parsed = parse_pubsub_message(RawPubSubMessage(
            channel=raw_message.get("channel", ""),
            data=raw_message.get("data", ""),
            message_type=raw_message.get("type", ""),
        ))
        if parsed is not None:
            await self._dispatch(parsed.channel, parsed.data)


def create_pubsub(backend: Optional[str] = None) -> PubSubBroker:
    """Build the broker named by ``WS_PUBSUB_BACKEND`` ("local" or "redis")."""
    backend = (backend or settings.WS_PUBSUB_BACKEND).lower()
    if backend == "redis":
        return RedisPubSub()
    if backend == "local":
        return LocalPubSub()
    raise ValueError(f"Unknown pubsub backend: {backend}")

"""
Presence tracker (server side).

A user is online while at least one authenticated session of theirs is open.
When the last session closes the user is kept online for a grace period, so a
page reload or a quick reconnect does not flicker to offline; after it the
user goes offline with ``last_seen`` set to the moment the session closed.
``away`` is only ever set explicitly by the client.

Open sessions are counted in the presence store, so instances sharing a
Redis store agree on whether any session of a user is still open.

Changes are published to ``presence:<user_id>``, the channel of the sessions
watching that user.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from campuslink_backend.exceptions import ForbiddenError
from campuslink_backend.redis_cache import get_redis_client
from campuslink_backend.settings import settings
from campuslink_types.presence import PresenceRecord, PresenceStatus
from campuslink_types.websocket import EventName

logger = logging.getLogger(__name__)

PRESENCE_PREFIX = "campuslink:presence:"
SESSIONS_PREFIX = "campuslink:presence_sessions:"

# (user_id, event_type, data)
PresencePublisher = Callable[[str, str, Any], Awaitable[None]]


class PresenceStore:
    """
    Persisted presence records, one per user, plus the number of open
    sessions per user across every backend instance sharing the store.
    """

    async def get(self, user_id: str) -> Optional[PresenceRecord]:
        raise NotImplementedError

    async def set(self, record: PresenceRecord) -> None:
        raise NotImplementedError

    async def add_session(self, user_id: str) -> int:
        """Count one more open session; returns the new total."""
        raise NotImplementedError

    async def remove_session(self, user_id: str) -> int:
        """Count one session less; returns the remaining total, never below 0."""
        raise NotImplementedError

    async def session_count(self, user_id: str) -> int:
        raise NotImplementedError


class InMemoryPresenceStore(PresenceStore):

    def __init__(self):
        self._records: Dict[str, PresenceRecord] = {}
        self._sessions: Dict[str, int] = {}

    async def get(self, user_id: str) -> Optional[PresenceRecord]:
        return self._records.get(user_id)

    async def set(self, record: PresenceRecord) -> None:
        self._records[record.user_id] = record

    async def add_session(self, user_id: str) -> int:
        self._sessions[user_id] = self._sessions.get(user_id, 0) + 1
        return self._sessions[user_id]

    async def remove_session(self, user_id: str) -> int:
        count = self._sessions.get(user_id, 0) - 1
        if count > 0:
            self._sessions[user_id] = count
            return count
        self._sessions.pop(user_id, None)
        return 0

    async def session_count(self, user_id: str) -> int:
        return self._sessions.get(user_id, 0)


class RedisPresenceStore(PresenceStore):
    """
    Presence records as Redis hashes ``{status, last_seen}``; open sessions
    as a counter per user, updated atomically by every instance.
    """

    async def get(self, user_id: str) -> Optional[PresenceRecord]:
        redis_client = await get_redis_client()
        raw = await redis_client.hgetall(f"{PRESENCE_PREFIX}{user_id}")
        if not raw:
            return None
        last_seen = raw.get("last_seen") or None
        return PresenceRecord(
            user_id=user_id,
            status=raw.get("status", PresenceStatus.OFFLINE.value),
            last_seen=datetime.fromisoformat(last_seen) if last_seen else None,
        )

    async def set(self, record: PresenceRecord) -> None:
        redis_client = await get_redis_client()
        await redis_client.hset(
            f"{PRESENCE_PREFIX}{record.user_id}",
            mapping={
                "status": record.status.value,
                "last_seen": record.last_seen.isoformat() if record.last_seen else "",
            },
        )

    async def add_session(self, user_id: str) -> int:
        redis_client = await get_redis_client()
        return int(await redis_client.incr(f"{SESSIONS_PREFIX}{user_id}"))

    async def remove_session(self, user_id: str) -> int:
        redis_client = await get_redis_client()
        key = f"{SESSIONS_PREFIX}{user_id}"
        count = int(await redis_client.decr(key))
        if count <= 0:
            await redis_client.delete(key)
            return 0
        return count

    async def session_count(self, user_id: str) -> int:
        redis_client = await get_redis_client()
        value = await redis_client.get(f"{SESSIONS_PREFIX}{user_id}")
        return max(0, int(value)) if value else 0


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PresenceTracker:
    """Derives user status from open sessions and publishes the changes."""

    def __init__(
        self,
        store: PresenceStore,
        publish: PresencePublisher,
        grace_period: Optional[float] = None,
    ):
        self.store = store
        self._publish = publish
        self.grace_period = settings.WS_PRESENCE_GRACE_SECONDS if grace_period is None else grace_period
        self._open_sessions: Dict[str, int] = {}
        self._offline_timers: Dict[str, asyncio.Task] = {}

    def open_session_count(self, user_id: str) -> int:
        """Sessions of ``user_id`` open on this instance."""
        return self._open_sessions.get(user_id, 0)

    async def get_status(self, user_id: str) -> PresenceRecord:
        """Last known record; users never seen are offline with no last_seen."""
        record = await self.store.get(user_id)
        if record is None:
            return PresenceRecord(user_id=user_id, status=PresenceStatus.OFFLINE)
        return record

    async def seed(self, record: PresenceRecord) -> PresenceRecord:
        """Store a persisted record, e.g. loaded from the user database at startup."""
        await self.store.set(record)
        return record

    async def _change(self, record: PresenceRecord):
        previous = await self.store.get(record.user_id)
        await self.store.set(record)
        if previous is not None and previous.status == record.status:
            return
        logger.info(f"Presence of user {record.user_id}: {record.status.value}")
        await self._publish(record.user_id, EventName.USER_STATUS_UPDATE, record.model_dump(mode="json"))

    async def session_opened(self, user_id: str):
        self._open_sessions[user_id] = self._open_sessions.get(user_id, 0) + 1
        await self.store.add_session(user_id)

        timer = self._offline_timers.pop(user_id, None)
        if timer is not None:
            timer.cancel()
            logger.debug(f"User {user_id} reconnected within the presence grace period")

        current = await self.get_status(user_id)
        if current.status == PresenceStatus.OFFLINE:
            await self._change(PresenceRecord(user_id=user_id, status=PresenceStatus.ONLINE, last_seen=_now()))

    async def session_closed(self, user_id: str):
        count = self._open_sessions.get(user_id, 0) - 1
        if count > 0:
            self._open_sessions[user_id] = count
        else:
            self._open_sessions.pop(user_id, None)

        # Sessions on other instances keep the user online
        if await self.store.remove_session(user_id) > 0:
            return

        closed_at = _now()
        if self.grace_period <= 0:
            await self._go_offline(user_id, closed_at)
            return

        previous = self._offline_timers.pop(user_id, None)
        if previous is not None:
            previous.cancel()
        self._offline_timers[user_id] = asyncio.create_task(self._offline_after_grace(user_id, closed_at))

    async def _offline_after_grace(self, user_id: str, closed_at: datetime):
        try:
            await asyncio.sleep(self.grace_period)
        except asyncio.CancelledError:
            return
        if self._offline_timers.get(user_id) is asyncio.current_task():
            del self._offline_timers[user_id]
        if await self.store.session_count(user_id) == 0:
            await self._go_offline(user_id, closed_at)

    async def _go_offline(self, user_id: str, last_seen: datetime):
        await self._change(PresenceRecord(user_id=user_id, status=PresenceStatus.OFFLINE, last_seen=last_seen))

    async def touch(self, user_id: str):
        """Refresh last_seen of a connected user without publishing."""
        record = await self.store.get(user_id)
        if record is None or record.status == PresenceStatus.OFFLINE:
            return
        await self.store.set(record.model_copy(update={"last_seen": _now()}))

    async def set_status(self, user_id: str, status: PresenceStatus) -> PresenceRecord:
        """
        Explicit client-signalled status (``online`` or ``away``).

        Raises:
            ForbiddenError: If the user has no open session, or status is offline
        """
        status = PresenceStatus(status)
        if status == PresenceStatus.OFFLINE:
            raise ForbiddenError("Offline is derived from closed sessions and cannot be set")
        if self.open_session_count(user_id) == 0:
            raise ForbiddenError(f"User {user_id} has no open session")
        record = PresenceRecord(user_id=user_id, status=status, last_seen=_now())
        await self._change(record)
        return record

    async def stop(self):
        """Cancel pending offline transitions."""
        timers = list(self._offline_timers.values())
        self._offline_timers.clear()
        for timer in timers:
            timer.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)

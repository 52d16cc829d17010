"""
WebSocket event handlers.

Every client frame is looked up in ``HANDLERS`` by its type. A frame with an
``ack_id`` is a request and is answered by exactly one ``system:ack``; a frame
without one is fire-and-forget and only reports failures, as ``system:error``.
"""

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict

from pydantic import BaseModel, ValidationError

from campuslink_backend.exceptions import (
    InvalidPayloadError,
    InvalidRoomError,
    RealtimeError,
    UnknownCommandError,
)
from campuslink_backend.websocket.connection_manager import Connection
from campuslink_types.activities import ActivitiesGetRequest, ActivityFilter
from campuslink_types.errors import SERVER_INTERNAL_ERROR, AckError
from campuslink_types.notifications import NotificationReadRequest, NotificationsGetRequest
from campuslink_types.presence import UserGetStatusRequest, UserSetStatusRequest, UserUnwatchStatus
from campuslink_types.websocket import (
    EventName,
    RoomRequest,
    WSAck,
    WSError,
    WSPong,
    WSRequest,
    parse_client_frame,
)

if TYPE_CHECKING:
    from campuslink_backend.websocket.hub import RealtimeHub

logger = logging.getLogger(__name__)

Handler = Callable[["RealtimeHub", Connection, Any], Awaitable[Any]]


def _payload(data: Any) -> dict:
    return data if isinstance(data, dict) else {}


def _room_from(data: Any) -> str:
    """Room control payloads are either the bare room id or ``{"room": id}``."""
    if isinstance(data, str):
        data = {"room": data}
    try:
        return RoomRequest.model_validate(_payload(data)).room
    except ValidationError:
        raise InvalidRoomError("Room control frames need a room id")


# =============================================================================
# Notifications
# =============================================================================

async def handle_notifications_get(hub: "RealtimeHub", connection: Connection, data: Any):
    request = NotificationsGetRequest.model_validate(_payload(data))
    return await hub.notifications.list_recent(connection.user_id, request.limit)


async def handle_notification_read(hub: "RealtimeHub", connection: Connection, data: Any):
    request = NotificationReadRequest.model_validate(_payload(data))
    return await hub.notifications.mark_read(connection.user_id, request.notification_id)


async def handle_notifications_read_all(hub: "RealtimeHub", connection: Connection, data: Any):
    return await hub.notifications.mark_all_read(connection.user_id)


async def handle_notifications_clear_all(hub: "RealtimeHub", connection: Connection, data: Any):
    return await hub.notifications.clear_all(connection.user_id)


# =============================================================================
# Activity feed
# =============================================================================

async def handle_activities_get(hub: "RealtimeHub", connection: Connection, data: Any):
    request = ActivitiesGetRequest.model_validate(_payload(data))
    activity_filter = ActivityFilter(user_id=request.user_id, type=request.type)
    return await hub.activities.list(activity_filter, request.limit, request.offset)


# =============================================================================
# Presence
# =============================================================================

async def handle_user_get_status(hub: "RealtimeHub", connection: Connection, data: Any):
    """Return the status and keep the session informed of later changes."""
    request = UserGetStatusRequest.model_validate(_payload(data))
    await hub.manager.watch_presence(connection, request.user_id)
    return await hub.presence.get_status(request.user_id)


async def handle_user_set_status(hub: "RealtimeHub", connection: Connection, data: Any):
    request = UserSetStatusRequest.model_validate(_payload(data))
    return await hub.presence.set_status(connection.user_id, request.status)


async def handle_user_unwatch_status(hub: "RealtimeHub", connection: Connection, data: Any):
    request = UserUnwatchStatus.model_validate(_payload(data))
    await hub.manager.unwatch_presence(connection, request.user_id)


# =============================================================================
# Rooms and keep-alive
# =============================================================================

async def handle_join_room(hub: "RealtimeHub", connection: Connection, data: Any):
    room = _room_from(data)
    await hub.manager.join_room(connection, room)
    return {"room": room, "rooms": sorted(connection.rooms)}


async def handle_leave_room(hub: "RealtimeHub", connection: Connection, data: Any):
    room = _room_from(data)
    await hub.manager.leave_room(connection, room)
    return {"room": room, "rooms": sorted(connection.rooms)}


async def handle_ping(hub: "RealtimeHub", connection: Connection, data: Any):
    await hub.presence.touch(connection.user_id)
    await hub.manager.send_to_connection(connection, WSPong(
        timestamp=datetime.now(timezone.utc)
    ).model_dump(mode="json"))


HANDLERS: Dict[str, Handler] = {
    EventName.NOTIFICATIONS_GET: handle_notifications_get,
    EventName.NOTIFICATION_READ: handle_notification_read,
    EventName.NOTIFICATIONS_READ_ALL: handle_notifications_read_all,
    EventName.NOTIFICATIONS_CLEAR_ALL: handle_notifications_clear_all,
    EventName.ACTIVITIES_GET: handle_activities_get,
    EventName.USER_GET_STATUS: handle_user_get_status,
    EventName.USER_SET_STATUS: handle_user_set_status,
    EventName.USER_UNWATCH_STATUS: handle_user_unwatch_status,
    EventName.JOIN_ROOM: handle_join_room,
    EventName.LEAVE_ROOM: handle_leave_room,
    EventName.SYSTEM_PING: handle_ping,
}


def _jsonable(result: Any) -> Any:
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    return result


async def handle_client_message(hub: "RealtimeHub", connection: Connection, raw_data: Any):
    """
    Handle an incoming message from a WebSocket client.

    Args:
        hub: The realtime hub owning the services
        connection: The WebSocket session
        raw_data: Decoded JSON from the client
    """
    hub.manager.metrics.message_received()
    frame = parse_client_frame(raw_data)

    if frame is None:
        event_type = raw_data.get("type", "missing") if isinstance(raw_data, dict) else "missing"
        await hub.manager.send_to_connection(connection, WSError(
            code="INVALID_EVENT",
            message=f"Unknown or invalid event type: {event_type}"
        ).model_dump())
        return

    if frame.wants_ack:
        await _handle_request(hub, connection, frame)
    else:
        await _handle_event(hub, connection, frame)


async def _handle_request(hub: "RealtimeHub", connection: Connection, frame: WSRequest):
    handler = HANDLERS.get(frame.type)
    try:
        if handler is None:
            raise UnknownCommandError(f"Unknown command: {frame.type}")
        result = await handler(hub, connection, frame.data)
        ack = WSAck(ack_id=frame.ack_id, success=True, data=_jsonable(result))
    except RealtimeError as e:
        logger.warning(f"Request {frame.type} from user={connection.user_id} rejected: {e.reason} {e.message}")
        ack = WSAck(ack_id=frame.ack_id, success=False, error=e.to_ack_error())
    except ValidationError as e:
        logger.warning(f"Request {frame.type} from user={connection.user_id} has an invalid payload")
        error = InvalidPayloadError(
            f"Invalid payload for {frame.type}",
            details={"errors": e.errors(include_url=False, include_context=False, include_input=False)},
        )
        ack = WSAck(ack_id=frame.ack_id, success=False, error=error.to_ack_error())
    except Exception as e:
        logger.exception(f"Error handling request {frame.type}: {e}")
        ack = WSAck(
            ack_id=frame.ack_id,
            success=False,
            error=AckError(reason=SERVER_INTERNAL_ERROR, message="Internal server error"),
        )

    await hub.manager.send_to_connection(connection, ack.model_dump(mode="json", exclude_none=True))


async def _handle_event(hub: "RealtimeHub", connection: Connection, frame: WSRequest):
    handler = HANDLERS.get(frame.type)
    if handler is None:
        await hub.manager.send_to_connection(connection, WSError(
            code="UNHANDLED_EVENT",
            message=f"Event type not implemented: {frame.type}"
        ).model_dump())
        return

    try:
        await handler(hub, connection, frame.data)
    except RealtimeError as e:
        logger.warning(f"Event {frame.type} from user={connection.user_id} failed: {e.message}")
        await hub.manager.send_to_connection(connection, WSError(
            code=e.code,
            message=e.message,
        ).model_dump())
    except ValidationError:
        await hub.manager.send_to_connection(connection, WSError(
            code="INVALID_PAYLOAD",
            message=f"Invalid payload for {frame.type}",
        ).model_dump())
    except Exception as e:
        logger.error(f"Error handling event {frame.type}: {e}")
        await hub.manager.send_to_connection(connection, WSError(
            code="HANDLER_ERROR",
            message=str(e)
        ).model_dump())

"""
WebSocket router and endpoint.

Provides the FastAPI WebSocket endpoint for real-time communication.
"""

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from campuslink_backend.exceptions import ConnectionLimitError, WebSocketAuthError
from campuslink_backend.websocket.handlers import handle_client_message
from campuslink_backend.websocket.hub import RealtimeHub
from campuslink_types.websocket import WSError

logger = logging.getLogger(__name__)

ws_router = APIRouter()


async def _reject(websocket: Any, error_code: str, message: str, close_code: int):
    """Accept, report the failure as a system:error frame, and close."""
    try:
        await websocket.accept()
        await websocket.send_json(WSError(code=error_code, message=message).model_dump())
        await websocket.close(code=close_code, reason=message)
    except Exception as e:
        logger.debug(f"Could not deliver {error_code} before closing: {e}")


async def serve_websocket(websocket: Any, token: Optional[str], hub: RealtimeHub):
    """
    Run one WebSocket session from handshake to disconnect.

    ``websocket`` only needs ``accept``, ``send_json``, ``receive`` (ASGI
    messages) and ``close``, so any ASGI-style socket can be served.

    Connection Flow:
        1. Client connects with ?token=...
        2. Server resolves the token; on failure sends system:error AUTH_FAILED and closes with 4001
        3. Server sends system:connected {user_id, role, session_id}
        4. Client sends requests (with ack_id) and fire-and-forget frames
        5. Server answers each request with one system:ack and pushes events
    """
    connection = None

    try:
        principal = await hub.authenticator.authenticate(token)
        connection = await hub.manager.connect(websocket, principal)
        await hub.presence.session_opened(principal.user_id)

        while True:
            try:
                message = await websocket.receive()

                if message["type"] == "websocket.receive":
                    text = message.get("text")
                    if text is None:
                        continue
                    try:
                        data = json.loads(text)
                    except json.JSONDecodeError as e:
                        logger.warning(f"WebSocket invalid JSON from user={principal.user_id}: {e}")
                        await hub.manager.send_to_connection(connection, WSError(
                            code="INVALID_JSON",
                            message="Message must be valid JSON"
                        ).model_dump())
                        continue
                    await handle_client_message(hub, connection, data)

                elif message["type"] == "websocket.disconnect":
                    logger.info(f"WebSocket disconnected: user={principal.user_id}")
                    break

            except WebSocketDisconnect:
                logger.info(f"WebSocket disconnected: user={principal.user_id}")
                break

    except WebSocketAuthError as e:
        logger.warning(f"WebSocket auth failed: {e.reason}")
        hub.manager.metrics.auth_failed()
        await _reject(websocket, "AUTH_FAILED", e.reason, e.code)

    except ConnectionLimitError as e:
        logger.warning(f"WebSocket connection limit: {e.message}")
        await _reject(websocket, "CONNECTION_LIMIT", e.message, e.code)

    except Exception as e:
        logger.exception(f"WebSocket error: {e}")
        try:
            await websocket.close(code=1011, reason="Internal error")
        except Exception as close_error:
            logger.debug(f"Close after error failed: {close_error}")

    finally:
        if connection is not None:
            await hub.manager.disconnect(connection)
            await hub.presence.session_closed(connection.user_id)


@ws_router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="Session token for authentication"),
):
    """
    Main WebSocket endpoint.

    Example: ws://localhost:8000/ws?token=<session_token>

    Client -> Server:
        - notifications:get, notification:read, notifications:read-all, notifications:clear-all
        - activities:get
        - user:get-status, user:set-status, user:unwatch-status
        - join-room, leave-room {"room": "class-5a"}
        - system:ping

    Server -> Client:
        - system:connected, system:ack, system:error, system:pong
        - notification:new, notification:update, notification:delete
        - activity:new
        - user:status-update
    """
    await serve_websocket(websocket, token, websocket.app.state.hub)

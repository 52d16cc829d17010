"""
WebSocket package for real-time communication.

This package provides:
- Session management with in-process or Redis pub/sub fan-out
- Token authentication at connect time
- Rooms, personal channels and presence watch channels
- Acknowledged request dispatch for notifications, activities and presence
"""

from campuslink_backend.websocket.connection_manager import ConnectionManager, Connection, WebSocketMetrics
from campuslink_backend.websocket.hub import RealtimeHub, create_hub
from campuslink_backend.websocket.pubsub import LocalPubSub, RedisPubSub, create_pubsub

__all__ = [
    "ConnectionManager",
    "Connection",
    "WebSocketMetrics",
    "RealtimeHub",
    "create_hub",
    "LocalPubSub",
    "RedisPubSub",
    "create_pubsub",
]

"""Realtime channel components: connection, events, requests and feature engines."""

from campuslink_client.realtime.activities import ActivityFeed
from campuslink_client.realtime.connection import ConnectionManager
from campuslink_client.realtime.multiplexer import EventMultiplexer
from campuslink_client.realtime.notifications import NotificationCenter
from campuslink_client.realtime.presence import PresenceClient
from campuslink_client.realtime.requests import RequestProtocol
from campuslink_client.realtime.rooms import RoomMembership
from campuslink_client.realtime.session import RealtimeSession, create_realtime_session
from campuslink_client.realtime.state import ConnectionState, ConnectionStateSignal
from campuslink_client.realtime.transport import Transport, TransportClosed, WebSocketTransport

__all__ = [
    "ActivityFeed",
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStateSignal",
    "EventMultiplexer",
    "NotificationCenter",
    "PresenceClient",
    "RealtimeSession",
    "RequestProtocol",
    "RoomMembership",
    "Transport",
    "TransportClosed",
    "WebSocketTransport",
    "create_realtime_session",
]

"""
Error reasons shared by both ends of the realtime channel.

Client-side failures are categorised by ``ErrorReason``; server-side
acknowledgment failures carry one of the ``SERVER_*`` reason strings inside
an ``AckError`` so the client can tell them apart without parsing messages.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ErrorReason(str, Enum):
    """Machine-readable failure categories surfaced to callers."""
    AUTHENTICATION = "Authentication"
    CONNECTION = "Connection"
    RECONNECTION_EXHAUSTED = "ReconnectionExhausted"
    NOT_CONNECTED = "NotConnected"
    TIMEOUT = "Timeout"
    SERVER_REJECTED = "ServerRejected"


# Reasons the server puts into an acknowledgment failure
SERVER_INVALID_PAYLOAD = "invalid_payload"
SERVER_NOT_FOUND = "not_found"
SERVER_FORBIDDEN = "forbidden"
SERVER_UNKNOWN_COMMAND = "unknown_command"
SERVER_INTERNAL_ERROR = "internal_error"


class AckError(BaseModel):
    """Failure body of a ``system:ack`` frame."""
    reason: str = Field(..., description="Machine-readable reason, e.g. 'not_found'")
    message: str = Field("", description="Human-readable explanation")
    details: Optional[dict] = Field(None, description="Optional structured context")

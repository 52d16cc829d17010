"""
Server-side realtime exceptions.

``RealtimeError`` subclasses raised inside command handlers are converted by
the dispatcher into an acknowledgment failure carrying ``reason`` and
``message``; they never escape the connection loop.
"""

from typing import Any, Dict, Optional

from campuslink_types.errors import (
    SERVER_FORBIDDEN,
    SERVER_INTERNAL_ERROR,
    SERVER_INVALID_PAYLOAD,
    SERVER_NOT_FOUND,
    SERVER_UNKNOWN_COMMAND,
    AckError,
)


class RealtimeError(Exception):
    """Base class for failures reported back to a requesting client."""

    reason: str = SERVER_INTERNAL_ERROR
    # Code used in a system:error frame when there is no ack to carry the failure
    error_code: Optional[str] = None

    def __init__(self, message: str = "", *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_ack_error(self) -> AckError:
        return AckError(reason=self.reason, message=self.message, details=self.details)

    @property
    def code(self) -> str:
        return self.error_code or self.reason.upper()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(reason={self.reason!r}, message={self.message!r})"


class InvalidPayloadError(RealtimeError):
    """The request payload failed validation."""
    reason = SERVER_INVALID_PAYLOAD


class InvalidRoomError(InvalidPayloadError):
    """Malformed room id in a room control frame."""
    error_code = "INVALID_ROOM"


class NotFoundError(RealtimeError):
    """The addressed entity does not exist for this user."""
    reason = SERVER_NOT_FOUND


class ForbiddenError(RealtimeError):
    """The principal may not perform this operation."""
    reason = SERVER_FORBIDDEN


class UnknownCommandError(RealtimeError):
    """No handler is registered for the command."""
    reason = SERVER_UNKNOWN_COMMAND


class WebSocketAuthError(Exception):
    """Exception raised when WebSocket authentication fails."""

    def __init__(self, code: int, reason: str):
        self.code = code
        self.reason = reason
        super().__init__(reason)


class ConnectionLimitError(Exception):
    """Raised when connection limits are exceeded."""
    def __init__(self, message: str, code: int = 4008):
        self.message = message
        self.code = code
        super().__init__(message)

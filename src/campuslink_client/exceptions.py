"""
Exception hierarchy for the CampusLink realtime client.

Connection-level failures (AuthenticationError, ConnectionError,
ReconnectionExhaustedError) are raised by ``connect`` and also published on
the connection state signal. Per-request failures are RequestError subclasses
raised to the caller of that request only.
"""

from typing import Any, Dict, Optional

from campuslink_types.errors import ErrorReason


class CampusLinkClientError(Exception):
    """
    Base exception for all CampusLink client errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable reason (an ``ErrorReason`` value)
        details: Additional context
    """

    reason: ErrorReason = ErrorReason.CONNECTION

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.reason.value
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r})"
        )


# =============================================================================
# Connection-level errors
# =============================================================================


class AuthenticationError(CampusLinkClientError):
    """
    No token, or the server rejected it during the handshake.

    Token refresh is the caller's job: obtain a new token and ``connect`` again.
    """

    reason = ErrorReason.AUTHENTICATION

    def __init__(self, message: str = "Authentication required", **kwargs: Any):
        super().__init__(message, **kwargs)


class ConnectionError(CampusLinkClientError):
    """Transport-level failure: the channel could not be opened or was lost."""

    reason = ErrorReason.CONNECTION


class ReconnectionExhaustedError(ConnectionError):
    """All reconnection attempts failed; the connection is now ``failed``."""

    reason = ErrorReason.RECONNECTION_EXHAUSTED

    def __init__(self, message: str = "Reconnection attempts exhausted", *, attempts: int = 0, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.attempts = attempts


# =============================================================================
# Request-level errors
# =============================================================================


class RequestError(CampusLinkClientError):
    """
    An acknowledged request did not succeed.

    Attributes:
        command: The command that failed, e.g. "notification:read"
    """

    reason = ErrorReason.SERVER_REJECTED

    def __init__(self, message: str, *, command: Optional[str] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.command = command

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"command={self.command!r})"
        )


class NotConnectedError(RequestError):
    """Operation attempted while the channel was not open, or the channel dropped."""

    reason = ErrorReason.NOT_CONNECTED

    def __init__(self, message: str = "Not connected", **kwargs: Any):
        super().__init__(message, **kwargs)


class TimeoutError(RequestError):
    """No acknowledgment arrived before the deadline."""

    reason = ErrorReason.TIMEOUT

    def __init__(self, message: str = "Request timed out", *, timeout: Optional[float] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.timeout = timeout


class ServerRejectedError(RequestError):
    """
    The server answered with ``success: false``.

    Attributes:
        server_reason: The server's reason string, e.g. "not_found"
    """

    reason = ErrorReason.SERVER_REJECTED

    def __init__(self, message: str = "Request rejected", *, server_reason: Optional[str] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.server_reason = server_reason


class InvalidStateTransition(CampusLinkClientError):
    """Internal: a connection state change outside the transition table."""

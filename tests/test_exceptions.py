"""Tests for client and server exception classes."""

import pytest

from campuslink_backend.exceptions import (
    ForbiddenError,
    InvalidPayloadError,
    InvalidRoomError,
    NotFoundError,
    RealtimeError,
    UnknownCommandError,
)
from campuslink_client.exceptions import (
    AuthenticationError,
    CampusLinkClientError,
    ConnectionError,
    NotConnectedError,
    ReconnectionExhaustedError,
    RequestError,
    ServerRejectedError,
    TimeoutError,
)


class TestClientErrors:

    def test_str_and_repr(self):
        error = NotConnectedError("Connection lost", command="notifications:get")
        assert str(error) == "[NotConnected] Connection lost"
        assert "command='notifications:get'" in repr(error)
        assert error.details == {}

    @pytest.mark.parametrize("error,reason", [
        (AuthenticationError(), "Authentication"),
        (ConnectionError("down"), "Connection"),
        (ReconnectionExhaustedError(attempts=5), "ReconnectionExhausted"),
        (NotConnectedError(), "NotConnected"),
        (TimeoutError(timeout=1.0), "Timeout"),
        (ServerRejectedError(server_reason="not_found"), "ServerRejected"),
    ])
    def test_error_codes(self, error, reason):
        assert error.error_code == reason
        assert isinstance(error, CampusLinkClientError)

    def test_hierarchy(self):
        assert issubclass(ReconnectionExhaustedError, ConnectionError)
        for cls in (NotConnectedError, TimeoutError, ServerRejectedError):
            assert issubclass(cls, RequestError)
        assert not issubclass(AuthenticationError, RequestError)

    def test_explicit_error_code_wins(self):
        error = ConnectionError("refused", error_code="CONN_REFUSED", details={"host": "x"})
        assert error.error_code == "CONN_REFUSED"
        assert error.details == {"host": "x"}


class TestServerErrors:

    @pytest.mark.parametrize("cls,reason", [
        (InvalidPayloadError, "invalid_payload"),
        (NotFoundError, "not_found"),
        (ForbiddenError, "forbidden"),
        (UnknownCommandError, "unknown_command"),
        (RealtimeError, "internal_error"),
    ])
    def test_ack_error(self, cls, reason):
        error = cls("nope", details={"k": "v"})
        ack_error = error.to_ack_error()
        assert ack_error.reason == reason
        assert ack_error.message == "nope"
        assert ack_error.details == {"k": "v"}

    def test_error_frame_codes(self):
        assert NotFoundError("x").code == "NOT_FOUND"
        assert InvalidRoomError("x").code == "INVALID_ROOM"
        assert InvalidRoomError("x").reason == "invalid_payload"

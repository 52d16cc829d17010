"""Tests for the campuslink CLI."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from campuslink_cli.cli import cli
from campuslink_client.exceptions import AuthenticationError
from campuslink_client.realtime.multiplexer import EventMultiplexer
from campuslink_client.realtime.state import ConnectionStateSignal
from campuslink_types.presence import PresenceRecord, PresenceStatus


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def session():
    session = MagicMock()
    session.__aenter__.return_value = session
    session.__aexit__.return_value = False
    session.connect = AsyncMock()
    session.events = EventMultiplexer()
    session.connection.state_signal = ConnectionStateSignal()
    session.connection.user_id = "alice"
    session.connection.session_id = "s1"
    return session


class TestStatus:

    def test_prints_record(self, runner, session):
        session.presence.get_status = AsyncMock(return_value=PresenceRecord(
            user_id="bob",
            status=PresenceStatus.AWAY,
            last_seen=datetime(2026, 1, 5, 8, 30, tzinfo=timezone.utc),
        ))

        with patch("campuslink_cli.cli.create_realtime_session", return_value=session):
            result = runner.invoke(cli, ["status", "bob", "--token", "t1"])

        assert result.exit_code == 0
        assert "bob: away (last seen: 2026-01-05T08:30:00+00:00)" in result.output
        session.connect.assert_awaited_once_with("t1")

    def test_token_from_environment(self, runner, session):
        session.presence.get_status = AsyncMock(return_value=PresenceRecord(user_id="bob"))

        with patch("campuslink_cli.cli.create_realtime_session", return_value=session):
            result = runner.invoke(cli, ["status", "bob"], env={"CAMPUSLINK_TOKEN": "env-token"})

        assert result.exit_code == 0
        assert "bob: offline (last seen: -)" in result.output
        session.connect.assert_awaited_once_with("env-token")

    def test_rejected_token_exits_nonzero(self, runner, session):
        session.connect = AsyncMock(side_effect=AuthenticationError("Token rejected"))

        with patch("campuslink_cli.cli.create_realtime_session", return_value=session):
            result = runner.invoke(cli, ["status", "bob", "--token", "bad"])

        assert result.exit_code == 1
        assert "Token rejected" in result.output

    def test_token_is_required(self, runner):
        result = runner.invoke(cli, ["status", "bob"], env={"CAMPUSLINK_TOKEN": None})
        assert result.exit_code == 2


class TestWatch:

    def test_prints_events_and_joins_rooms(self, runner, session):
        def connect(token):
            session.events.publish("notification:new", {"title": "Exam", "message": "Tomorrow 9:00"})

        session.connect = AsyncMock(side_effect=connect)

        with patch("campuslink_cli.cli.create_realtime_session", return_value=session):
            result = runner.invoke(cli, ["watch", "--token", "t1", "-r", "class-10a", "--count", "1"])

        assert result.exit_code == 0, result.output
        assert "[notification:new] Exam: Tomorrow 9:00" in result.output
        assert "[connected] user=alice session=s1" in result.output
        assert "[join] class-10a" in result.output
        session.rooms.join_room.assert_called_once_with("class-10a")

    @pytest.mark.parametrize("event_name", ["bogus", "system:ping"])
    def test_invalid_event_name_is_rejected_before_connecting(self, runner, event_name):
        with patch("campuslink_cli.cli.create_realtime_session") as create:
            result = runner.invoke(cli, ["watch", "--token", "t1", "-e", event_name])

        assert result.exit_code == 2
        assert "--event" in result.output
        create.assert_not_called()

    def test_value_error_while_running_is_not_reported_as_bad_event(self, runner, session):
        session.rooms.join_room.side_effect = ValueError("boom")
        with patch("campuslink_cli.cli.create_realtime_session", return_value=session):
            result = runner.invoke(cli, ["watch", "--token", "t1", "-r", "class-10a"])

        assert result.exit_code != 2
        assert isinstance(result.exception, ValueError)

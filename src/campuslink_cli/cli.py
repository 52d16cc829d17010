"""
Realtime CLI for testing the CampusLink channel.

Usage:
    campuslink watch --url https://school.example -r class-10a
    campuslink watch -e notification:new --count 5
    campuslink status lecturer-1
"""

import asyncio
import json
from typing import Optional, Tuple

import click

from campuslink_client import create_realtime_session
from campuslink_client.exceptions import CampusLinkClientError
from campuslink_client.realtime.state import ConnectionState
from campuslink_types.websocket import PUSH_EVENTS, is_reserved_event, is_valid_event_name

DEFAULT_URL = "http://localhost:8000"


def _format_event(event_name: str, data) -> str:
    if event_name == "notification:new" and isinstance(data, dict):
        return f"[{event_name}] {data.get('title')}: {data.get('message')}"
    if event_name == "user:status-update" and isinstance(data, dict):
        return f"[{event_name}] {data.get('user_id')} is {data.get('status')}"
    return f"[{event_name}] {json.dumps(data, default=str)}"


def _validate_events(ctx, param, value: Tuple[str, ...]) -> Tuple[str, ...]:
    for event_name in value:
        if not is_valid_event_name(event_name):
            raise click.BadParameter(f"invalid event name {event_name!r}")
        if is_reserved_event(event_name):
            raise click.BadParameter(f"the system namespace is reserved: {event_name!r}")
    return value


async def _run_watch(url: str, token: str, rooms: Tuple[str, ...], events: Tuple[str, ...], count: Optional[int]):
    async with create_realtime_session(url) as session:
        received = 0
        done = asyncio.Event()

        def on_event(event_name: str):
            def handler(data):
                nonlocal received
                click.echo(_format_event(event_name, data))
                received += 1
                if count is not None and received >= count:
                    done.set()
            return handler

        for event_name in events or sorted(PUSH_EVENTS):
            session.events.subscribe(event_name, on_event(event_name))

        def on_state(state, error):
            if state == ConnectionState.RECONNECTING:
                click.echo("[offline] Connection lost, reconnecting...")
            elif state == ConnectionState.OPEN:
                click.echo("[online] Connected")
            elif state == ConnectionState.FAILED:
                click.echo(f"[error] {error}")
                done.set()

        session.connection.state_signal.subscribe(on_state)

        await session.connect(token)
        click.echo(f"[connected] user={session.connection.user_id} session={session.connection.session_id}")

        for room in rooms:
            session.rooms.join_room(room)
            click.echo(f"[join] {room}")

        await done.wait()


async def _run_status(url: str, token: str, user_id: str):
    async with create_realtime_session(url) as session:
        await session.connect(token)
        return await session.presence.get_status(user_id)


@click.group()
def cli():
    """CampusLink CLI - realtime notifications, rooms and presence."""


@cli.command()
@click.option("--url", envvar="CAMPUSLINK_URL", default=DEFAULT_URL, show_default=True, help="Server URL")
@click.option("--token", envvar="CAMPUSLINK_TOKEN", required=True, help="Session token")
@click.option("--room", "-r", "rooms", multiple=True, help="Room to join (repeatable)")
@click.option(
    "--event", "-e", "events", multiple=True, callback=_validate_events,
    help="Event to print (repeatable, default: all pushes)",
)
@click.option("--count", "-n", type=int, default=None, help="Exit after this many events")
def watch(url: str, token: str, rooms: Tuple[str, ...], events: Tuple[str, ...], count: Optional[int]):
    """
    Connect and print server pushes until interrupted.

    Examples:

        campuslink watch -r class-10a -r staff

        campuslink watch -e notification:new -e notification:update
    """
    try:
        asyncio.run(_run_watch(url, token, rooms, events, count))
    except CampusLinkClientError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted")


@cli.command()
@click.argument("user_id")
@click.option("--url", envvar="CAMPUSLINK_URL", default=DEFAULT_URL, show_default=True, help="Server URL")
@click.option("--token", envvar="CAMPUSLINK_TOKEN", required=True, help="Session token")
def status(user_id: str, url: str, token: str):
    """Print the presence status of USER_ID."""
    try:
        record = asyncio.run(_run_status(url, token, user_id))
    except CampusLinkClientError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    last_seen = record.last_seen.isoformat() if record.last_seen else "-"
    click.echo(f"{record.user_id}: {record.status.value} (last seen: {last_seen})")


if __name__ == '__main__':
    cli()

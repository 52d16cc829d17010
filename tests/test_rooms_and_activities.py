"""Tests for room scoping and the activity feed."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from campuslink_backend.exceptions import InvalidRoomError
from campuslink_client.exceptions import ServerRejectedError
from campuslink_types.activities import Activity, ActivityFilter, ActivityType


def _activity(user_id: str, activity_type: ActivityType = ActivityType.OTHER, description: str = "") -> Activity:
    return Activity(user_id=user_id, type=activity_type, description=description)


class TestRoomScoping:

    @pytest.mark.asyncio
    async def test_room_push_reaches_only_joined_sessions(self, alice, bob, hub, wait):
        assert alice.rooms.join_room("class-10a")
        await wait(lambda: len(hub.manager.room_sessions("class-10a")) == 1)

        scoped = await hub.activities.record(_activity("carol", description="Homework posted"), room="class-10a")
        await wait(lambda: any(a.id == scoped.id for a in alice.activities.activities))

        # A broadcast afterwards proves bob's feed is live and saw nothing before it
        everyone = await hub.activities.record(_activity("carol", description="School closed Friday"))
        await wait(lambda: any(a.id == everyone.id for a in bob.activities.activities))
        await wait(lambda: any(a.id == everyone.id for a in alice.activities.activities))

        assert [a.id for a in bob.activities.activities] == [everyone.id]
        assert [a.id for a in alice.activities.activities] == [everyone.id, scoped.id]

    @pytest.mark.asyncio
    async def test_leaving_stops_room_pushes(self, alice, hub, wait):
        alice.rooms.join_room("class-10a")
        await wait(lambda: hub.manager.room_sessions("class-10a"))
        alice.rooms.leave_room("class-10a")
        await wait(lambda: not hub.manager.room_sessions("class-10a"))

        await hub.activities.record(_activity("carol"), room="class-10a")
        marker = await hub.activities.record(_activity("carol"))
        await wait(lambda: alice.activities.activities)

        assert [a.id for a in alice.activities.activities] == [marker.id]

    @pytest.mark.asyncio
    async def test_rooms_are_additive(self, alice, hub, wait):
        for room in ("class-10a", "class-10b", "staff", "sports.club"):
            alice.rooms.join_room(room)
        await wait(lambda: hub.manager.room_sessions("sports.club"))

        session = hub.manager.get_connection(alice.connection.session_id)
        assert session.rooms == {"class-10a", "class-10b", "staff", "sports.club"}

    @pytest.mark.asyncio
    async def test_invalid_room_is_reported(self, alice, hub, wait):
        socket = alice.connection.transport.socket
        alice.rooms.join_room("bad room!")

        await wait(lambda: any(f.get("type") == "system:error" for f in socket.sent))
        error = next(f for f in socket.sent if f.get("type") == "system:error")
        assert error["code"] == "INVALID_ROOM"
        assert hub.manager.room_sessions("bad room!") == set()

    @pytest.mark.asyncio
    async def test_join_room_request_is_acknowledged(self, alice):
        result = await alice.requests.request("join-room", {"room": "class-10a"})
        assert result == {"room": "class-10a", "rooms": ["class-10a"]}

    @pytest.mark.asyncio
    async def test_join_room_accepts_bare_room_id(self, alice):
        result = await alice.requests.request("join-room", "class-9c")
        assert result["rooms"] == ["class-9c"]

    @pytest.mark.asyncio
    async def test_manager_rejects_malformed_room(self, alice, hub):
        connection = hub.manager.get_connection(alice.connection.session_id)
        with pytest.raises(InvalidRoomError):
            await hub.manager.join_room(connection, "room with spaces")


class TestActivityFeed:

    @pytest.fixture
    def seed(self, hub):
        async def seed():
            base = datetime.now(timezone.utc)
            items = []
            for i in range(5):
                activity = Activity(
                    user_id="alice" if i % 2 == 0 else "bob",
                    type=ActivityType.ASSIGNMENT_SUBMIT if i % 2 == 0 else ActivityType.USER_LOGIN,
                    description=f"activity {i}",
                    created_at=base + timedelta(seconds=i),
                )
                items.append(await hub.activities.repository.append(activity))
            return items
        return seed

    @pytest.mark.asyncio
    async def test_paging_replaces_then_appends(self, alice, seed):
        items = await seed()

        first = await alice.activities.fetch_page(limit=2)
        assert [a.description for a in first.activities] == ["activity 4", "activity 3"]
        assert alice.activities.has_more is True

        await alice.activities.load_more(limit=2)
        assert [a.description for a in alice.activities.activities] == [
            "activity 4", "activity 3", "activity 2", "activity 1",
        ]

        await alice.activities.load_more(limit=2)
        assert len(alice.activities.activities) == len(items)
        assert alice.activities.has_more is False

        await alice.activities.fetch_page(limit=1)
        assert [a.description for a in alice.activities.activities] == ["activity 4"]

    @pytest.mark.asyncio
    async def test_filter_applies_to_pages_and_pushes(self, alice, seed, hub, wait):
        await seed()
        await alice.activities.set_filter(ActivityFilter(type=ActivityType.ASSIGNMENT_SUBMIT))

        assert {a.type for a in alice.activities.activities} == {ActivityType.ASSIGNMENT_SUBMIT}
        assert len(alice.activities.activities) == 3

        await hub.activities.record(_activity("bob", ActivityType.USER_LOGIN))
        matching = await hub.activities.record(_activity("bob", ActivityType.ASSIGNMENT_SUBMIT))
        await wait(lambda: alice.activities.activities[0].id == matching.id)

        assert len(alice.activities.activities) == 4

    @pytest.mark.asyncio
    async def test_user_filter(self, alice, seed):
        await seed()
        await alice.activities.fetch_page(ActivityFilter(user_id="bob"))
        assert {a.user_id for a in alice.activities.activities} == {"bob"}

    @pytest.mark.asyncio
    async def test_all_filter_means_unfiltered(self, alice, seed):
        items = await seed()
        await alice.activities.fetch_page(ActivityFilter.model_validate({"type": "all"}))
        assert len(alice.activities.activities) == len(items)

    @pytest.mark.asyncio
    async def test_pushes_truncate_to_display_limit(self, session_factory, hub, wait):
        session = session_factory(activity_display_limit=3)
        await session.connect("token-bob")

        recorded = []
        for i in range(5):
            recorded.append(await hub.activities.record(_activity("carol", description=f"push {i}")))
        await wait(lambda: session.activities.activities and session.activities.activities[0].id == recorded[-1].id)

        assert [a.description for a in session.activities.activities] == ["push 4", "push 3", "push 2"]
        assert session.activities.has_more is True
        await session.close()

    @pytest.mark.asyncio
    async def test_unknown_type_coerces_to_other(self, alice, hub):
        await hub.activities.repository.append(Activity.model_validate({"user_id": "x", "type": "quiz_start"}))
        response = await alice.activities.fetch_page()
        assert response.activities[0].type == ActivityType.OTHER

    @pytest.mark.asyncio
    async def test_unknown_filter_type_is_rejected(self, alice, seed):
        await seed()
        with pytest.raises(ServerRejectedError) as exc_info:
            await alice.requests.request("activities:get", {"type": "quiz_start"})
        assert exc_info.value.server_reason == "invalid_payload"

    def test_filter_does_not_coerce_unknown_type(self):
        with pytest.raises(ValidationError):
            ActivityFilter.model_validate({"type": "quiz_start"})
        assert ActivityFilter.model_validate({"type": "all"}).type is None

    @pytest.mark.asyncio
    async def test_page_size_is_clamped(self, alice, seed, hub):
        await seed()
        hub.activities._page_max = 2
        response = await alice.activities.fetch_page(limit=50)
        assert len(response.activities) == 2
        assert response.has_more is True

"""Unit tests for RoomBroadcaster."""

import asyncio

import pytest

from codebridge.models.events import EventKind
from codebridge.services.rooms import RoomBroadcaster


@pytest.fixture
def rooms(recorder):
    return RoomBroadcaster(recorder)


class TestJoin:
    """Test room joins and resync requests."""

    @pytest.mark.asyncio
    async def test_first_join(self, rooms, recorder):
        clients = await rooms.join("a", "room1", "alice")

        assert clients == [{"socketId": "a", "username": "alice"}]
        assert recorder.kinds("a") == [EventKind.JOINED]
        _, data = recorder.for_connection("a")[0]
        assert data == {"clients": clients, "username": "alice", "socketId": "a"}
        assert rooms.room_count() == 1

    @pytest.mark.asyncio
    async def test_second_join_requests_one_resync(self, rooms, recorder):
        await rooms.join("a", "room1", "alice")
        recorder.clear()

        clients = await rooms.join("b", "room1", "bob")

        assert [c["socketId"] for c in clients] == ["a", "b"]
        assert recorder.kinds("a") == [EventKind.JOINED, EventKind.REQUEST_CODE_SYNC]
        assert recorder.for_connection("a")[1][1] == {"socketId": "b"}
        # Never asked of the joiner
        assert recorder.kinds("b") == [EventKind.JOINED]

    @pytest.mark.asyncio
    async def test_resync_goes_to_earliest_member(self, rooms, recorder):
        await rooms.join("a", "room1", "alice")
        await rooms.join("b", "room1", "bob")
        recorder.clear()

        await rooms.join("c", "room1", "carol")

        sync_requests = [
            (cid, data)
            for cid, kind, data in recorder.events
            if kind == EventKind.REQUEST_CODE_SYNC
        ]
        assert sync_requests == [("a", {"socketId": "c"})]
        for cid in ("a", "b", "c"):
            assert EventKind.JOINED in recorder.kinds(cid)

    @pytest.mark.asyncio
    async def test_rejoin_is_idempotent(self, rooms, recorder):
        await rooms.join("a", "room1", "alice")
        await rooms.join("b", "room1", "bob")
        recorder.clear()

        clients = await rooms.join("b", "room1", "bobby")

        assert clients == [
            {"socketId": "a", "username": "alice"},
            {"socketId": "b", "username": "bobby"},
        ]
        assert EventKind.REQUEST_CODE_SYNC not in recorder.kinds("a")

    @pytest.mark.asyncio
    async def test_rooms_are_independent(self, rooms, recorder):
        await rooms.join("a", "room1", "alice")
        await rooms.join("b", "room2", "bob")

        assert rooms.room_count() == 2
        assert EventKind.REQUEST_CODE_SYNC not in recorder.kinds("a")
        assert rooms.members("room2") == [{"socketId": "b", "username": "bob"}]


class TestRelay:
    """Test code relay."""

    @pytest.mark.asyncio
    async def test_code_change_excludes_sender(self, rooms, recorder):
        await rooms.join("a", "room1", "alice")
        await rooms.join("b", "room1", "bob")
        await rooms.join("c", "room1", "carol")
        recorder.clear()

        notified = await rooms.broadcast_code_change("a", "room1", "x = 1")

        assert notified == 2
        assert recorder.kinds("a") == []
        assert recorder.for_connection("b") == [(EventKind.CODE_CHANGE, {"code": "x = 1"})]
        assert recorder.for_connection("c") == [(EventKind.CODE_CHANGE, {"code": "x = 1"})]

    @pytest.mark.asyncio
    async def test_code_change_from_non_member_is_ignored(self, rooms, recorder):
        await rooms.join("a", "room1", "alice")
        recorder.clear()

        assert await rooms.broadcast_code_change("z", "room1", "evil") == 0
        assert await rooms.broadcast_code_change("a", "nope", "code") == 0
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_relay_sync_to_member(self, rooms, recorder):
        await rooms.join("a", "room1", "alice")
        await rooms.join("b", "room1", "bob")
        recorder.clear()

        assert await rooms.relay_sync("room1", "b", "print(1)") is True
        assert recorder.events == [("b", EventKind.SYNC_CODE, {"code": "print(1)"})]

    @pytest.mark.asyncio
    async def test_relay_sync_to_non_member(self, rooms, recorder):
        await rooms.join("a", "room1", "alice")
        recorder.clear()

        assert await rooms.relay_sync("room1", "z", "code") is False
        assert await rooms.relay_sync("", "a", "code") is False
        assert recorder.events == []


class TestLeave:
    """Test leaving rooms."""

    @pytest.mark.asyncio
    async def test_leave_notifies_remaining_members(self, rooms, recorder):
        await rooms.join("a", "room1", "alice")
        await rooms.join("b", "room1", "bob")
        recorder.clear()

        left = await rooms.leave("b")

        assert left == ["room1"]
        assert recorder.for_connection("a") == [
            (EventKind.DISCONNECTED, {"socketId": "b", "username": "bob"})
        ]
        assert rooms.members("room1") == [{"socketId": "a", "username": "alice"}]

    @pytest.mark.asyncio
    async def test_empty_room_is_reclaimed(self, rooms):
        await rooms.join("a", "room1", "alice")

        await rooms.leave("a")

        assert rooms.room_count() == 0
        assert rooms.members("room1") == []

    @pytest.mark.asyncio
    async def test_room_recreated_after_reclaim(self, rooms, recorder):
        await rooms.join("a", "room1", "alice")
        await rooms.leave("a")
        recorder.clear()

        await rooms.join("b", "room1", "bob")

        assert rooms.members("room1") == [{"socketId": "b", "username": "bob"}]
        assert recorder.kinds("b") == [EventKind.JOINED]

    @pytest.mark.asyncio
    async def test_leave_unknown_connection(self, rooms):
        assert await rooms.leave("ghost") == []

    @pytest.mark.asyncio
    async def test_failing_send_does_not_break_fanout(self):
        delivered = []

        async def send(connection_id, kind, data):
            if connection_id == "a":
                raise ConnectionError("gone")
            delivered.append((connection_id, kind))

        rooms = RoomBroadcaster(send)
        await rooms.join("a", "room1", "alice")
        await rooms.join("b", "room1", "bob")

        assert ("b", EventKind.JOINED) in delivered
        assert [c["socketId"] for c in rooms.members("room1")] == ["a", "b"]


class TestConcurrency:
    """Test membership under interleaved joins and leaves."""

    @pytest.fixture
    def yielding_rooms(self, recorder):
        async def send(connection_id, kind, data):
            # Give other joins and leaves a chance to interleave
            await asyncio.sleep(0)
            recorder(connection_id, kind, data)

        return RoomBroadcaster(send)

    @pytest.mark.asyncio
    async def test_concurrent_joins_and_leaves(self, yielding_rooms, recorder):
        rooms = yielding_rooms
        first = [f"c{i}" for i in range(50)]
        snapshots = await asyncio.gather(
            *(rooms.join(cid, "room1", cid) for cid in first)
        )

        assert {c["socketId"] for c in rooms.members("room1")} == set(first)
        for cid, clients in zip(first, snapshots):
            assert cid in [c["socketId"] for c in clients]
        resyncs = [e for e in recorder.events if e[1] == EventKind.REQUEST_CODE_SYNC]
        assert len(resyncs) == len(first) - 1

        leaving = first[:25]
        joining = [f"n{i}" for i in range(10)]
        await asyncio.gather(
            *(rooms.leave(cid) for cid in leaving),
            *(rooms.join(cid, "room1", cid) for cid in joining),
        )

        members = [c["socketId"] for c in rooms.members("room1")]
        assert len(members) == len(set(members))
        assert set(members) == set(first[25:]) | set(joining)
        assert rooms.room_count() == 1

    @pytest.mark.asyncio
    async def test_reclaim_races_new_joins(self, yielding_rooms):
        rooms = yielding_rooms
        old = [f"c{i}" for i in range(20)]
        for cid in old:
            await rooms.join(cid, "room1", cid)

        new = [f"n{i}" for i in range(5)]
        await asyncio.gather(
            *(rooms.leave(cid) for cid in old),
            *(rooms.join(cid, "room1", cid) for cid in new),
        )

        assert {c["socketId"] for c in rooms.members("room1")} == set(new)
        assert rooms.room_count() == 1

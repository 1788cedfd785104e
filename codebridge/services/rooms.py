"""Room membership and code relay between collaborators.

A room is created by its first join and reclaimed as soon as its last
member leaves. Membership changes and the notifications they trigger run
inside the room's lock, so a joiner's member snapshot always matches the
``joined`` events the other members receive.
"""

import asyncio
import inspect
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

import structlog

from ..models.events import EventKind

logger = structlog.get_logger(__name__)

SendFunc = Callable[[str, EventKind, Dict[str, Any]], Union[Awaitable[None], None]]


@dataclass
class Room:
    """A collaboration room; members are kept in join order."""

    room_id: str
    members: "OrderedDict[str, str]" = field(default_factory=OrderedDict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def snapshot(self) -> List[Dict[str, str]]:
        return [
            {"socketId": connection_id, "username": username}
            for connection_id, username in self.members.items()
        ]


class RoomBroadcaster:
    """Room registry plus fan-out of collaboration events."""

    def __init__(self, send: SendFunc):
        """Initialize the broadcaster.

        Args:
            send: Delivers one event to one connection; may be sync or async
        """
        self._send = send
        self._rooms: Dict[str, Room] = {}
        self._connection_rooms: Dict[str, Set[str]] = {}

    def room_count(self) -> int:
        return len(self._rooms)

    def members(self, room_id: str) -> List[Dict[str, str]]:
        """Member snapshot of a room (empty for unknown rooms)."""
        room = self._rooms.get(room_id)
        return room.snapshot() if room else []

    async def join(
        self, connection_id: str, room_id: str, username: str
    ) -> List[Dict[str, str]]:
        """Add a connection to a room.

        Every member (joiner included) receives ``joined``. If the room
        already had members, the earliest-joined one alone is asked to push
        its current code to the joiner.

        Returns:
            Member snapshot taken right after the join
        """
        while True:
            room = self._rooms.setdefault(room_id, Room(room_id=room_id))
            async with room.lock:
                # The room may have been reclaimed while we waited
                if self._rooms.get(room_id) is not room:
                    continue
                clients, rejoin = await self._add_member(
                    room, connection_id, username
                )
                break

        logger.info(
            "Joined room",
            room_id=room_id[:12],
            connection_id=connection_id[:12],
            members=len(clients),
            rejoin=rejoin,
        )
        return clients

    async def _add_member(self, room: Room, connection_id: str, username: str):
        rejoin = connection_id in room.members
        existing = [cid for cid in room.members if cid != connection_id]
        room.members[connection_id] = username
        self._connection_rooms.setdefault(connection_id, set()).add(room.room_id)

        clients = room.snapshot()
        for member_id in list(room.members):
            await self._deliver(
                member_id,
                EventKind.JOINED,
                {
                    "clients": clients,
                    "username": username,
                    "socketId": connection_id,
                },
            )

        if existing and not rejoin:
            await self._deliver(
                existing[0],
                EventKind.REQUEST_CODE_SYNC,
                {"socketId": connection_id},
            )
        return clients, rejoin

    async def broadcast_code_change(
        self, connection_id: str, room_id: str, code: str
    ) -> int:
        """Relay an edit to every other member of the room.

        Returns:
            Number of members notified
        """
        room = self._rooms.get(room_id)
        if room is None:
            return 0

        async with room.lock:
            if connection_id not in room.members:
                logger.debug(
                    "Ignored code change from non-member",
                    room_id=room_id[:12],
                    connection_id=connection_id[:12],
                )
                return 0
            recipients = [cid for cid in room.members if cid != connection_id]
            for member_id in recipients:
                await self._deliver(member_id, EventKind.CODE_CHANGE, {"code": code})
        return len(recipients)

    async def relay_sync(
        self, room_id: Optional[str], target_connection_id: str, code: str
    ) -> bool:
        """Send the current code to one member.

        Returns:
            False if the target is not a member of the room
        """
        room = self._rooms.get(room_id or "")
        if room is None or target_connection_id not in room.members:
            logger.debug(
                "Dropped code sync for non-member",
                room_id=(room_id or "")[:12],
                target=target_connection_id[:12],
            )
            return False
        await self._deliver(target_connection_id, EventKind.SYNC_CODE, {"code": code})
        return True

    async def leave(self, connection_id: str) -> List[str]:
        """Remove a connection from all its rooms and notify the rest.

        Returns:
            Ids of the rooms the connection left
        """
        room_ids = self._connection_rooms.pop(connection_id, set())
        left = []
        for room_id in sorted(room_ids):
            room = self._rooms.get(room_id)
            if room is None:
                continue
            async with room.lock:
                username = room.members.pop(connection_id, None)
                if username is None:
                    continue
                left.append(room_id)
                for member_id in list(room.members):
                    await self._deliver(
                        member_id,
                        EventKind.DISCONNECTED,
                        {"socketId": connection_id, "username": username},
                    )
                if not room.members and self._rooms.get(room_id) is room:
                    del self._rooms[room_id]
                    logger.debug("Reclaimed empty room", room_id=room_id[:12])

        if left:
            logger.info(
                "Left rooms",
                connection_id=connection_id[:12],
                rooms=len(left),
            )
        return left

    async def _deliver(self, connection_id: str, kind: EventKind, data: Dict[str, Any]) -> None:
        try:
            result = self._send(connection_id, kind, data)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                "Failed to deliver room event",
                connection_id=connection_id[:12],
                event_name=kind.value,
                error=str(e),
            )

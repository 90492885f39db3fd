"""Room membership table.

Maps room ids to ordered member sets and keeps a reverse client → room
lookup so leaving a room never requires a scan. Rooms exist only while
they have members.
"""

import logging

logger = logging.getLogger(__name__)


class InvariantViolation(RuntimeError):
    """Room table internal state is inconsistent.

    Only raised by consistency checks; indicates a programming error.
    """


class RoomTable:
    """Room id → ordered members, with at most one room per client.

    Not thread-safe on its own; the signaling router serializes access.
    """

    def __init__(self) -> None:
        # dict used as an insertion-ordered set of client ids
        self._rooms: dict[str, dict[str, None]] = {}
        self._room_of: dict[str, str] = {}

    def join(self, room_id: str, client_id: str) -> list[str]:
        """Add a client to a room.

        Creates the room if needed. Joining a room the client is already in
        changes nothing. A client still in another room is moved out of it
        first so membership stays exclusive.

        Args:
            room_id: Opaque room identifier, used as-is
            client_id: Joining client

        Returns:
            Members present before the join, excluding the joiner, in join order
        """
        current = self._room_of.get(client_id)
        if current is not None and current != room_id:
            self.leave(client_id)

        members = self._rooms.setdefault(room_id, {})
        roster = [member for member in members if member != client_id]

        if client_id not in members:
            members[client_id] = None
            self._room_of[client_id] = room_id
            logger.debug(
                "Client joined room",
                extra={"client_id": client_id, "room_id": room_id, "members": len(members)},
            )

        return roster

    def leave(self, client_id: str) -> str | None:
        """Remove a client from whichever room it is in.

        Deletes the room when its last member leaves.

        Returns:
            Room id the client left, or None if it was in no room
        """
        room_id = self._room_of.pop(client_id, None)
        if room_id is None:
            return None

        members = self._rooms[room_id]
        del members[client_id]
        if not members:
            del self._rooms[room_id]
            logger.debug("Room emptied and removed", extra={"room_id": room_id})

        return room_id

    def members_of(self, room_id: str) -> list[str]:
        """Snapshot of a room's members in join order (empty if unknown)."""
        return list(self._rooms.get(room_id, ()))

    def room_of(self, client_id: str) -> str | None:
        return self._room_of.get(client_id)

    def is_member(self, room_id: str, client_id: str) -> bool:
        return self._room_of.get(client_id) == room_id

    def room_ids(self) -> list[str]:
        return list(self._rooms)

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)

    def check_invariants(self) -> None:
        """Verify the member lists and reverse lookup agree.

        Raises:
            InvariantViolation: If any room is empty or the two indexes disagree
        """
        seen = 0
        for room_id, members in self._rooms.items():
            if not members:
                raise InvariantViolation(f"Empty room persisted: {room_id!r}")
            for client_id in members:
                if self._room_of.get(client_id) != room_id:
                    raise InvariantViolation(
                        f"Client {client_id!r} listed in {room_id!r} but reverse lookup "
                        f"says {self._room_of.get(client_id)!r}"
                    )
            seen += len(members)

        if seen != len(self._room_of):
            raise InvariantViolation(
                f"Reverse lookup has {len(self._room_of)} entries for {seen} memberships"
            )

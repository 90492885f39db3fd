"""In-memory registry of live client connections."""

import logging
from dataclasses import dataclass, field

from signaling.session import ClientState, SessionMetrics, transition
from signaling.transport.base import TransportSession

logger = logging.getLogger(__name__)


@dataclass
class ConnectionRecord:
    """One live client: its connection handle and last known room."""

    client_id: str
    connection: TransportSession
    room_id: str | None = None
    state: ClientState = ClientState.UNJOINED
    metrics: SessionMetrics = field(default_factory=SessionMetrics)

    def mark_joined(self, room_id: str) -> None:
        self.state = transition(self.client_id, self.state, ClientState.JOINED)
        self.room_id = room_id

    def mark_unjoined(self) -> None:
        self.state = transition(self.client_id, self.state, ClientState.UNJOINED)
        self.room_id = None

    def mark_terminated(self) -> None:
        self.state = transition(self.client_id, self.state, ClientState.TERMINATED)
        self.metrics.finalize()


class ConnectionRegistry:
    """Tracks which client ids are connected, independent of room membership.

    Not thread-safe on its own; the signaling router serializes access.
    """

    def __init__(self) -> None:
        self._records: dict[str, ConnectionRecord] = {}

    def register(self, client_id: str, connection: TransportSession) -> ConnectionRecord:
        """Record a new live client.

        Registering an id twice replaces the earlier connection (last write
        wins) but keeps its room membership and state, so the record stays
        consistent with the room table.

        Args:
            client_id: Transport-assigned client identifier
            connection: Connection used to send events to the client

        Returns:
            The new connection record
        """
        record = ConnectionRecord(client_id=client_id, connection=connection)

        previous = self._records.get(client_id)
        if previous is not None:
            logger.warning(
                "Client registered twice, replacing connection",
                extra={"client_id": client_id, "room_id": previous.room_id},
            )
            record.room_id = previous.room_id
            record.state = previous.state

        self._records[client_id] = record
        return record

    def unregister(self, client_id: str) -> bool:
        """Remove a client.

        Returns:
            True if the client was registered
        """
        return self._records.pop(client_id, None) is not None

    def is_live(self, client_id: str) -> bool:
        """Check that a client is registered and its connection is still open."""
        record = self._records.get(client_id)
        return record is not None and record.connection.is_connected

    def get(self, client_id: str) -> ConnectionRecord | None:
        return self._records.get(client_id)

    def client_ids(self) -> list[str]:
        return list(self._records)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._records

    def __len__(self) -> int:
        return len(self._records)

"""Per-connection signaling state.

Tracks the membership state machine and activity metrics for a single
client connection, independently of the underlying transport.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class ClientState(Enum):
    """Client membership state machine states.

    State Transitions:
    - UNJOINED → JOINED (on join-room)
    - JOINED → UNJOINED (on switching to another room)
    - * → TERMINATED (on disconnect)

    A client id is never reused, so TERMINATED is final.
    """

    UNJOINED = "unjoined"
    JOINED = "joined"
    TERMINATED = "terminated"


# Valid state transitions
VALID_TRANSITIONS: dict[ClientState, set[ClientState]] = {
    ClientState.UNJOINED: {ClientState.JOINED, ClientState.TERMINATED},
    ClientState.JOINED: {ClientState.UNJOINED, ClientState.TERMINATED},
    ClientState.TERMINATED: set(),  # Terminal state
}


@dataclass
class SessionMetrics:
    """Activity counters for one client connection."""

    events_received: int = 0
    messages_delivered: int = 0  # Outbound messages addressed to this client
    signals_dropped: int = 0  # Offers/answers from this client with no live target
    joins: int = 0

    session_start_ts: float = field(default_factory=time.monotonic)
    session_end_ts: float | None = None

    def record_event(self) -> None:
        """Record an inbound event from this client."""
        self.events_received += 1

    def record_delivery(self) -> None:
        """Record a message successfully handed to this client's transport."""
        self.messages_delivered += 1

    def record_drop(self) -> None:
        """Record a signal from this client that could not be delivered."""
        self.signals_dropped += 1

    def record_join(self) -> None:
        self.joins += 1

    def finalize(self) -> None:
        """Mark session as complete and record end time."""
        if self.session_end_ts is None:
            self.session_end_ts = time.monotonic()

    @property
    def duration_s(self) -> float:
        return (self.session_end_ts or time.monotonic()) - self.session_start_ts


def transition(client_id: str, current: ClientState, new_state: ClientState) -> ClientState:
    """Validate a state transition and return the new state.

    Args:
        client_id: Client the transition applies to (for logging)
        current: Current state
        new_state: Target state

    Returns:
        The new state

    Raises:
        ValueError: If transition is invalid
    """
    if new_state not in VALID_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid state transition: {current.value} → {new_state.value}")

    logger.debug(
        "Client state transition",
        extra={
            "client_id": client_id,
            "from_state": current.value,
            "to_state": new_state.value,
        },
    )
    return new_state

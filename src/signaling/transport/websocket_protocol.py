"""WebSocket message protocol definitions.

Defines Pydantic models for WebSocket message serialization/deserialization.
Messages are JSON objects with a ``type`` field; payload keys are camelCase
on the wire.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    """Accept both the camelCase wire names and the Python field names."""

    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> str:
        """Serialize with wire (camelCase) key names."""
        return self.model_dump_json(by_alias=True)


class JoinRoomMessage(_WireModel):
    """Client → Server: Request membership of a room.

    The room id is opaque and is not validated beyond being a string.
    """

    type: Literal["join-room"] = "join-room"
    room_id: str = Field(..., alias="roomId", description="Room to join")


class OfferMessage(_WireModel):
    """Client → Server: Relay an offer to a specific peer."""

    type: Literal["offer"] = "offer"
    target_id: str = Field(..., alias="targetId", min_length=1, description="Receiving peer")
    signal: Any = Field(..., description="Opaque negotiation payload")


class AnswerMessage(_WireModel):
    """Client → Server: Relay an answer back to the original caller."""

    type: Literal["answer"] = "answer"
    target_id: str = Field(..., alias="targetId", min_length=1, description="Original caller")
    signal: Any = Field(..., description="Opaque negotiation payload")


class SessionStartMessage(_WireModel):
    """Server → Client: Connection established.

    Tells the client the id other peers will see it as.
    """

    type: Literal["session-start"] = "session-start"
    client_id: str = Field(..., alias="clientId", description="Assigned client identifier")


class SessionEndMessage(_WireModel):
    """Server → Client: Server is closing the connection."""

    type: Literal["session-end"] = "session-end"
    client_id: str = Field(..., alias="clientId", description="Client identifier")
    reason: str = Field(default="closed", description="Reason for session end")


class RosterMessage(_WireModel):
    """Server → Client: Members already in the room, in join order.

    Sent only to the client that just joined.
    """

    type: Literal["roster"] = "roster"
    peer_ids: list[str] = Field(default_factory=list, alias="peerIds")


class IncomingOfferMessage(_WireModel):
    """Server → Client: Offer relayed from another peer."""

    type: Literal["incoming-offer"] = "incoming-offer"
    signal: Any = Field(..., description="Opaque negotiation payload")
    from_id: str = Field(..., alias="fromId", description="Sending peer")


class IncomingAnswerMessage(_WireModel):
    """Server → Client: Answer relayed from another peer."""

    type: Literal["incoming-answer"] = "incoming-answer"
    signal: Any = Field(..., description="Opaque negotiation payload")
    from_id: str = Field(..., alias="fromId", description="Answering peer")


class PeerLeftMessage(_WireModel):
    """Server → Client: A member of the client's room disconnected."""

    type: Literal["peer-left"] = "peer-left"
    peer_id: str = Field(..., alias="peerId")


class ErrorMessage(_WireModel):
    """Server → Client: Error notification."""

    type: Literal["error"] = "error"
    message: str = Field(..., description="Error description")
    code: str = Field(default="INTERNAL_ERROR", description="Error code")


# Union type for all server → client messages
ServerMessage = (
    SessionStartMessage
    | SessionEndMessage
    | RosterMessage
    | IncomingOfferMessage
    | IncomingAnswerMessage
    | PeerLeftMessage
    | ErrorMessage
)

# Union type for all client → server messages
ClientMessage = JoinRoomMessage | OfferMessage | AnswerMessage

# Inbound ``type`` value → model used to validate it
CLIENT_MESSAGE_TYPES: dict[str, type[JoinRoomMessage | OfferMessage | AnswerMessage]] = {
    "join-room": JoinRoomMessage,
    "offer": OfferMessage,
    "answer": AnswerMessage,
}

# Outbound ``type`` value → model, used by clients to decode server events
SERVER_MESSAGE_TYPES: dict[str, type[_WireModel]] = {
    "session-start": SessionStartMessage,
    "session-end": SessionEndMessage,
    "roster": RosterMessage,
    "incoming-offer": IncomingOfferMessage,
    "incoming-answer": IncomingAnswerMessage,
    "peer-left": PeerLeftMessage,
    "error": ErrorMessage,
}

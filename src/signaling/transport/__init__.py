"""Transport layer for relay client connections.

Provides the transport abstraction and the WebSocket implementation used
to exchange signaling events with clients.
"""

from signaling.transport.base import Transport, TransportSession
from signaling.transport.websocket_transport import (
    WebSocketSession,
    WebSocketTransport,
)

__all__ = [
    "Transport",
    "TransportSession",
    "WebSocketSession",
    "WebSocketTransport",
]

"""Base transport abstraction for client connections.

Defines the interface a transport implementation must provide so the
signaling router can receive named events from clients and send events
back to a specific client.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from signaling.transport.websocket_protocol import ClientMessage, ServerMessage


class TransportSession(ABC):
    """Base class for transport-specific client connections.

    Each transport implementation provides a concrete session type that
    handles framing and serialization while conforming to this interface.
    """

    @abstractmethod
    async def send_message(self, message: ServerMessage) -> None:
        """Send one event to the client.

        Args:
            message: Server → client event

        Raises:
            ConnectionError: If the connection is closed or broken
        """
        pass

    @abstractmethod
    async def receive_messages(self) -> AsyncIterator[ClientMessage]:
        """Receive parsed events from the client.

        Yields events until the connection closes. Malformed frames are
        handled by the transport and never yielded.

        Yields:
            ClientMessage: Parsed client → server event
        """
        # Using yield to make this an async generator
        if False:
            yield  # type: ignore[misc]

    @abstractmethod
    async def close(self) -> None:
        """Clean session shutdown."""
        pass

    @property
    @abstractmethod
    def client_id(self) -> str:
        """Opaque client identifier assigned by the transport."""
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the connection is still open."""
        pass


class Transport(ABC):
    """Base transport implementation.

    Manages the lifecycle of a transport server and creates sessions for
    incoming client connections.
    """

    @abstractmethod
    async def start(self) -> None:
        """Start the transport server.

        Raises:
            RuntimeError: If the transport fails to start
            OSError: If port binding fails (for network transports)
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop the transport server and close all sessions."""
        pass

    @abstractmethod
    async def accept_session(self) -> TransportSession:
        """Accept a new client session.

        Blocks until a new client connection is established.

        Raises:
            RuntimeError: If the transport is not running
        """
        pass

    @property
    @abstractmethod
    def transport_type(self) -> str:
        """Transport type identifier (e.g., 'websocket')."""
        pass

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """Check if the transport server is currently running."""
        pass

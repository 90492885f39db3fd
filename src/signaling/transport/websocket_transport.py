"""WebSocket transport implementation.

Accepts client WebSocket connections, assigns each a client id, parses
inbound JSON frames into protocol messages, and sends server events back.
"""

import asyncio
import json
import logging
import uuid
from collections.abc import AsyncIterator
from typing import Any

import websockets
from pydantic import ValidationError
from websockets.asyncio.server import ServerConnection
from websockets.protocol import State

from signaling.metrics import get_metrics_collector
from signaling.transport.base import Transport, TransportSession
from signaling.transport.websocket_protocol import (
    CLIENT_MESSAGE_TYPES,
    ClientMessage,
    ErrorMessage,
    ServerMessage,
    SessionEndMessage,
    SessionStartMessage,
)

logger = logging.getLogger(__name__)

# Close code for "try again later" (RFC 6455 registry)
CLOSE_TRY_AGAIN_LATER = 1013


class WebSocketSession(TransportSession):
    """WebSocket-based client connection.

    Implements the TransportSession interface for WebSocket connections,
    handling JSON message serialization and validation.
    """

    def __init__(self, websocket: ServerConnection, client_id: str) -> None:
        """Initialize WebSocket session.

        Args:
            websocket: WebSocket connection
            client_id: Unique client identifier
        """
        self._websocket = websocket
        self._client_id = client_id
        self._connected = True

        logger.info(
            "WebSocket session initialized",
            extra={"client_id": client_id, "remote": websocket.remote_address},
        )

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def is_connected(self) -> bool:
        """Check if the session connection is still active."""
        return self._connected and self._websocket.state == State.OPEN

    async def send_message(self, message: ServerMessage) -> None:
        """Send one event to the client.

        Raises:
            ConnectionError: If the connection is closed or broken
        """
        if not self.is_connected:
            raise ConnectionError("WebSocket connection is closed")

        try:
            await self._websocket.send(message.to_json())
        except websockets.exceptions.ConnectionClosed as e:
            self._connected = False
            raise ConnectionError(f"WebSocket connection closed: {e}") from e

        logger.debug(
            "Message sent",
            extra={"client_id": self._client_id, "type": message.type},
        )

    async def receive_messages(self) -> AsyncIterator[ClientMessage]:
        """Receive parsed events from the client.

        Malformed frames get an error reply and are skipped; the connection
        stays open.

        Yields:
            ClientMessage: Parsed client event

        Raises:
            ConnectionError: If receiving fails for a reason other than a close
        """
        try:
            async for raw_message in self._websocket:
                message = await self._parse(raw_message)
                if message is not None:
                    yield message

        except websockets.exceptions.ConnectionClosed:
            self._connected = False
            logger.info(
                "WebSocket connection closed by client",
                extra={"client_id": self._client_id},
            )
        except Exception as e:
            self._connected = False
            logger.error(
                "Error in receive_messages",
                extra={"client_id": self._client_id, "error": str(e)},
            )
            raise ConnectionError(f"WebSocket receive error: {e}") from e

    async def _parse(self, raw_message: str | bytes) -> ClientMessage | None:
        """Validate one inbound frame, replying with an error if it is malformed."""
        if not isinstance(raw_message, str):
            logger.warning(
                "Received non-text WebSocket message, skipping",
                extra={"client_id": self._client_id},
            )
            await self._reject("Binary frames are not supported", "INVALID_MESSAGE")
            return None

        try:
            data: Any = json.loads(raw_message)
        except json.JSONDecodeError as e:
            logger.warning(
                "Invalid JSON message",
                extra={"client_id": self._client_id, "error": str(e)},
            )
            await self._reject(f"Invalid JSON: {e}", "INVALID_JSON")
            return None

        if not isinstance(data, dict):
            await self._reject("Message must be a JSON object", "INVALID_MESSAGE")
            return None

        message_type = data.get("type")
        model = CLIENT_MESSAGE_TYPES.get(message_type) if isinstance(message_type, str) else None
        if model is None:
            logger.warning(
                "Unknown message type",
                extra={"client_id": self._client_id, "type": message_type},
            )
            await self._reject(f"Unknown message type: {message_type}", "UNKNOWN_TYPE")
            return None

        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.warning(
                "Message failed validation",
                extra={"client_id": self._client_id, "type": message_type, "error": str(e)},
            )
            await self._reject(f"Invalid {message_type} message", "INVALID_MESSAGE")
            return None

    async def send_session_start(self) -> None:
        """Tell the client its assigned id."""
        await self._send_quietly(SessionStartMessage(client_id=self._client_id))

    async def send_session_end(self, reason: str = "closed") -> None:
        await self._send_quietly(SessionEndMessage(client_id=self._client_id, reason=reason))

    async def _reject(self, error_msg: str, code: str) -> None:
        get_metrics_collector().record_invalid_message()
        await self._send_quietly(ErrorMessage(message=error_msg, code=code))

    async def _send_quietly(self, message: ServerMessage) -> None:
        """Send a transport-level message, logging instead of raising on failure."""
        if not self.is_connected:
            return

        try:
            await self._websocket.send(message.to_json())
        except Exception as e:
            logger.error(
                "Failed to send message",
                extra={"client_id": self._client_id, "type": message.type, "error": str(e)},
            )

    async def close(self, reason: str = "closed") -> None:
        """Send session-end and close the connection."""
        if not self._connected:
            return

        logger.info("Closing WebSocket session", extra={"client_id": self._client_id})

        try:
            await self.send_session_end(reason=reason)
            await self._websocket.close()
        except Exception as e:
            logger.warning(
                "Error during session close",
                extra={"client_id": self._client_id, "error": str(e)},
            )
        finally:
            self._connected = False


class WebSocketTransport(Transport):
    """WebSocket transport server.

    Manages WebSocket server lifecycle and creates WebSocketSession
    instances for incoming client connections.
    """

    def __init__(
        self,
        host: str = "0.0.0.0",  # noqa: S104
        port: int = 8080,
        max_connections: int = 100,
        max_message_size: int = 65536,
    ) -> None:
        """Initialize WebSocket transport.

        Args:
            host: Bind host address
            port: Bind port (0 picks a free port)
            max_connections: Maximum concurrent connections
            max_message_size: Maximum inbound frame size in bytes
        """
        self._host = host
        self._port = port
        self._max_connections = max_connections
        self._max_message_size = max_message_size
        self._server: Any = None  # websockets Server
        self._running = False
        self._session_queue: asyncio.Queue[WebSocketSession] = asyncio.Queue()
        self._sessions: dict[str, WebSocketSession] = {}

        logger.info(
            "WebSocket transport initialized",
            extra={"host": host, "port": port, "max_connections": max_connections},
        )

    @property
    def transport_type(self) -> str:
        return "websocket"

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def active_connections(self) -> int:
        return len(self._sessions)

    @property
    def port(self) -> int:
        """Bound port; differs from the configured one when started with port 0."""
        if self._server is not None:
            for sock in self._server.sockets:
                return int(sock.getsockname()[1])
        return self._port

    async def start(self) -> None:
        """Start the WebSocket server.

        Raises:
            RuntimeError: If the transport is already running or fails to start
            OSError: If port binding fails
        """
        if self._running:
            raise RuntimeError("WebSocket transport is already running")

        logger.info("Starting WebSocket server", extra={"host": self._host, "port": self._port})

        try:
            self._server = await websockets.serve(
                self._handle_connection,
                self._host,
                self._port,
                max_size=self._max_message_size,
            )
            self._running = True

            logger.info("WebSocket server started", extra={"host": self._host, "port": self.port})

        except OSError as e:
            logger.error(
                "Failed to bind WebSocket server",
                extra={"host": self._host, "port": self._port, "error": str(e)},
            )
            raise
        except Exception as e:
            logger.error("Failed to start WebSocket server", extra={"error": str(e)})
            raise RuntimeError(f"Failed to start WebSocket transport: {e}") from e

    async def stop(self) -> None:
        """Stop the WebSocket server and close every open session."""
        if not self._running:
            return

        logger.info("Stopping WebSocket server", extra={"sessions": len(self._sessions)})

        self._running = False

        for session in list(self._sessions.values()):
            await session.close(reason="server shutdown")

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        logger.info("WebSocket server stopped")

    async def accept_session(self) -> TransportSession:
        """Accept a new client session.

        Raises:
            RuntimeError: If the transport is not running
        """
        if not self._running:
            raise RuntimeError("WebSocket transport is not running")

        return await self._session_queue.get()

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """Handle incoming WebSocket connection.

        Keeps the connection open until the client (or the server) closes it;
        the session's messages are consumed by whoever accepted the session.
        """
        if len(self._sessions) >= self._max_connections:
            get_metrics_collector().record_connection_rejected()
            logger.warning(
                "Connection limit reached, rejecting client",
                extra={"remote": websocket.remote_address, "limit": self._max_connections},
            )
            await websocket.close(code=CLOSE_TRY_AGAIN_LATER, reason="server at capacity")
            return

        client_id = uuid.uuid4().hex

        logger.info(
            "New WebSocket connection",
            extra={"client_id": client_id, "remote": websocket.remote_address},
        )

        session = WebSocketSession(websocket, client_id)
        self._sessions[client_id] = session

        try:
            await session.send_session_start()
            await self._session_queue.put(session)
            await websocket.wait_closed()
        except Exception as e:
            logger.error(
                "Error in connection handler",
                extra={"client_id": client_id, "error": str(e)},
            )
        finally:
            self._sessions.pop(client_id, None)
            logger.info("WebSocket connection closed", extra={"client_id": client_id})

"""Integration test fixtures and utilities.

Provides shared fixtures for:
- Free port allocation
- Relay server lifecycle on real sockets
- WebSocket client helpers that skip session-start and decode events
"""

import asyncio
import json
import logging
import socket
from collections.abc import AsyncIterator
from typing import Any

import pytest_asyncio
import websockets
from websockets.asyncio.client import ClientConnection

from signaling.config import RelayConfig
from signaling.metrics import reset_metrics_collector
from signaling.server import RelayServer

logger = logging.getLogger(__name__)


# ============================================================================
# Utility Functions for Port Allocation
# ============================================================================


def get_free_port() -> int:
    """Get a free TCP port for binding.

    Notes:
        The port is freed immediately after discovery, so there's a small
        race condition window, but this is acceptable for tests.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        s.listen(1)
        port: int = s.getsockname()[1]
    return port


# ============================================================================
# Relay Client Helpers
# ============================================================================


class RelayClient:
    """Thin wrapper over a client connection that speaks the relay's JSON."""

    def __init__(self, websocket: ClientConnection, client_id: str) -> None:
        self.websocket = websocket
        self.client_id = client_id

    async def send(self, **payload: Any) -> None:
        await self.websocket.send(json.dumps(payload))

    async def recv(self, timeout: float = 2.0) -> dict[str, Any]:
        raw = await asyncio.wait_for(self.websocket.recv(), timeout=timeout)
        data: dict[str, Any] = json.loads(raw)
        return data

    async def expect_silence(self, timeout: float = 0.2) -> None:
        """Assert that nothing arrives within the timeout."""
        try:
            data = await asyncio.wait_for(self.websocket.recv(), timeout=timeout)
        except TimeoutError:
            return
        raise AssertionError(f"Unexpected message: {data}")

    async def close(self) -> None:
        await self.websocket.close()


async def connect_client(url: str) -> RelayClient:
    """Connect and consume the session-start event."""
    websocket = await websockets.connect(url)
    start = json.loads(await asyncio.wait_for(websocket.recv(), timeout=2.0))
    assert start["type"] == "session-start"
    return RelayClient(websocket, start["clientId"])


# ============================================================================
# Relay Server Fixtures
# ============================================================================


def make_config(**relay: Any) -> RelayConfig:
    return RelayConfig.model_validate(
        {
            "transport": {"websocket": {"host": "127.0.0.1", "port": get_free_port()}},
            "health": {"host": "127.0.0.1", "port": get_free_port()},
            "relay": relay,
            "graceful_shutdown_timeout_s": 2,
        }
    )


@pytest_asyncio.fixture
async def relay_server() -> AsyncIterator[RelayServer]:
    """Start a relay on free ports and stop it after the test."""
    reset_metrics_collector()
    server = RelayServer(make_config())
    await server.start()
    logger.info("Test relay started", extra={"port": server.config.transport.websocket.port})
    try:
        yield server
    finally:
        await server.stop()


@pytest_asyncio.fixture
async def relay_url(relay_server: RelayServer) -> str:
    return f"ws://127.0.0.1:{relay_server.config.transport.websocket.port}"

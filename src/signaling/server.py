"""Signaling relay server.

Main server implementation that:
1. Starts the WebSocket transport
2. Provides HTTP health check and metrics endpoints
3. Accepts client sessions, one task per connection
4. Feeds each client's events into the shared signaling router
5. Runs leave handling when a connection closes
"""

import argparse
import asyncio
import contextlib
import logging
import signal
from pathlib import Path

from aiohttp.web import Application, AppRunner, TCPSite

from signaling.config import RelayConfig
from signaling.health import setup_health_routes
from signaling.router import SignalingRouter
from signaling.transport.base import Transport, TransportSession
from signaling.transport.websocket_transport import WebSocketTransport
from signaling.utils.logging import log_event, setup_logging

logger = logging.getLogger(__name__)


async def handle_session(session: TransportSession, router: SignalingRouter) -> None:
    """Run one client connection from connect to disconnect.

    Events from a client are dispatched in the order they arrive. Leave
    handling runs exactly once, however the connection ends.

    Args:
        session: Accepted transport session
        router: Shared signaling router
    """
    client_id = session.client_id
    await router.connect(session)

    try:
        async for message in session.receive_messages():
            await router.dispatch(client_id, message)

    except ConnectionError as e:
        logger.info("Connection lost", extra={"client_id": client_id, "error": str(e)})
    finally:
        await router.disconnect(client_id)


class RelayServer:
    """Owns the transport, router, and health endpoints for one relay process.

    Thread-safety: This class is NOT thread-safe. Use from a single event loop.
    """

    def __init__(
        self,
        config: RelayConfig,
        transport: Transport | None = None,
        router: SignalingRouter | None = None,
    ) -> None:
        """Initialize relay server.

        Args:
            config: Server configuration
            transport: Transport override (for testing)
            router: Router override (for testing)
        """
        self.config = config

        ws_config = config.transport.websocket
        self.transport: Transport = transport or WebSocketTransport(
            host=ws_config.host,
            port=ws_config.port,
            max_connections=ws_config.max_connections,
            max_message_size=ws_config.max_message_size,
        )
        self.router = router or SignalingRouter(
            notify_undeliverable=config.relay.notify_undeliverable,
        )

        self._accept_task: asyncio.Task[None] | None = None
        self._session_tasks: set[asyncio.Task[None]] = set()
        self._health_runner: AppRunner | None = None

    async def start(self) -> None:
        """Start transport, health server, and the accept loop."""
        await self.transport.start()

        if self.config.health.enabled:
            health_app = Application()
            setup_health_routes(health_app, transport=self.transport, router=self.router)

            self._health_runner = AppRunner(health_app)
            await self._health_runner.setup()
            site = TCPSite(self._health_runner, self.config.health.host, self.config.health.port)
            await site.start()
            logger.info("Health check server started", extra={"port": self.config.health.port})

        self._accept_task = asyncio.create_task(self._accept_loop())
        log_event(
            "relay_started",
            {
                "transport": self.transport.transport_type,
                "notify_undeliverable": self.config.relay.notify_undeliverable,
            },
        )

    async def _accept_loop(self) -> None:
        while True:
            session = await self.transport.accept_session()
            logger.debug("Session accepted", extra={"client_id": session.client_id})

            task = asyncio.create_task(handle_session(session, self.router))
            self._session_tasks.add(task)
            task.add_done_callback(self._session_tasks.discard)

    async def stop(self) -> None:
        """Stop accepting, close every session, and wait for leave handling."""
        logger.info("Shutting down relay server")

        if self._accept_task is not None:
            self._accept_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._accept_task
            self._accept_task = None

        await self.transport.stop()

        if self._session_tasks:
            logger.info("Waiting for sessions to finish", extra={"count": len(self._session_tasks)})
            _, pending = await asyncio.wait(
                set(self._session_tasks),
                timeout=self.config.graceful_shutdown_timeout_s,
            )
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        if self._health_runner is not None:
            await self._health_runner.cleanup()
            self._health_runner = None
            logger.info("Health check server stopped")

        log_event(
            "relay_stopped",
            {"rooms": self.router.room_count, "connections": self.router.connection_count},
        )


async def start_server(config_path: Path | None) -> None:
    """Start the relay and run until interrupted.

    Args:
        config_path: Path to YAML config file (defaults apply if missing)

    Raises:
        ValueError: If configuration is invalid
        OSError: If the WebSocket or health port cannot be bound
    """
    config = RelayConfig.from_yaml_with_defaults(config_path)

    setup_logging(config.log_level, json_format=config.log_format == "json")
    logger.info("Loaded configuration", extra={"config_path": str(config_path)})

    server = RelayServer(config)
    await server.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        logger.info(
            "Signaling relay ready",
            extra={
                "host": config.transport.websocket.host,
                "port": config.transport.websocket.port,
            },
        )
        await stop_event.wait()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await server.stop()
        logger.info("Signaling relay stopped")


def main() -> None:
    """Entry point for the relay server."""
    parser = argparse.ArgumentParser(description="Signaling relay server")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("configs") / "relay.yaml",
        help="Path to relay config YAML file (default: configs/relay.yaml)",
    )
    args = parser.parse_args()

    try:
        asyncio.run(start_server(args.config))
    except KeyboardInterrupt:
        logger.info("Signaling relay interrupted")


if __name__ == "__main__":
    main()

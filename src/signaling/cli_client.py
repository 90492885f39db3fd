"""WebSocket CLI client for testing the signaling relay.

Connects to the relay, joins rooms, and sends offers/answers typed at the
prompt, printing every event the relay sends back.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any

import websockets
from pydantic import ValidationError
from websockets.asyncio.client import ClientConnection

from signaling.transport.websocket_protocol import (
    SERVER_MESSAGE_TYPES,
    AnswerMessage,
    ErrorMessage,
    IncomingAnswerMessage,
    IncomingOfferMessage,
    JoinRoomMessage,
    OfferMessage,
    PeerLeftMessage,
    RosterMessage,
    SessionEndMessage,
    SessionStartMessage,
)

logger = logging.getLogger(__name__)

HELP_TEXT = """
Commands:
  /join <room>             - Join a room (prints the peers already there)
  /offer <peer> <signal>   - Send an offer to a peer
  /answer <peer> <signal>  - Send an answer back to a caller
  /quit                    - Exit client
  /help                    - Show this help

<signal> is parsed as JSON when possible, otherwise sent as a string.
"""


def parse_signal(text: str) -> Any:
    """Interpret a typed signal as JSON, falling back to the raw string."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


class CLIClient:
    """WebSocket CLI client for relay communication."""

    def __init__(self, server_url: str, auto_answer: bool = False) -> None:
        """Initialize CLI client.

        Args:
            server_url: WebSocket server URL (e.g., ws://localhost:8080)
            auto_answer: Reply to every incoming offer with an echo answer
        """
        self.server_url = server_url
        self.auto_answer = auto_answer
        self.client_id: str | None = None
        self.room_id: str | None = None
        # Requested by /join, confirmed when the roster arrives
        self.pending_room_id: str | None = None
        self.peers: list[str] = []
        self.running = True

    def build_command(self, line: str) -> JoinRoomMessage | OfferMessage | AnswerMessage | None:
        """Turn a prompt line into a client message.

        /quit and /help are handled by the input loop, not here.

        Returns:
            Message to send, or None for an unknown or incomplete command
        """
        parts = line.split(maxsplit=2)
        command = parts[0][1:].lower()

        if command == "join" and len(parts) >= 2:
            self.pending_room_id = line.split(maxsplit=1)[1]
            return JoinRoomMessage(room_id=self.pending_room_id)

        if command in ("offer", "answer") and len(parts) == 3:
            target, raw_signal = parts[1], parts[2]
            if command == "offer":
                return OfferMessage(target_id=target, signal=parse_signal(raw_signal))
            return AnswerMessage(target_id=target, signal=parse_signal(raw_signal))

        return None

    async def handle_message(self, websocket: ClientConnection, message_data: str) -> None:
        """Handle incoming message from server.

        Args:
            websocket: WebSocket connection (used for auto-answer)
            message_data: Raw JSON message from server
        """
        try:
            data = json.loads(message_data)
            model = SERVER_MESSAGE_TYPES.get(data.get("type"))
            if model is None:
                logger.warning(f"Unknown message type: {data.get('type')}")
                return
            msg = model.model_validate(data)
        except (json.JSONDecodeError, ValidationError, AttributeError) as e:
            logger.error(f"Failed to handle message: {e}")
            return

        if isinstance(msg, SessionStartMessage):
            self.client_id = msg.client_id
            print(f"\nConnected as {msg.client_id}")

        elif isinstance(msg, RosterMessage):
            if self.pending_room_id is not None:
                self.room_id, self.pending_room_id = self.pending_room_id, None
            self.peers = list(msg.peer_ids)
            peers = ", ".join(msg.peer_ids) or "(nobody yet)"
            print(f"\nJoined room {self.room_id}; peers: {peers}")

        elif isinstance(msg, IncomingOfferMessage):
            print(f"\nOffer from {msg.from_id}: {json.dumps(msg.signal)}")
            if self.auto_answer:
                answer = AnswerMessage(target_id=msg.from_id, signal={"echo": msg.signal})
                await websocket.send(answer.to_json())
                print(f"Auto-answered {msg.from_id}")

        elif isinstance(msg, IncomingAnswerMessage):
            print(f"\nAnswer from {msg.from_id}: {json.dumps(msg.signal)}")

        elif isinstance(msg, PeerLeftMessage):
            if msg.peer_id in self.peers:
                self.peers.remove(msg.peer_id)
            print(f"\nPeer left: {msg.peer_id}")

        elif isinstance(msg, SessionEndMessage):
            print(f"\nSession ended: {msg.reason}")
            self.running = False

        elif isinstance(msg, ErrorMessage):
            logger.error(f"Server error [{msg.code}]: {msg.message}")
            self.pending_room_id = None
            print(f"\nError: {msg.message}")

    async def receive_messages(self, websocket: ClientConnection) -> None:
        """Receive and handle messages from server."""
        try:
            async for message in websocket:
                if isinstance(message, bytes):
                    message = message.decode("utf-8")
                await self.handle_message(websocket, message)
        except websockets.exceptions.ConnectionClosed:
            logger.info("Connection closed by server")
        finally:
            self.running = False

    async def input_loop(self, websocket: ClientConnection) -> None:
        """Handle user input from stdin."""
        print("\n" + "=" * 60)
        print("Signaling relay CLI client")
        print("=" * 60)
        print(HELP_TEXT)

        loop = asyncio.get_running_loop()

        while self.running:
            try:
                line = await loop.run_in_executor(None, input, "> ")
            except (EOFError, KeyboardInterrupt):
                self.running = False
                break

            line = line.strip()
            if not line:
                continue

            if not line.startswith("/"):
                print("Commands start with /. Type /help for available commands")
                continue

            command = line[1:].split(maxsplit=1)[0].lower()
            if command == "quit":
                self.running = False
                print("\nGoodbye!")
                await websocket.close()
                break

            if command == "help":
                print(HELP_TEXT)
                continue

            message = self.build_command(line)
            if message is None:
                print(f"Unknown or incomplete command: {line}")
                print("Type /help for available commands")
                continue

            await websocket.send(message.to_json())
            logger.debug(f"Sent: {message.to_json()}")

    async def run(self) -> None:
        """Run the CLI client."""
        try:
            async with websockets.connect(self.server_url) as websocket:
                logger.info(f"Connected to {self.server_url}")

                def signal_handler() -> None:
                    self.running = False

                loop = asyncio.get_running_loop()
                for sig in (signal.SIGINT, signal.SIGTERM):
                    loop.add_signal_handler(sig, signal_handler)

                try:
                    await asyncio.gather(
                        self.input_loop(websocket),
                        self.receive_messages(websocket),
                    )
                finally:
                    for sig in (signal.SIGINT, signal.SIGTERM):
                        loop.remove_signal_handler(sig)

        except OSError as e:
            logger.error(f"Client error: {e}")
            sys.exit(1)


def main() -> None:
    """Main entry point for CLI client."""
    parser = argparse.ArgumentParser(description="WebSocket CLI client for the signaling relay")
    parser.add_argument(
        "--host",
        type=str,
        default="ws://localhost:8080",
        help="WebSocket server URL (default: ws://localhost:8080)",
    )
    parser.add_argument(
        "--auto-answer",
        action="store_true",
        help="Answer every incoming offer automatically",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        asyncio.run(CLIClient(args.host, auto_answer=args.auto_answer).run())
    except KeyboardInterrupt:
        print("\nExiting...")
        sys.exit(0)


if __name__ == "__main__":
    main()

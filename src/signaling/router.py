"""Signaling router.

Ties inbound client events to room table mutations and outbound sends:

- join-room: add the sender to a room and send it the roster of peers
- offer: relay an opaque offer to one target peer
- answer: relay an opaque answer back to the original caller
- disconnect: drop the client and tell its remaining room peers

All state changes happen under one asyncio.Lock so concurrent joins and
leaves never interleave. Outbound messages are collected while the lock
is held and delivered after it is released, so a slow peer never blocks
event handling for other clients.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

from signaling.metrics import MetricsCollector, get_metrics_collector
from signaling.registry import ConnectionRecord, ConnectionRegistry
from signaling.rooms import RoomTable
from signaling.session import ClientState
from signaling.transport.base import TransportSession
from signaling.transport.websocket_protocol import (
    AnswerMessage,
    ClientMessage,
    ErrorMessage,
    IncomingAnswerMessage,
    IncomingOfferMessage,
    JoinRoomMessage,
    OfferMessage,
    PeerLeftMessage,
    RosterMessage,
    ServerMessage,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Outbound:
    """A message addressed to one connection, waiting for delivery."""

    target_id: str
    connection: TransportSession
    message: ServerMessage


class SignalingRouter:
    """Protocol state machine for the relay.

    Owns the connection registry and room table exclusively; callers only
    get read-only snapshots.

    Thread-safety: asyncio only. Use from a single event loop.
    """

    def __init__(
        self,
        registry: ConnectionRegistry | None = None,
        rooms: RoomTable | None = None,
        metrics: MetricsCollector | None = None,
        notify_undeliverable: bool = False,
    ) -> None:
        """Initialize router.

        Args:
            registry: Connection registry (a new one if omitted)
            rooms: Room table (a new one if omitted)
            metrics: Metrics collector (global collector if omitted)
            notify_undeliverable: Send the sender an error when an offer or
                answer target is not connected, instead of dropping silently
        """
        self._registry = registry if registry is not None else ConnectionRegistry()
        self._rooms = rooms if rooms is not None else RoomTable()
        self._metrics = metrics if metrics is not None else get_metrics_collector()
        self._notify_undeliverable = notify_undeliverable
        self._lock = asyncio.Lock()

    # -------------------- Read-only views -------------------- #

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    @property
    def connection_count(self) -> int:
        return len(self._registry)

    def members_of(self, room_id: str) -> list[str]:
        return self._rooms.members_of(room_id)

    def room_of(self, client_id: str) -> str | None:
        return self._rooms.room_of(client_id)

    def is_live(self, client_id: str) -> bool:
        return self._registry.is_live(client_id)

    def state_of(self, client_id: str) -> ClientState | None:
        record = self._registry.get(client_id)
        return record.state if record is not None else None

    # -------------------- Entry points -------------------- #

    async def connect(self, connection: TransportSession) -> None:
        """Register a newly established connection under its client id."""
        async with self._lock:
            self._registry.register(connection.client_id, connection)
        self._metrics.record_connection_open()
        logger.info("Client connected", extra={"client_id": connection.client_id})

    async def dispatch(self, client_id: str, message: ClientMessage) -> None:
        """Handle one inbound event from a client.

        Args:
            client_id: Sender, as identified by the transport
            message: Parsed client event
        """
        start = time.perf_counter()

        if isinstance(message, JoinRoomMessage):
            await self.join(message.room_id, client_id)
        elif isinstance(message, OfferMessage):
            await self.forward_offer(message.target_id, client_id, message.signal)
        elif isinstance(message, AnswerMessage):
            await self.forward_answer(message.target_id, client_id, message.signal)
        else:
            logger.warning(
                "Unhandled message type",
                extra={"client_id": client_id, "type": type(message).__name__},
            )
            return

        self._metrics.record_dispatch(time.perf_counter() - start)

    async def join(self, room_id: str, client_id: str) -> None:
        """Add a client to a room and send it the roster of existing members.

        Existing members are not notified; they learn about the newcomer
        from its offer.
        """
        async with self._lock:
            outbound = self._handle_join(room_id, client_id)
        await self._deliver(outbound)

    async def forward_offer(self, target_id: str, caller_id: str, signal: Any) -> None:
        """Relay an offer from caller to target, dropping it if the target is gone."""
        async with self._lock:
            outbound = self._handle_signal(
                target_id,
                caller_id,
                IncomingOfferMessage(signal=signal, from_id=caller_id),
            )
        await self._deliver(outbound)

    async def forward_answer(self, caller_id: str, sender_id: str, signal: Any) -> None:
        """Relay an answer back to the caller, dropping it if the caller is gone."""
        async with self._lock:
            outbound = self._handle_signal(
                caller_id,
                sender_id,
                IncomingAnswerMessage(signal=signal, from_id=sender_id),
            )
        await self._deliver(outbound)

    async def disconnect(self, client_id: str) -> None:
        """Handle connection loss: unregister and notify remaining room members.

        Safe to call more than once; only the first call has any effect.
        """
        async with self._lock:
            outbound = self._handle_disconnect(client_id)
        await self._deliver(outbound)

    # -------------------- Transitions (lock held) -------------------- #

    def _handle_join(self, room_id: str, client_id: str) -> list[Outbound]:
        record = self._registry.get(client_id)
        if record is None:
            logger.debug("Ignoring join from unregistered client", extra={"client_id": client_id})
            return []

        record.metrics.record_event()
        outbound: list[Outbound] = []

        previous = self._rooms.room_of(client_id)
        duplicate = previous == room_id
        if previous is not None and not duplicate:
            # Switching rooms: leave the old one first so its members hear about it
            outbound.extend(self._leave_room(record))

        roster = self._rooms.join(room_id, client_id)
        if not duplicate:
            record.mark_joined(room_id)
        record.metrics.record_join()

        self._metrics.record_join(duplicate=duplicate)
        self._metrics.set_rooms_active(len(self._rooms))

        logger.info(
            "Client joined room",
            extra={
                "client_id": client_id,
                "room_id": room_id,
                "peers": len(roster),
                "duplicate": duplicate,
            },
        )

        outbound.append(Outbound(client_id, record.connection, RosterMessage(peer_ids=roster)))
        return outbound

    def _handle_signal(
        self,
        target_id: str,
        sender_id: str,
        message: IncomingOfferMessage | IncomingAnswerMessage,
    ) -> list[Outbound]:
        sender = self._registry.get(sender_id)
        if sender is None:
            logger.debug("Ignoring signal from unregistered client", extra={"client_id": sender_id})
            return []

        sender.metrics.record_event()

        target = self._registry.get(target_id)
        if target is None or not self._registry.is_live(target_id):
            sender.metrics.record_drop()
            self._metrics.record_signal(delivered=False)
            logger.debug(
                "Dropping signal for unknown target",
                extra={"client_id": sender_id, "target_id": target_id, "type": message.type},
            )
            if self._notify_undeliverable:
                return [
                    Outbound(
                        sender_id,
                        sender.connection,
                        ErrorMessage(
                            message=f"Target {target_id} is not connected",
                            code="TARGET_NOT_FOUND",
                        ),
                    )
                ]
            return []

        self._metrics.record_signal(delivered=True)
        logger.debug(
            "Relaying signal",
            extra={"client_id": sender_id, "target_id": target_id, "type": message.type},
        )
        return [Outbound(target_id, target.connection, message)]

    def _handle_disconnect(self, client_id: str) -> list[Outbound]:
        record = self._registry.get(client_id)
        if not self._registry.unregister(client_id) or record is None:
            return []

        outbound: list[Outbound] = []
        if self._rooms.room_of(client_id) is not None:
            outbound = self._leave_room(record)
        record.mark_terminated()

        self._metrics.record_connection_close()
        self._metrics.set_rooms_active(len(self._rooms))

        logger.info(
            "Client disconnected",
            extra={
                "client_id": client_id,
                "events": record.metrics.events_received,
                "delivered": record.metrics.messages_delivered,
                "dropped": record.metrics.signals_dropped,
                "duration_s": round(record.metrics.duration_s, 3),
            },
        )
        return outbound

    def _leave_room(self, record: ConnectionRecord) -> list[Outbound]:
        """Remove a client from its room and address peer-left to who remains."""
        room_id = self._rooms.leave(record.client_id)
        if room_id is None:
            return []
        if record.state == ClientState.JOINED:
            record.mark_unjoined()

        outbound: list[Outbound] = []
        for member_id in self._rooms.members_of(room_id):
            member = self._registry.get(member_id)
            if member is None or not member.connection.is_connected:
                continue
            outbound.append(
                Outbound(member_id, member.connection, PeerLeftMessage(peer_id=record.client_id))
            )

        self._metrics.record_peer_left_notices(len(outbound))
        logger.info(
            "Client left room",
            extra={"client_id": record.client_id, "room_id": room_id, "notified": len(outbound)},
        )
        return outbound

    # -------------------- Delivery (lock released) -------------------- #

    async def _deliver(self, outbound: list[Outbound]) -> None:
        if not outbound:
            return
        await asyncio.gather(*(self._send(item) for item in outbound))

    async def _send(self, item: Outbound) -> None:
        try:
            await item.connection.send_message(item.message)
        except ConnectionError as e:
            self._metrics.record_send_failure()
            logger.info(
                "Delivery failed, target connection closed",
                extra={"target_id": item.target_id, "type": item.message.type, "error": str(e)},
            )
            return
        except Exception as e:
            self._metrics.record_send_failure()
            logger.error(
                "Delivery failed",
                extra={"target_id": item.target_id, "type": item.message.type, "error": str(e)},
                exc_info=True,
            )
            return

        record = self._registry.get(item.target_id)
        if record is not None:
            record.metrics.record_delivery()

"""Unit tests for the signaling router.

Covers the join / offer / answer / leave transitions, the end-to-end
room scenario, silent drops for absent targets, and serialization under
concurrent events.
"""

import asyncio

import pytest

from signaling.metrics import MetricsCollector
from signaling.router import SignalingRouter
from signaling.session import ClientState
from signaling.transport.websocket_protocol import (
    AnswerMessage,
    JoinRoomMessage,
    OfferMessage,
)
from tests.helpers.relay_test_utils import MockConnection, SlowConnection


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def router(metrics: MetricsCollector) -> SignalingRouter:
    return SignalingRouter(metrics=metrics)


async def connect_all(router: SignalingRouter, *client_ids: str) -> dict[str, MockConnection]:
    """Register one MockConnection per client id."""
    connections = {}
    for client_id in client_ids:
        conn = MockConnection(client_id)
        await router.connect(conn)
        connections[client_id] = conn
    return connections


class TestScenario:
    """The two-peer call from join to teardown."""

    @pytest.mark.asyncio
    async def test_full_room_lifecycle(self, router: SignalingRouter) -> None:
        conns = await connect_all(router, "A", "B")
        a, b = conns["A"], conns["B"]

        # 1. A joins empty room
        await router.join("r1", "A")
        assert [m.peer_ids for m in a.sent_of_type("roster")] == [[]]

        # 2. B joins, sees A
        await router.join("r1", "B")
        assert [m.peer_ids for m in b.sent_of_type("roster")] == [["A"]]
        assert router.members_of("r1") == ["A", "B"]
        # Existing members are not told about the newcomer
        assert a.sent_of_type("roster") == a.sent

        # 3. B offers to A
        await router.forward_offer("A", "B", "sdp-offer-1")
        offers = a.sent_of_type("incoming-offer")
        assert len(offers) == 1
        assert offers[0].signal == "sdp-offer-1"
        assert offers[0].from_id == "B"

        # 4. A answers B
        await router.forward_answer("B", "A", "sdp-answer-1")
        answers = b.sent_of_type("incoming-answer")
        assert len(answers) == 1
        assert answers[0].signal == "sdp-answer-1"
        assert answers[0].from_id == "A"

        # 5. A disconnects, B is told
        await router.disconnect("A")
        assert router.members_of("r1") == ["B"]
        left = b.sent_of_type("peer-left")
        assert [m.peer_id for m in left] == ["A"]
        assert a.sent_of_type("peer-left") == []

        # 6. B disconnects, room disappears
        await router.disconnect("B")
        assert router.members_of("r1") == []
        assert router.room_count == 0
        assert router.connection_count == 0


class TestJoin:
    """Join transition."""

    @pytest.mark.asyncio
    async def test_duplicate_join_resends_roster_without_change(
        self, router: SignalingRouter, metrics: MetricsCollector
    ) -> None:
        conns = await connect_all(router, "A", "B")
        await router.join("r1", "A")
        await router.join("r1", "B")

        await router.join("r1", "B")

        assert router.members_of("r1") == ["A", "B"]
        assert [m.peer_ids for m in conns["B"].sent_of_type("roster")] == [["A"], ["A"]]
        assert router.state_of("B") == ClientState.JOINED
        assert metrics.get_summary()["duplicate_joins"] == 1

    @pytest.mark.asyncio
    async def test_switching_rooms_notifies_old_room(self, router: SignalingRouter) -> None:
        """Joining a different room leaves the old one; its peers get peer-left."""
        conns = await connect_all(router, "A", "B", "C")
        await router.join("r1", "A")
        await router.join("r1", "B")
        await router.join("r2", "C")

        await router.join("r2", "A")

        assert router.members_of("r1") == ["B"]
        assert router.members_of("r2") == ["C", "A"]
        assert router.room_of("A") == "r2"
        assert [m.peer_id for m in conns["B"].sent_of_type("peer-left")] == ["A"]
        assert [m.peer_ids for m in conns["A"].sent_of_type("roster")] == [[], ["C"]]
        assert router.state_of("A") == ClientState.JOINED

    @pytest.mark.asyncio
    async def test_reconnect_under_same_id_keeps_membership(self, router: SignalingRouter) -> None:
        """A second registration of a joined client stays consistent with its room."""
        await connect_all(router, "A", "B")
        await router.join("r1", "A")
        await router.join("r1", "B")

        replacement = MockConnection("A")
        await router.connect(replacement)
        await router.join("r1", "A")

        assert router.state_of("A") == ClientState.JOINED
        assert router.room_of("A") == "r1"
        assert router.members_of("r1") == ["A", "B"]
        assert replacement.sent_of_type("roster")[0].peer_ids == ["B"]

        await router.disconnect("A")
        assert router.members_of("r1") == ["B"]
        router._rooms.check_invariants()

    @pytest.mark.asyncio
    async def test_join_from_unregistered_client_ignored(self, router: SignalingRouter) -> None:
        """Late events from a disconnected client do not recreate membership."""
        await router.join("r1", "ghost")

        assert router.room_count == 0
        assert router.room_of("ghost") is None

    @pytest.mark.asyncio
    async def test_join_empty_room_id_accepted(self, router: SignalingRouter) -> None:
        conns = await connect_all(router, "A")

        await router.join("", "A")

        assert router.members_of("") == ["A"]
        assert conns["A"].sent_of_type("roster")[0].peer_ids == []


class TestForwarding:
    """Offer / answer relay."""

    @pytest.mark.asyncio
    async def test_offer_to_unknown_target_dropped(
        self, router: SignalingRouter, metrics: MetricsCollector
    ) -> None:
        """No message and no state change when the target was never registered."""
        conns = await connect_all(router, "A")
        await router.join("r1", "A")
        sent_before = list(conns["A"].sent)

        await router.forward_offer("ghost", "A", {"sdp": "x"})

        assert conns["A"].sent == sent_before
        assert router.members_of("r1") == ["A"]
        assert router.connection_count == 1
        assert metrics.get_summary()["signals_dropped"] == 1

    @pytest.mark.asyncio
    async def test_answer_to_disconnected_caller_dropped(self, router: SignalingRouter) -> None:
        conns = await connect_all(router, "A", "B")
        await router.disconnect("B")

        await router.forward_answer("B", "A", "sdp-answer")

        assert conns["B"].sent_of_type("incoming-answer") == []
        assert conns["A"].sent == []

    @pytest.mark.asyncio
    async def test_offer_to_closed_connection_dropped(self, router: SignalingRouter) -> None:
        """A registered target whose socket already closed is not live."""
        conns = await connect_all(router, "A", "B")
        await conns["B"].close()

        await router.forward_offer("B", "A", "sdp")

        assert conns["B"].sent == []

    @pytest.mark.asyncio
    async def test_signal_payload_passed_through_unmodified(self, router: SignalingRouter) -> None:
        conns = await connect_all(router, "A", "B")
        payload = {"type": "offer", "sdp": "v=0\r\n", "candidates": [1, 2, {"x": None}]}

        await router.forward_offer("B", "A", payload)

        assert conns["B"].sent_of_type("incoming-offer")[0].signal == payload

    @pytest.mark.asyncio
    async def test_signal_from_unregistered_sender_ignored(self, router: SignalingRouter) -> None:
        conns = await connect_all(router, "A")

        await router.forward_offer("A", "ghost", "sdp")

        assert conns["A"].sent == []

    @pytest.mark.asyncio
    async def test_forwarding_does_not_require_shared_room(self, router: SignalingRouter) -> None:
        """Only target liveness is checked, not the sender's room state."""
        conns = await connect_all(router, "A", "B")

        await router.forward_offer("B", "A", "sdp")

        assert len(conns["B"].sent_of_type("incoming-offer")) == 1
        assert router.state_of("A") == ClientState.UNJOINED

    @pytest.mark.asyncio
    async def test_notify_undeliverable(self, metrics: MetricsCollector) -> None:
        """With notify_undeliverable the sender gets TARGET_NOT_FOUND."""
        router = SignalingRouter(metrics=metrics, notify_undeliverable=True)
        conns = await connect_all(router, "A")

        await router.forward_offer("ghost", "A", "sdp")

        errors = conns["A"].sent_of_type("error")
        assert len(errors) == 1
        assert errors[0].code == "TARGET_NOT_FOUND"


class TestDisconnect:
    """Leave transition."""

    @pytest.mark.asyncio
    async def test_disconnect_without_room(self, router: SignalingRouter) -> None:
        await connect_all(router, "A")

        await router.disconnect("A")

        assert router.connection_count == 0
        assert router.state_of("A") is None

    @pytest.mark.asyncio
    async def test_disconnect_twice_notifies_once(self, router: SignalingRouter) -> None:
        conns = await connect_all(router, "A", "B")
        await router.join("r1", "A")
        await router.join("r1", "B")

        await router.disconnect("A")
        await router.disconnect("A")

        assert len(conns["B"].sent_of_type("peer-left")) == 1

    @pytest.mark.asyncio
    async def test_disconnect_notifies_only_own_room(self, router: SignalingRouter) -> None:
        conns = await connect_all(router, "A", "B", "C")
        await router.join("r1", "A")
        await router.join("r1", "B")
        await router.join("r2", "C")

        await router.disconnect("A")

        assert len(conns["B"].sent_of_type("peer-left")) == 1
        assert conns["C"].sent_of_type("peer-left") == []

    @pytest.mark.asyncio
    async def test_send_failure_is_absorbed(
        self, router: SignalingRouter, metrics: MetricsCollector
    ) -> None:
        """A peer whose socket fails mid-send does not break leave handling."""
        conns = await connect_all(router, "A", "B")
        await router.join("r1", "A")
        await router.join("r1", "B")

        async def broken_send(message: object) -> None:
            raise ConnectionError("socket reset")

        conns["B"].send_message = broken_send  # type: ignore[method-assign]

        await router.disconnect("A")

        assert router.members_of("r1") == ["B"]
        assert metrics.get_summary()["send_failures"] == 1


class TestDispatch:
    """Single entry point for parsed client messages."""

    @pytest.mark.asyncio
    async def test_dispatch_routes_by_message_type(
        self, router: SignalingRouter, metrics: MetricsCollector
    ) -> None:
        conns = await connect_all(router, "A", "B")

        await router.dispatch("A", JoinRoomMessage(room_id="r1"))
        await router.dispatch("B", JoinRoomMessage(room_id="r1"))
        await router.dispatch("B", OfferMessage(target_id="A", signal="o"))
        await router.dispatch("A", AnswerMessage(target_id="B", signal="a"))

        assert conns["A"].sent_of_type("incoming-offer")[0].from_id == "B"
        assert conns["B"].sent_of_type("incoming-answer")[0].from_id == "A"
        assert metrics._histograms["event_dispatch_seconds"].count == 4

    @pytest.mark.asyncio
    async def test_sender_identity_comes_from_transport(self, router: SignalingRouter) -> None:
        """fromId is the dispatching client, never a value from the payload."""
        conns = await connect_all(router, "A", "B")

        await router.dispatch("B", OfferMessage.model_validate(
            {"type": "offer", "targetId": "A", "signal": "o", "callerId": "spoofed"}
        ))

        assert conns["A"].sent_of_type("incoming-offer")[0].from_id == "B"


class TestConcurrency:
    """Serialization of state changes under concurrent events."""

    @pytest.mark.asyncio
    async def test_concurrent_joins_get_distinct_rosters(self, router: SignalingRouter) -> None:
        """Simultaneous joins never compute the same stale roster."""
        client_ids = [f"c{i}" for i in range(20)]
        conns = await connect_all(router, *client_ids)

        await asyncio.gather(*(router.join("r1", cid) for cid in client_ids))

        members = router.members_of("r1")
        assert sorted(members) == sorted(client_ids)
        roster_sizes = sorted(len(conns[cid].sent_of_type("roster")[0].peer_ids) for cid in client_ids)
        assert roster_sizes == list(range(20))
        for cid in client_ids:
            roster = conns[cid].sent_of_type("roster")[0].peer_ids
            assert roster == members[: members.index(cid)]

    @pytest.mark.asyncio
    async def test_concurrent_join_and_leave_keep_invariants(self, router: SignalingRouter) -> None:
        client_ids = [f"c{i}" for i in range(10)]
        await connect_all(router, *client_ids)

        joins = [router.join(f"r{i % 3}", cid) for i, cid in enumerate(client_ids)]
        leaves = [router.disconnect(cid) for cid in client_ids[::2]]
        await asyncio.gather(*joins, *leaves)

        router._rooms.check_invariants()
        for cid in client_ids[::2]:
            assert router.room_of(cid) is None

    @pytest.mark.asyncio
    async def test_slow_peer_does_not_block_other_events(self, router: SignalingRouter) -> None:
        """A target that is slow to accept a send does not stall other clients."""
        slow = SlowConnection("S")
        await router.connect(slow)
        conns = await connect_all(router, "A", "B")

        offer = asyncio.create_task(router.forward_offer("S", "A", "sdp"))
        await asyncio.wait_for(slow.send_started.wait(), timeout=1.0)

        await asyncio.wait_for(router.join("r1", "B"), timeout=1.0)
        assert conns["B"].sent_of_type("roster")[0].peer_ids == []

        slow.release()
        await offer
        assert slow.sent_of_type("incoming-offer")[0].from_id == "A"

"""Tests for ConnectionRegistry admission, eviction and fan-out."""

import asyncio
import json
import random

import pytest

from pgrelay.forge.sdk.notification.models import BroadcastMessage
from pgrelay.forge.sdk.notification.peer import PeerConnection
from pgrelay.forge.sdk.notification.registry import ConnectionRegistry
from tests.unit_tests._fakes import FakeWebSocket, wait_until


def _peer(**kwargs) -> PeerConnection:
    return PeerConnection(websocket=FakeWebSocket(**kwargs))


MESSAGE = BroadcastMessage(type="NEW_COMMENT", data={"id": 1, "text": "hi"})
WIRE = '{"type":"NEW_COMMENT","data":{"id":1,"text":"hi"}}'


# ---------------------------------------------------------------------------
# Tests: admit / remove
# ---------------------------------------------------------------------------


def test_admit_is_idempotent():
    registry = ConnectionRegistry()
    peer = _peer()

    registry.admit(peer)
    registry.admit(peer)

    assert len(registry) == 1
    assert peer in registry


def test_remove_absent_peer_is_a_noop():
    registry = ConnectionRegistry()
    peer = _peer()

    registry.remove(peer)
    registry.admit(peer)
    registry.remove(peer)
    registry.remove(peer)  # should not raise

    assert len(registry) == 0


def test_peers_are_distinct_by_identity():
    registry = ConnectionRegistry()
    websocket = FakeWebSocket()

    registry.admit(PeerConnection(websocket=websocket))
    registry.admit(PeerConnection(websocket=websocket))

    assert len(registry) == 2


@pytest.mark.asyncio
async def test_random_admit_remove_broadcast_sequence_matches_model():
    """Registry contents always equal admitted minus removed, whatever the interleaving."""
    rng = random.Random(1234)
    registry = ConnectionRegistry()
    pool = [_peer(port=50000 + i) for i in range(12)]
    expected: set[PeerConnection] = set()

    for _ in range(300):
        peer = rng.choice(pool)
        op = rng.random()
        if op < 0.45:
            registry.admit(peer)
            expected.add(peer)
        elif op < 0.85:
            registry.remove(peer)
            expected.discard(peer)
        else:
            delivered = await registry.broadcast(MESSAGE)
            assert delivered == len(expected)

        assert registry.peers == frozenset(expected)


# ---------------------------------------------------------------------------
# Tests: broadcast
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_broadcast_delivers_identical_frame_to_every_live_peer():
    registry = ConnectionRegistry()
    peers = [_peer(port=50000 + i) for i in range(5)]
    for peer in peers:
        registry.admit(peer)

    delivered = await registry.broadcast(MESSAGE)

    assert delivered == 5
    for peer in peers:
        assert peer.websocket.sent == [WIRE]
    assert json.loads(WIRE) == {"type": "NEW_COMMENT", "data": {"id": 1, "text": "hi"}}


@pytest.mark.asyncio
async def test_broadcast_with_no_peers_returns_zero():
    registry = ConnectionRegistry()
    assert await registry.broadcast(MESSAGE) == 0


@pytest.mark.asyncio
async def test_failed_send_evicts_peer_and_skips_later_broadcasts():
    registry = ConnectionRegistry()
    healthy = _peer()
    broken = _peer(send_error=ConnectionResetError("peer reset"))
    registry.admit(healthy)
    registry.admit(broken)

    delivered = await registry.broadcast(MESSAGE)

    assert delivered == 1
    assert broken not in registry
    assert healthy in registry

    broken.websocket.send_error = None
    await registry.broadcast(MESSAGE)
    assert broken.websocket.sent == []
    assert healthy.websocket.sent == [WIRE, WIRE]


@pytest.mark.asyncio
async def test_peer_that_is_no_longer_open_is_evicted_without_sending():
    registry = ConnectionRegistry()
    closing = _peer()
    closing.websocket.mark_closed()
    registry.admit(closing)

    delivered = await registry.broadcast(MESSAGE)

    assert delivered == 0
    assert closing not in registry
    assert closing.websocket.sent == []


@pytest.mark.asyncio
async def test_stalled_peer_is_evicted_without_holding_up_others():
    registry = ConnectionRegistry(send_timeout=0.05)
    stalled = _peer(stall=True)
    healthy = _peer()
    registry.admit(stalled)
    registry.admit(healthy)

    delivered = await registry.broadcast(MESSAGE)

    assert delivered == 1
    assert stalled not in registry
    assert healthy.websocket.sent == [WIRE]


@pytest.mark.asyncio
async def test_peer_removed_mid_broadcast_is_not_readmitted():
    """A close event arriving while a broadcast is in flight must stick."""
    registry = ConnectionRegistry()
    first = _peer(port=50001)
    second = _peer(port=50002)
    registry.admit(first)
    registry.admit(second)

    # each peer's send removes the other, as a concurrent close handler would
    first.websocket.on_send = lambda: registry.remove(second)
    second.websocket.on_send = lambda: registry.remove(first)

    await registry.broadcast(MESSAGE)

    assert second not in registry
    assert registry.peers <= {first}


@pytest.mark.asyncio
async def test_peer_admitted_mid_broadcast_is_kept():
    registry = ConnectionRegistry()
    existing = _peer(port=50001)
    late = _peer(port=50002)
    registry.admit(existing)
    existing.websocket.on_send = lambda: registry.admit(late)

    delivered = await registry.broadcast(MESSAGE)

    assert delivered == 1
    assert late in registry
    assert late.websocket.sent == []


@pytest.mark.asyncio
async def test_close_all_closes_and_empties():
    registry = ConnectionRegistry()
    peers = [_peer(port=50000 + i) for i in range(3)]
    for peer in peers:
        registry.admit(peer)

    await registry.close_all()

    assert len(registry) == 0
    assert all(peer.websocket.closed_with == 1001 for peer in peers)


@pytest.mark.asyncio
async def test_evicted_peer_is_closed_with_internal_error():
    registry = ConnectionRegistry(send_timeout=0.05)
    stalled = _peer(stall=True)
    broken = _peer(send_error=ConnectionResetError("peer reset"))
    registry.admit(stalled)
    registry.admit(broken)

    assert await registry.broadcast(MESSAGE) == 0

    await wait_until(lambda: stalled.websocket.closed_with == 1011 and broken.websocket.closed_with == 1011)
    assert stalled.closed.is_set()
    assert not stalled.is_open


@pytest.mark.asyncio
async def test_evict_ignores_peers_that_are_not_registered():
    registry = ConnectionRegistry()
    peer = _peer()

    registry.evict(peer)
    await asyncio.sleep(0)

    assert peer.websocket.closed_with is None


@pytest.mark.asyncio
async def test_close_all_is_bounded_by_unresponsive_peer():
    registry = ConnectionRegistry(send_timeout=0.05)
    stuck = _peer(port=50001)
    healthy = _peer(port=50002)

    async def hang(code: int = 1000, reason: str | None = None) -> None:
        await asyncio.Event().wait()

    stuck.websocket.close = hang
    registry.admit(stuck)
    registry.admit(healthy)

    await asyncio.wait_for(registry.close_all(), timeout=1)

    assert len(registry) == 0
    assert healthy.websocket.closed_with == 1001
    assert stuck.closed.is_set()

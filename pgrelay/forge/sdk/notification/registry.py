"""In-process registry of live downstream peers.

Every mutation happens on the event loop, so no locking is needed. Broadcasts
iterate a snapshot, which lets peers be admitted or removed (by the gateway, or
by eviction) while a broadcast is awaiting sends.
"""

import asyncio

import structlog

from pgrelay.constants import WS_CLOSE_GOING_AWAY, WS_CLOSE_INTERNAL_ERROR
from pgrelay.exceptions import PeerNotOpen
from pgrelay.forge.sdk.notification.models import OutboundMessage
from pgrelay.forge.sdk.notification.peer import PeerConnection

LOG = structlog.get_logger()


class ConnectionRegistry:
    """The set of peers currently eligible for broadcasts."""

    def __init__(self, send_timeout: float = 5.0) -> None:
        self._peers: set[PeerConnection] = set()
        self._send_timeout = send_timeout
        self._closing: set[asyncio.Task[None]] = set()

    def __len__(self) -> int:
        return len(self._peers)

    def __contains__(self, peer: object) -> bool:
        return peer in self._peers

    @property
    def send_timeout(self) -> float:
        return self._send_timeout

    @property
    def peers(self) -> frozenset[PeerConnection]:
        return frozenset(self._peers)

    def admit(self, peer: PeerConnection) -> None:
        if peer in self._peers:
            return
        self._peers.add(peer)
        LOG.info("Peer admitted", client=peer.client, peer_count=len(self._peers))

    def remove(self, peer: PeerConnection) -> None:
        if peer not in self._peers:
            return
        self._peers.discard(peer)
        LOG.info("Peer removed", client=peer.client, peer_count=len(self._peers))

    def evict(self, peer: PeerConnection, reason: str = "send failed") -> None:
        """Drop a registered peer and close its socket without waiting for the close to finish."""
        if peer not in self._peers:
            return
        self.remove(peer)
        task = asyncio.create_task(self._close_peer(peer, WS_CLOSE_INTERNAL_ERROR, reason))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def broadcast(self, message: OutboundMessage) -> int:
        """Send *message* to every live peer; evict the ones that fail.

        Returns the number of peers the message was delivered to.
        """
        snapshot = list(self._peers)
        if not snapshot:
            return 0

        text = message.to_wire()
        results = await asyncio.gather(*(self._send(peer, text) for peer in snapshot))
        return sum(1 for delivered in results if delivered)

    async def close_all(self, code: int = WS_CLOSE_GOING_AWAY, reason: str | None = "server shutting down") -> None:
        snapshot = list(self._peers)
        self._peers.clear()
        await asyncio.gather(*(self._close_peer(peer, code, reason) for peer in snapshot))
        if snapshot:
            LOG.info("Closed all peers", count=len(snapshot))

    async def _send(self, peer: PeerConnection, text: str) -> bool:
        # removed while an earlier send in this broadcast was in flight
        if peer not in self._peers:
            return False

        try:
            if not peer.is_open:
                raise PeerNotOpen(peer.client)
            await asyncio.wait_for(peer.send_text(text), timeout=self._send_timeout)
        except Exception as e:
            LOG.info(
                "Evicting peer after failed send",
                client=peer.client,
                error=str(e) or type(e).__name__,
                error_type=type(e).__name__,
            )
            self.evict(peer)
            return False
        return True

    async def _close_peer(self, peer: PeerConnection, code: int, reason: str | None) -> None:
        try:
            await asyncio.wait_for(peer.close(code=code, reason=reason), timeout=self._send_timeout)
        except Exception:
            LOG.info("Peer did not close cleanly", client=peer.client, code=code, exc_info=True)

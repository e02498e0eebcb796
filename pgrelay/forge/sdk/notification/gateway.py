import asyncio

import structlog
from fastapi import WebSocket, WebSocketDisconnect
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

from pgrelay.forge.sdk.notification.models import ConnectionEstablishedMessage
from pgrelay.forge.sdk.notification.peer import PeerConnection
from pgrelay.forge.sdk.notification.registry import ConnectionRegistry

LOG = structlog.get_logger()

PEER_GONE_ERRORS = (WebSocketDisconnect, ConnectionClosedOK, ConnectionClosedError, RuntimeError)


class Gateway:
    """Admits accepted WebSocket connections as broadcast peers.

    The channel is outbound-only: anything the peer sends is read and ignored,
    just so that a close or error is noticed promptly.
    """

    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry

    async def admit(self, peer: PeerConnection) -> bool:
        """Register *peer* and acknowledge it.

        The acknowledgement is written under the peer's send lock, so any broadcast
        that picks the peer up in the meantime queues behind it.
        """
        async with peer.send_lock:
            self._registry.admit(peer)
            try:
                await asyncio.wait_for(
                    peer.websocket.send_text(ConnectionEstablishedMessage().to_wire()),
                    timeout=self._registry.send_timeout,
                )
            except Exception as e:
                LOG.info("Peer dropped before acknowledgement", client=peer.client, error=str(e) or type(e).__name__)
                self._registry.evict(peer, reason="acknowledgement failed")
                return False
        # a broadcast may have given up on the peer while the acknowledgement was in flight
        if peer not in self._registry:
            LOG.info("Peer evicted during acknowledgement", client=peer.client)
            return False
        return True

    async def serve(self, websocket: WebSocket) -> None:
        """Own the peer for the life of the connection; returns once it is gone."""
        peer = PeerConnection(websocket=websocket)
        LOG.info("New WebSocket connected", client=peer.client)
        try:
            if not await self.admit(peer):
                return
            while True:
                message = await peer.receive()
                if message is None:
                    LOG.info("WebSocket closed by relay", client=peer.client)
                    break
                if message["type"] == "websocket.disconnect":
                    LOG.info("WebSocket disconnected", client=peer.client, code=message.get("code"))
                    break
        except PEER_GONE_ERRORS:
            LOG.info("WebSocket closed", client=peer.client)
        except Exception:
            LOG.warning("WebSocket error", client=peer.client, exc_info=True)
        finally:
            self._registry.remove(peer)

import asyncio
import dataclasses
from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import WebSocket
from starlette.websockets import WebSocketState

LOG = structlog.get_logger()


@dataclasses.dataclass(eq=False)
class PeerConnection:
    """
    One downstream subscriber. Compared and hashed by identity.
    """

    websocket: WebSocket

    connected_at: datetime = dataclasses.field(default_factory=lambda: datetime.now(timezone.utc))

    send_lock: asyncio.Lock = dataclasses.field(default_factory=asyncio.Lock, repr=False)
    """
    Serializes frames to this peer. Held by the gateway across admission so the
    handshake is always the first frame.
    """

    closed: asyncio.Event = dataclasses.field(default_factory=asyncio.Event, repr=False)
    """
    Set once the relay has closed this peer, whether or not the close frame got out.
    """

    @property
    def client(self) -> str | None:
        address = getattr(self.websocket, "client", None)
        if not address:
            return None
        return f"{address.host}:{address.port}"

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_text(self, text: str) -> None:
        async with self.send_lock:
            await self.websocket.send_text(text)

    async def receive(self) -> dict[str, Any] | None:
        """Next inbound ASGI message, or None once the relay has closed the peer."""
        if self.closed.is_set():
            return None
        receiving = asyncio.ensure_future(self.websocket.receive())
        closing = asyncio.ensure_future(self.closed.wait())
        try:
            await asyncio.wait({receiving, closing}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closing.cancel()
            if not receiving.done():
                receiving.cancel()
        if receiving.done() and not receiving.cancelled():
            return receiving.result()
        return None

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed.set()
        if self.websocket.application_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self.websocket.close(code=code, reason=reason)
        except Exception:
            LOG.debug("Peer already gone while closing", client=self.client, exc_info=True)

"""WebSocket endpoint that turns each accepted connection into a broadcast peer."""

from fastapi import WebSocket

from pgrelay.config import settings
from pgrelay.forge import app
from pgrelay.forge.sdk.routes.routers import base_router


@base_router.websocket(settings.WEBSOCKET_PATH)
async def peer_stream(websocket: WebSocket) -> None:
    await websocket.accept()
    await app.GATEWAY.serve(websocket)

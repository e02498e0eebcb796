from fastapi import Response

from pgrelay._version import __version__
from pgrelay.forge import app
from pgrelay.forge.sdk.routes.routers import base_router
from pgrelay.forge.sdk.schemas.status import RelayStatus


@base_router.get("/heartbeat", tags=["server"])
@base_router.get("/heartbeat/", include_in_schema=False)
async def heartbeat() -> Response:
    """
    Check if the server is running.
    """
    return Response(content="Server is running.", status_code=200, headers={"X-PgRelay-Version": __version__})


@base_router.get("/status", tags=["server"])
async def status() -> RelayStatus:
    """
    Report the upstream link state and how many peers are connected.
    """
    listener = app.LISTENER
    return RelayStatus(
        link_state=listener.state,
        channels=list(listener.channels),
        connected_since=listener.connected_since,
        reconnect_pending=listener.reconnect_pending,
        reconnect_count=listener.reconnect_count,
        peer_count=len(app.REGISTRY),
    )

from __future__ import annotations

from typing import Awaitable, Callable

import structlog

from pgrelay.config import Settings, settings
from pgrelay.forge.sdk.notification.dispatcher import Dispatcher
from pgrelay.forge.sdk.notification.gateway import Gateway
from pgrelay.forge.sdk.notification.listener import ConnectFunc, NotificationListener
from pgrelay.forge.sdk.notification.registry import ConnectionRegistry

LOG = structlog.get_logger()


class ForgeApp:
    """Container for the relay's shared services"""

    SETTINGS_MANAGER: Settings
    REGISTRY: ConnectionRegistry
    DISPATCHER: Dispatcher
    LISTENER: NotificationListener
    GATEWAY: Gateway
    api_app_startup_event: Callable[[], Awaitable[None]] | None
    api_app_shutdown_event: Callable[[], Awaitable[None]] | None


def create_forge_app(app_settings: Settings | None = None, connect: ConnectFunc | None = None) -> ForgeApp:
    app_settings = app_settings or settings
    app = ForgeApp()

    app.SETTINGS_MANAGER = app_settings
    app.REGISTRY = ConnectionRegistry(send_timeout=app_settings.PEER_SEND_TIMEOUT_SECONDS)
    app.DISPATCHER = Dispatcher(app.REGISTRY)
    listener_kwargs = {} if connect is None else {"connect": connect}
    app.LISTENER = NotificationListener(
        app_settings.DATABASE_STRING,
        app_settings.NOTIFY_CHANNELS,
        keepalive_interval=app_settings.KEEPALIVE_INTERVAL_SECONDS,
        keepalive_timeout=app_settings.KEEPALIVE_TIMEOUT_SECONDS,
        reconnect_delay=app_settings.RECONNECT_DELAY_SECONDS,
        connect_timeout=app_settings.CONNECT_TIMEOUT_SECONDS,
        shutdown_timeout=app_settings.SHUTDOWN_TIMEOUT_SECONDS,
        **listener_kwargs,
    )
    app.LISTENER.on_notification(app.DISPATCHER.dispatch)
    app.GATEWAY = Gateway(app.REGISTRY)

    unmapped = [c for c in app_settings.NOTIFY_CHANNELS if c not in app.DISPATCHER.event_types]
    if unmapped:
        LOG.warning("Subscribed channels have no event type and will be dropped", channels=unmapped)

    async def startup() -> None:
        await app.LISTENER.start()

    async def shutdown() -> None:
        # upstream first, so nothing new is broadcast while peers are being closed
        try:
            await app.LISTENER.stop()
        finally:
            await app.REGISTRY.close_all()

    app.api_app_startup_event = startup
    app.api_app_shutdown_event = shutdown

    return app

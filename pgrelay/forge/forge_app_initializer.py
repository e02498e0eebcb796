import structlog

from pgrelay.config import Settings
from pgrelay.forge import set_force_app_instance
from pgrelay.forge.forge_app import ForgeApp, create_forge_app
from pgrelay.forge.sdk.notification.listener import ConnectFunc

LOG = structlog.get_logger()


def start_forge_app(app_settings: Settings | None = None, connect: ConnectFunc | None = None) -> ForgeApp:
    force_app_instance = create_forge_app(app_settings, connect=connect)
    set_force_app_instance(force_app_instance)
    LOG.info(
        "Relay app created",
        channels=force_app_instance.LISTENER.channels,
        event_types=force_app_instance.DISPATCHER.event_types,
    )
    return force_app_instance

import structlog

from pgrelay.constants import CHANNEL_EVENT_TYPES
from pgrelay.exceptions import UnknownChannel
from pgrelay.forge.sdk.notification.models import BroadcastMessage, NotificationEvent
from pgrelay.forge.sdk.notification.registry import ConnectionRegistry

LOG = structlog.get_logger()


class Dispatcher:
    """Maps decoded notifications to outbound event types and fans them out."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        event_types: dict[str, str] | None = None,
    ) -> None:
        self._registry = registry
        self._event_types = dict(CHANNEL_EVENT_TYPES if event_types is None else event_types)

    @property
    def event_types(self) -> dict[str, str]:
        return dict(self._event_types)

    async def dispatch(self, event: NotificationEvent) -> int | None:
        """Broadcast *event* to every registered peer.

        Returns the number of peers reached, or None when the channel has no event type.
        """
        try:
            message = BroadcastMessage.from_event(event, self._event_types)
        except UnknownChannel:
            LOG.warning("Dropping notification from unrecognized channel", channel=event.channel)
            return None

        delivered = await self._registry.broadcast(message)
        LOG.info(
            "Broadcasted notification",
            channel=event.channel,
            event_type=message.type,
            delivered=delivered,
            peer_count=len(self._registry),
        )
        return delivered

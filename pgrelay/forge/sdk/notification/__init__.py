from pgrelay.forge.sdk.notification.dispatcher import Dispatcher
from pgrelay.forge.sdk.notification.gateway import Gateway
from pgrelay.forge.sdk.notification.listener import NotificationListener
from pgrelay.forge.sdk.notification.models import (
    BroadcastMessage,
    ConnectionEstablishedMessage,
    NotificationEvent,
)
from pgrelay.forge.sdk.notification.peer import PeerConnection
from pgrelay.forge.sdk.notification.registry import ConnectionRegistry

__all__ = [
    "BroadcastMessage",
    "ConnectionEstablishedMessage",
    "ConnectionRegistry",
    "Dispatcher",
    "Gateway",
    "NotificationEvent",
    "NotificationListener",
    "PeerConnection",
]

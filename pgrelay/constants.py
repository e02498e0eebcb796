from enum import StrEnum
from pathlib import Path

PGRELAY_DIR = Path(__file__).parent
REPO_ROOT_DIR = PGRELAY_DIR.parent

# channel name -> outbound event type
CHANNEL_EVENT_TYPES: dict[str, str] = {
    "comments_channel": "NEW_COMMENT",
    "messages_channel": "NEW_MESSAGE",
}

CONNECTION_ESTABLISHED_TYPE = "CONNECTION_ESTABLISHED"
CONNECTION_ESTABLISHED_MESSAGE = "Connected!"

KEEPALIVE_QUERY = "SELECT 1"

# RFC 6455 "going away", used when the server shuts down
WS_CLOSE_GOING_AWAY = 1001
# RFC 6455 "internal error", used when a peer is evicted after a failed send
WS_CLOSE_INTERNAL_ERROR = 1011


class LinkState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    DEGRADED = "degraded"

class PgRelayException(Exception):
    def __init__(self, message: str | None = None):
        self.message = message
        super().__init__(message)


class NotificationDecodeError(PgRelayException):
    def __init__(self, channel: str, reason: str | None = None):
        self.channel = channel
        super().__init__(f"Failed to decode notification payload on channel {channel}: {reason}")


class UnknownChannel(PgRelayException):
    def __init__(self, channel: str):
        self.channel = channel
        super().__init__(f"No event type registered for channel {channel}")


class PeerSendError(PgRelayException):
    def __init__(self, peer: str | None = None, reason: str | None = None):
        super().__init__(f"Failed to send to peer {peer}: {reason}")


class PeerNotOpen(PeerSendError):
    def __init__(self, peer: str | None = None):
        super().__init__(peer, reason="connection is not open")


class UpstreamConnectionError(PgRelayException):
    def __init__(self, reason: str | None = None):
        super().__init__(f"Upstream notification link failed: {reason}")


class KeepaliveFailed(UpstreamConnectionError):
    def __init__(self, reason: str | None = None):
        super().__init__(f"keepalive probe failed ({reason})")


class ListenerStopped(PgRelayException):
    def __init__(self) -> None:
        super().__init__("Notification listener has been stopped")

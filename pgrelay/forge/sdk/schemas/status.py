from datetime import datetime

from pydantic import BaseModel

from pgrelay.constants import LinkState


class RelayStatus(BaseModel):
    link_state: LinkState
    channels: list[str]
    connected_since: datetime | None = None
    reconnect_pending: bool
    reconnect_count: int
    peer_count: int

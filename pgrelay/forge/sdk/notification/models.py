"""Typed shapes for what flows through the relay: upstream events and outbound envelopes."""

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from pgrelay.constants import CONNECTION_ESTABLISHED_MESSAGE, CONNECTION_ESTABLISHED_TYPE
from pgrelay.exceptions import NotificationDecodeError, UnknownChannel


class NotificationEvent(BaseModel):
    """A decoded NOTIFY: the channel it arrived on and its JSON payload."""

    model_config = ConfigDict(frozen=True)

    channel: str
    payload: Any

    @classmethod
    def decode(cls, channel: str, raw_payload: str | bytes | None) -> "NotificationEvent":
        """Parse the raw NOTIFY payload.

        Raises:
            NotificationDecodeError: the payload is missing or is not valid JSON.
        """
        if raw_payload is None or raw_payload == "":
            raise NotificationDecodeError(channel, "empty payload")
        try:
            payload = json.loads(raw_payload)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
            raise NotificationDecodeError(channel, str(e)) from e
        return cls(channel=channel, payload=payload)


class OutboundMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str

    def to_wire(self) -> str:
        return self.model_dump_json()


class ConnectionEstablishedMessage(OutboundMessage):
    type: Literal["CONNECTION_ESTABLISHED"] = CONNECTION_ESTABLISHED_TYPE
    message: str = CONNECTION_ESTABLISHED_MESSAGE


class BroadcastMessage(OutboundMessage):
    data: Any

    @classmethod
    def from_event(cls, event: NotificationEvent, event_types: dict[str, str]) -> "BroadcastMessage":
        event_type = event_types.get(event.channel)
        if event_type is None:
            raise UnknownChannel(event.channel)
        return cls(type=event_type, data=event.payload)

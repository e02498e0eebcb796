"""Tests for notification decoding, outbound envelopes and the Dispatcher."""

import pytest

from pgrelay.exceptions import NotificationDecodeError, UnknownChannel
from pgrelay.forge.sdk.notification.dispatcher import Dispatcher
from pgrelay.forge.sdk.notification.models import (
    BroadcastMessage,
    ConnectionEstablishedMessage,
    NotificationEvent,
)
from pgrelay.forge.sdk.notification.peer import PeerConnection
from pgrelay.forge.sdk.notification.registry import ConnectionRegistry
from tests.unit_tests._fakes import FakeWebSocket

# === Decoding ===


def test_decode_parses_json_payload():
    event = NotificationEvent.decode("comments_channel", '{"id":1,"text":"hi"}')
    assert event.channel == "comments_channel"
    assert event.payload == {"id": 1, "text": "hi"}


@pytest.mark.parametrize("raw", ["not json", "{", "", None])
def test_decode_rejects_malformed_payload(raw):
    with pytest.raises(NotificationDecodeError) as exc_info:
        NotificationEvent.decode("comments_channel", raw)
    assert exc_info.value.channel == "comments_channel"


# === Envelopes ===


def test_connection_established_wire_format():
    assert ConnectionEstablishedMessage().to_wire() == '{"type":"CONNECTION_ESTABLISHED","message":"Connected!"}'


def test_broadcast_message_carries_payload_verbatim():
    event = NotificationEvent(channel="comments_channel", payload={"id": 1, "text": "hi", "tags": [None, 2.5]})
    message = BroadcastMessage.from_event(event, {"comments_channel": "NEW_COMMENT"})
    assert message.to_wire() == '{"type":"NEW_COMMENT","data":{"id":1,"text":"hi","tags":[null,2.5]}}'


def test_broadcast_message_unknown_channel():
    event = NotificationEvent(channel="unknown_channel", payload={})
    with pytest.raises(UnknownChannel):
        BroadcastMessage.from_event(event, {"comments_channel": "NEW_COMMENT"})


# === Dispatcher ===


def _registry_with_peers(count: int) -> tuple[ConnectionRegistry, list[FakeWebSocket]]:
    registry = ConnectionRegistry()
    sockets = [FakeWebSocket(port=50000 + i) for i in range(count)]
    for websocket in sockets:
        registry.admit(PeerConnection(websocket=websocket))
    return registry, sockets


@pytest.mark.asyncio
async def test_comment_notification_reaches_every_peer():
    registry, sockets = _registry_with_peers(3)
    dispatcher = Dispatcher(registry)

    delivered = await dispatcher.dispatch(NotificationEvent.decode("comments_channel", '{"id":1,"text":"hi"}'))

    assert delivered == 3
    for websocket in sockets:
        assert websocket.sent == ['{"type":"NEW_COMMENT","data":{"id":1,"text":"hi"}}']


@pytest.mark.asyncio
async def test_message_channel_maps_to_new_message():
    registry, sockets = _registry_with_peers(1)
    dispatcher = Dispatcher(registry)

    await dispatcher.dispatch(NotificationEvent(channel="messages_channel", payload={"body": "yo"}))

    assert sockets[0].sent == ['{"type":"NEW_MESSAGE","data":{"body":"yo"}}']


@pytest.mark.asyncio
async def test_unknown_channel_is_dropped():
    registry, sockets = _registry_with_peers(2)
    dispatcher = Dispatcher(registry)

    delivered = await dispatcher.dispatch(NotificationEvent(channel="unknown_channel", payload={"id": 1}))

    assert delivered is None
    assert all(websocket.sent == [] for websocket in sockets)


@pytest.mark.asyncio
async def test_peer_failure_does_not_reach_the_caller():
    registry, sockets = _registry_with_peers(2)
    sockets[0].send_error = RuntimeError("Unexpected ASGI message 'websocket.send'")
    dispatcher = Dispatcher(registry)

    delivered = await dispatcher.dispatch(NotificationEvent(channel="comments_channel", payload={"id": 1}))

    assert delivered == 1
    assert len(registry) == 1


def test_custom_event_table():
    dispatcher = Dispatcher(ConnectionRegistry(), event_types={"orders": "NEW_ORDER"})
    assert dispatcher.event_types == {"orders": "NEW_ORDER"}

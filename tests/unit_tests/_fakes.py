"""In-memory stand-ins for an asyncpg connection and a Starlette WebSocket.

No PostgreSQL server or network socket is needed by the unit tests.
"""

from __future__ import annotations

import asyncio
from collections import namedtuple
from typing import Any, Callable
from unittest.mock import AsyncMock

from starlette.websockets import WebSocketState

Address = namedtuple("Address", ["host", "port"])


class FakeConnection:
    """Mimics the subset of asyncpg.Connection used by the notification listener."""

    def __init__(self, *, fail_listen: bool = False, probe_error: BaseException | None = None) -> None:
        self.listeners: dict[str, list[Callable[..., None]]] = {}
        self.termination_listeners: list[Callable[..., None]] = []
        self.fail_listen = fail_listen
        self.probe_error = probe_error
        self.probes = 0
        self.closed = False
        self.terminated = False

    async def add_listener(self, channel: str, callback: Callable[..., None]) -> None:
        if self.fail_listen:
            raise ConnectionResetError("LISTEN failed")
        self.listeners.setdefault(channel, []).append(callback)

    def add_termination_listener(self, callback: Callable[..., None]) -> None:
        self.termination_listeners.append(callback)

    def remove_termination_listener(self, callback: Callable[..., None]) -> None:
        if callback in self.termination_listeners:
            self.termination_listeners.remove(callback)

    def is_closed(self) -> bool:
        return self.closed

    def terminate(self) -> None:
        self.closed = True
        self.terminated = True

    async def close(self, timeout: float | None = None) -> None:
        self.closed = True

    async def fetchval(self, query: str, *args: Any, timeout: float | None = None) -> Any:
        self.probes += 1
        if self.probe_error is not None:
            raise self.probe_error
        return 1

    # -- test controls

    def notify(self, channel: str, payload: str, pid: int = 4242) -> None:
        for callback in list(self.listeners.get(channel, [])):
            callback(self, pid, channel, payload)

    def drop(self) -> None:
        """Simulate the server (or an idle-timeout proxy) closing the link."""
        self.closed = True
        for callback in list(self.termination_listeners):
            callback(self)


def make_connect(*results: FakeConnection | BaseException) -> AsyncMock:
    """Return an asyncpg.connect replacement yielding *results* in order."""
    return AsyncMock(side_effect=list(results))


class FakeWebSocket:
    """Records frames sent to a peer. Can be told to fail, stall or look closed."""

    def __init__(
        self,
        *,
        port: int = 50000,
        send_error: BaseException | None = None,
        stall: bool = False,
    ) -> None:
        self.client = Address("127.0.0.1", port)
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[str] = []
        self.send_error = send_error
        self.stall = stall
        self.gate: asyncio.Event | None = None
        self.closed_with: int | None = None
        self.on_send: Callable[[], None] | None = None

    async def send_text(self, text: str) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.stall:
            await asyncio.Event().wait()
        if self.on_send is not None:
            self.on_send()
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(text)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed_with = code
        self.client_state = WebSocketState.DISCONNECTED
        self.application_state = WebSocketState.DISCONNECTED

    def mark_closed(self) -> None:
        self.client_state = WebSocketState.DISCONNECTED


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll *predicate* on the event loop until it holds or *timeout* elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)

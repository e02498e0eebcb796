"""Durable PostgreSQL LISTEN subscription.

One asyncpg connection subscribes to a fixed set of channels. Any sign that the
link is gone (termination callback, failed keepalive probe, failed connect or
LISTEN) funnels into the same path: tear the link down and schedule exactly one
reconnect after a fixed delay.

State machine::

    DISCONNECTED -> CONNECTING -> SUBSCRIBED -> DEGRADED -> DISCONNECTED
                         |                                      ^
                         +-------------- (failure) -------------+

asyncpg invokes notification callbacks synchronously; they only enqueue. A single
consumer task decodes and hands events to the registered handlers, one at a time
and in arrival order.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import asyncpg
import structlog

from pgrelay.constants import KEEPALIVE_QUERY, LinkState
from pgrelay.exceptions import (
    KeepaliveFailed,
    ListenerStopped,
    NotificationDecodeError,
    UpstreamConnectionError,
)
from pgrelay.forge.sdk.notification.models import NotificationEvent

LOG = structlog.get_logger()

NotificationHandler = Callable[[NotificationEvent], Awaitable[Any]]
ConnectFunc = Callable[..., Awaitable[asyncpg.Connection]]


class NotificationListener:
    """Owns the upstream link. Nothing else holds a reference to the asyncpg connection."""

    def __init__(
        self,
        dsn: str,
        channels: list[str],
        *,
        keepalive_interval: float = 30,
        keepalive_timeout: float = 10,
        reconnect_delay: float = 3,
        connect_timeout: float = 10,
        shutdown_timeout: float = 5,
        connect: ConnectFunc = asyncpg.connect,
    ) -> None:
        self._dsn = dsn
        self._channels = tuple(dict.fromkeys(channels))
        self._keepalive_interval = keepalive_interval
        self._keepalive_timeout = keepalive_timeout
        self._reconnect_delay = reconnect_delay
        self._connect_timeout = connect_timeout
        self._shutdown_timeout = shutdown_timeout
        self._connect = connect

        self._state = LinkState.DISCONNECTED
        self._connection: asyncpg.Connection | None = None
        self._connected_since: datetime | None = None
        self._stopping = False
        self._handlers: list[NotificationHandler] = []
        self._queue: asyncio.Queue[tuple[str, str]] = asyncio.Queue()

        self._consumer_task: asyncio.Task[None] | None = None
        self._keepalive_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None

        self.reconnect_count = 0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> LinkState:
        return self._state

    @property
    def channels(self) -> tuple[str, ...]:
        return self._channels

    @property
    def stopped(self) -> bool:
        return self._stopping

    @property
    def connected_since(self) -> datetime | None:
        return self._connected_since

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def on_notification(self, handler: NotificationHandler) -> NotificationHandler:
        self._handlers.append(handler)
        return handler

    async def start(self) -> None:
        """Open the link and LISTEN on every channel.

        Upstream failures are not raised; they leave the listener DISCONNECTED
        with a reconnect scheduled.
        """
        if self._stopping:
            raise ListenerStopped()

        if self._consumer_task is None:
            self._consumer_task = asyncio.create_task(self._consume())

        if self._state != LinkState.DISCONNECTED or self.reconnect_pending:
            return
        await self._open_link()

    async def stop(self) -> None:
        """Cancel timers and close the link. Safe to call at any point, any number of times."""
        self._stopping = True

        tasks = [t for t in (self._keepalive_task, self._reconnect_task, self._consumer_task) if t is not None]
        self._keepalive_task = None
        self._reconnect_task = None
        self._consumer_task = None
        for task in tasks:
            if task is not asyncio.current_task():
                task.cancel()
        await asyncio.gather(*(t for t in tasks if t is not asyncio.current_task()), return_exceptions=True)

        connection = self._connection
        self._connection = None
        self._connected_since = None
        if connection is not None:
            await self._close_link(connection)

        self._set_state(LinkState.DISCONNECTED)
        LOG.info("Notification listener stopped", channels=self._channels)

    async def join(self) -> None:
        """Wait until every notification received so far has been handled."""
        await self._queue.join()

    # ------------------------------------------------------------------
    # Link lifecycle
    # ------------------------------------------------------------------

    async def _open_link(self) -> None:
        if self._stopping or self._state != LinkState.DISCONNECTED:
            return

        self._set_state(LinkState.CONNECTING)
        connection: asyncpg.Connection | None = None
        try:
            connection = await self._connect(self._dsn, timeout=self._connect_timeout)
            if self._stopping:
                # stop() ran while we were connecting
                await self._close_link(connection)
                self._set_state(LinkState.DISCONNECTED)
                return

            self._connection = connection
            for channel in self._channels:
                await connection.add_listener(channel, self._on_notification)
            connection.add_termination_listener(self._on_termination)
        except asyncio.CancelledError:
            self._connection = None
            if connection is not None:
                self._terminate(connection)
            self._set_state(LinkState.DISCONNECTED)
            raise
        except Exception as e:
            LOG.warning(
                "Failed to open notification link",
                channels=self._channels,
                error=str(e) or type(e).__name__,
                exc_info=True,
            )
            self._connection = None
            if connection is not None:
                self._terminate(connection)
            self._set_state(LinkState.DISCONNECTED)
            self._schedule_reconnect()
            return

        if self._stopping:
            self._connection = None
            await self._close_link(connection)
            self._set_state(LinkState.DISCONNECTED)
            return

        self._connected_since = datetime.now(timezone.utc)
        self._set_state(LinkState.SUBSCRIBED)
        self._arm_keepalive(connection)
        LOG.info("Listening for notifications", channels=self._channels)

    def _handle_link_failure(self, connection: asyncpg.Connection, error: UpstreamConnectionError) -> None:
        # reports about a link we already replaced or tore down are stale
        if self._stopping or connection is not self._connection or self._state != LinkState.SUBSCRIBED:
            return

        LOG.warning("Notification link lost; scheduling reconnect", reason=error.message, channels=self._channels)
        self._set_state(LinkState.DEGRADED)
        self._cancel_keepalive()
        self._connection = None
        self._connected_since = None
        self._terminate(connection)
        self._set_state(LinkState.DISCONNECTED)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._stopping:
            return
        if self.reconnect_pending:
            LOG.debug("Reconnect already pending")
            return
        LOG.info("Reconnecting notification link", delay=self._reconnect_delay)
        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay())

    async def _reconnect_after_delay(self) -> None:
        await asyncio.sleep(self._reconnect_delay)
        # from here on the attempt is in flight; a failure may schedule the next one
        self._reconnect_task = None
        self.reconnect_count += 1
        await self._open_link()

    async def _close_link(self, connection: asyncpg.Connection) -> None:
        try:
            connection.remove_termination_listener(self._on_termination)
        except Exception:
            LOG.debug("No termination listener to remove", exc_info=True)
        try:
            await asyncio.wait_for(connection.close(), timeout=self._shutdown_timeout)
        except Exception:
            LOG.warning("Error closing notification link", exc_info=True)
            self._terminate(connection)

    def _terminate(self, connection: asyncpg.Connection) -> None:
        try:
            connection.remove_termination_listener(self._on_termination)
        except Exception:
            LOG.debug("No termination listener to remove", exc_info=True)
        try:
            if not connection.is_closed():
                connection.terminate()
        except Exception:
            LOG.warning("Error terminating notification link", exc_info=True)

    # ------------------------------------------------------------------
    # Keepalive
    # ------------------------------------------------------------------

    def _arm_keepalive(self, connection: asyncpg.Connection) -> None:
        self._cancel_keepalive()
        self._keepalive_task = asyncio.create_task(self._keepalive(connection))

    def _cancel_keepalive(self) -> None:
        task = self._keepalive_task
        self._keepalive_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _keepalive(self, connection: asyncpg.Connection) -> None:
        while True:
            await asyncio.sleep(self._keepalive_interval)
            if connection is not self._connection or self._state != LinkState.SUBSCRIBED:
                return
            try:
                await asyncio.wait_for(connection.fetchval(KEEPALIVE_QUERY), timeout=self._keepalive_timeout)
            except Exception as e:
                self._handle_link_failure(connection, KeepaliveFailed(str(e) or type(e).__name__))
                return

    # ------------------------------------------------------------------
    # asyncpg callbacks
    # ------------------------------------------------------------------

    def _on_notification(self, connection: asyncpg.Connection, pid: int, channel: str, payload: str) -> None:
        if connection is not self._connection:
            return
        self._queue.put_nowait((channel, payload))

    def _on_termination(self, connection: asyncpg.Connection) -> None:
        self._handle_link_failure(connection, UpstreamConnectionError("connection terminated"))

    # ------------------------------------------------------------------
    # Ordered consumer
    # ------------------------------------------------------------------

    async def _consume(self) -> None:
        while True:
            channel, payload = await self._queue.get()
            try:
                await self._process(channel, payload)
            finally:
                self._queue.task_done()

    async def _process(self, channel: str, payload: str) -> None:
        LOG.debug("Notification received", channel=channel)
        try:
            event = NotificationEvent.decode(channel, payload)
        except NotificationDecodeError as e:
            LOG.warning("Dropping undecodable notification", channel=channel, error=e.message)
            return

        for handler in self._handlers:
            try:
                await handler(event)
            except Exception:
                LOG.exception("Notification handler failed", channel=channel)

    def _set_state(self, state: LinkState) -> None:
        if state == self._state:
            return
        LOG.debug("Notification link state change", previous=self._state.value, state=state.value)
        self._state = state

"""
Broadcast Hub - fans the presence snapshot out to every open viewer.

Each viewer gets a bounded outbound queue drained by its own writer task,
so a slow or stuck socket never blocks the ingest path. Every message is a
full snapshot: when a queue is full the oldest pending message is dropped
and the viewer still converges on the newest state, in order.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable

from app.core.errors import ChannelClosed
from app.relay.registry import PresenceRegistry
from app.relay.schemas import envelope

logger = logging.getLogger(__name__)

Send = Callable[[str], Awaitable[None]]


class ViewerChannel:
    """Outbound side of one viewer connection."""

    def __init__(self, send: Send, max_pending: int = 16, name: str | None = None):
        self.name = name or f"viewer-{id(self):x}"
        self.dropped = 0
        self._send = send
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=max_pending)
        self._task: asyncio.Task | None = None
        self._closed = False
        self._on_close: Callable[["ViewerChannel"], None] | None = None

    @property
    def is_open(self) -> bool:
        return not self._closed

    def start(self, on_close: Callable[["ViewerChannel"], None] | None = None) -> None:
        """Start the writer task. Must be called from the event loop."""
        self._on_close = on_close
        self._task = asyncio.create_task(self._pump(), name=f"{self.name}-writer")

    def offer(self, message: str) -> bool:
        """Queue a message without waiting. Returns False if the channel is closed."""
        if self._closed:
            return False
        if self._queue.full():
            self._queue.get_nowait()
            self._queue.task_done()
            self.dropped += 1
            logger.warning(f"⚠️ {self.name} is slow, dropped a pending snapshot")
        self._queue.put_nowait(message)
        return True

    async def flush(self) -> None:
        """Wait until every queued message has been written (or the channel closed)."""
        if not self._closed:
            await self._queue.join()

    async def _deliver(self, message: str) -> None:
        try:
            await self._send(message)
        except Exception as e:
            raise ChannelClosed(f"{self.name}: {e}") from e

    async def _pump(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                await self._deliver(message)
            except ChannelClosed as e:
                logger.info(f"🔌 Viewer channel closed mid-write: {e}")
                self.close()
                return
            finally:
                self._queue.task_done()

    def close(self) -> None:
        """Stop writing. Pending messages are discarded."""
        if self._closed:
            return
        self._closed = True

        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()

        if self._on_close is not None:
            self._on_close(self)

    async def aclose(self) -> None:
        self.close()
        if self._task is not None and self._task is not asyncio.current_task():
            try:
                await self._task
            except asyncio.CancelledError:
                pass


class BroadcastHub:
    """Set of open viewer channels plus the snapshot they are sent."""

    def __init__(
        self,
        registry: PresenceRegistry,
        freshness_window: timedelta,
        max_pending: int = 16,
    ):
        self.registry = registry
        self.freshness_window = freshness_window
        self.max_pending = max_pending
        self._channels: set[ViewerChannel] = set()

    def __len__(self) -> int:
        return len(self._channels)

    def snapshot_message(self) -> str:
        devices = self.registry.snapshot(self.freshness_window)
        return envelope("devices", [d.to_out() for d in devices])

    def connect(self, send: Send, name: str | None = None) -> ViewerChannel:
        """
        Admit a viewer and queue the current snapshot for it.

        A late joiner gets exactly one message with the current state,
        never a replay of earlier broadcasts.
        """
        channel = ViewerChannel(send, max_pending=self.max_pending, name=name)
        channel.start(on_close=self._forget)
        self._channels.add(channel)
        channel.offer(self.snapshot_message())
        logger.info(f"👀 Viewer connected: {channel.name} ({len(self._channels)} open)")
        return channel

    def disconnect(self, channel: ViewerChannel) -> None:
        channel.close()
        self._forget(channel)

    def _forget(self, channel: ViewerChannel) -> None:
        if channel in self._channels:
            self._channels.discard(channel)
            logger.info(f"👋 Viewer disconnected: {channel.name} ({len(self._channels)} open)")

    def broadcast(self) -> int:
        """
        Push the full snapshot to every open channel.

        Serializes once and never waits on a socket. Returns the number of
        channels the message was queued for.
        """
        message = self.snapshot_message()
        delivered = 0

        # Channels may close while we iterate
        for channel in list(self._channels):
            if not channel.is_open:
                self._forget(channel)
                continue
            if channel.offer(message):
                delivered += 1

        logger.debug(f"📡 Broadcast snapshot to {delivered} viewer(s)")
        return delivered

    async def close(self) -> None:
        """Close every channel (shutdown)."""
        for channel in list(self._channels):
            await channel.aclose()
        self._channels.clear()

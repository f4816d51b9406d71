"""
Per-identity session state and its delivery queue.

A ``Session`` is mutated only by the reconciler and the registry, always
while holding ``Session.lock``. The delivery queue is the single channel
through which consumers see inbound traffic.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from .broker import Message, Subscription
from .errors import QueueClosed

if TYPE_CHECKING:
    from .listener import ListenerTask

_CLOSED = object()


class DeliveryQueue:
    """Bounded message queue that can be closed exactly once.

    After ``close()`` no new messages are accepted; consumers drain what is
    already buffered and then get ``QueueClosed`` (or the end of iteration).
    """

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue[Message | object] = asyncio.Queue(maxsize)
        self._closed = False
        # True while the close marker sits at the tail of the queue.
        self._marked = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize() - (1 if self._marked else 0)

    async def put(self, message: Message) -> None:
        """Enqueue a message, waiting while the queue is full."""
        if self._closed:
            raise QueueClosed("delivery queue is closed")
        await self._queue.put(message)

    async def get(self) -> Message:
        if self._closed and self.qsize() == 0:
            raise QueueClosed("delivery queue is closed")
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for the next waiting consumer.
            self._queue.put_nowait(_CLOSED)
            raise QueueClosed("delivery queue is closed")
        return item

    def close(self) -> bool:
        """Close the queue. Returns False if it was already closed.

        Waiting consumers are woken by a marker queued behind the buffered
        messages. A full queue has no waiting consumers, so the marker is
        skipped there and ``get`` ends once the buffer is drained.
        """
        if self._closed:
            return False
        self._closed = True
        if not self._queue.full():
            self._queue.put_nowait(_CLOSED)
            self._marked = True
        return True

    def __aiter__(self) -> DeliveryQueue:
        return self

    async def __anext__(self) -> Message:
        try:
            return await self.get()
        except QueueClosed:
            raise StopAsyncIteration from None


class Session:
    """In-process state of one connected identity."""

    def __init__(self, identity: str, queue_size: int = 0):
        self.identity = identity
        # Topic set of the installed subscription; empty when none is installed.
        self.topics: frozenset[str] = frozenset()
        self.subscription: Subscription | None = None
        self.listener: ListenerTask | None = None
        self.generation = 0
        self.lock = asyncio.Lock()
        self.queue = DeliveryQueue(queue_size)
        self._closed = False

    def __repr__(self) -> str:
        return (
            f"Session(identity={self.identity!r}, generation={self.generation}, "
            f"topics={sorted(self.topics)!r}, closed={self._closed})"
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def mark_closed(self) -> None:
        self._closed = True

    @property
    def listening(self) -> bool:
        return self.listener is not None and self.listener.running

    async def receive(self) -> Message:
        """Wait for the next inbound message."""
        return await self.queue.get()

    def messages(self) -> DeliveryQueue:
        """Async-iterate inbound messages until the session is disconnected."""
        return self.queue

"""
Background listener: drains one subscription into a session's delivery queue.

Each listener belongs to exactly one generation. It is stopped through its
own cancellation token and reports termination through a separate event, so
the reconciler can wait for it before a replacement starts.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any

import structlog

from .broker import Subscription
from .session import DeliveryQueue

log = structlog.get_logger()

_STREAM_END = object()


async def _discard(future: asyncio.Future[Any] | None) -> None:
    """Cancel a pending step and wait until it has unwound."""
    if future is None:
        return
    if not future.done():
        future.cancel()
    await asyncio.wait({future})
    if not future.cancelled():
        future.exception()


class ListenerTask:
    """
    Forwards messages from a subscription stream into a delivery queue.

    The loop waits on two things at once: the next message and the
    cancellation token. Once the token is set nothing more is forwarded,
    including a message that arrived at the same moment.
    """

    def __init__(
        self,
        identity: str,
        generation: int,
        subscription: Subscription,
        queue: DeliveryQueue,
    ):
        self.identity = identity
        self.generation = generation
        self._subscription = subscription
        self._queue = queue
        self._cancel = asyncio.Event()
        self._terminated = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.forwarded = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._terminated.is_set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError(f"listener generation {self.generation} already started")
        self._task = asyncio.create_task(
            self._run(), name=f"listener:{self.identity}:{self.generation}"
        )
        log.info(
            "listener.started",
            identity=self.identity,
            generation=self.generation,
            topics=sorted(self._subscription.topics),
        )

    async def stop(self) -> None:
        """Signal cancellation and wait for the termination acknowledgment."""
        self._cancel.set()
        if self._task is None:
            return
        await self._terminated.wait()

    async def wait_closed(self) -> None:
        if self._task is None:
            return
        await self._terminated.wait()

    async def _run(self) -> None:
        stream = self._subscription.messages()
        cancel_wait = asyncio.ensure_future(self._cancel.wait())
        step: asyncio.Future[Any] | None = None
        try:
            while True:
                step = asyncio.ensure_future(anext(stream, _STREAM_END))
                await asyncio.wait({step, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
                if cancel_wait.done():
                    break
                message = step.result()
                if message is _STREAM_END:
                    log.info("listener.stream_ended", identity=self.identity, generation=self.generation)
                    break

                # Backpressure: a full queue suspends intake for this session only.
                step = asyncio.ensure_future(
                    self._queue.put(replace(message, generation=self.generation))
                )
                await asyncio.wait({step, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
                if not step.done():
                    break
                step.result()
                step = None
                self.forwarded += 1
        except Exception:
            log.exception("listener.failed", identity=self.identity, generation=self.generation)
        finally:
            await _discard(step)
            cancel_wait.cancel()
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception:
                    log.warning("listener.stream_close_failed", identity=self.identity, exc_info=True)
            self._terminated.set()
            log.info(
                "listener.stopped",
                identity=self.identity,
                generation=self.generation,
                forwarded=self.forwarded,
                cancelled=self._cancel.is_set(),
            )

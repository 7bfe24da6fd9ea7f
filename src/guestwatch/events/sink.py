"""
Buffered event delivery.

The monitor calls notify() from its polling path; delivery to handlers
(log, Telegram) happens on a background task so a slow handler never
delays detection.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from guestwatch.events.base import EventHandler, GuestEvent

__all__ = ["BufferedEventSink"]

logger = logging.getLogger(__name__)


class BufferedEventSink:
    """Bounded queue feeding a list of handlers. Drops the oldest event when full."""

    def __init__(self, handlers: Sequence[EventHandler], maxsize: int = 1000):
        self.handlers = list(handlers)
        self._queue: asyncio.Queue[GuestEvent] = asyncio.Queue(maxsize=maxsize)
        self._task: asyncio.Task[None] | None = None
        self.dropped = 0

    def notify(self, event: GuestEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            oldest = self._queue.get_nowait()
            self._queue.task_done()
            self.dropped += 1
            logger.warning(
                f"Event queue full, dropped {oldest.kind.value} event for guest {oldest.guest_id}"
            )
            self._queue.put_nowait(event)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._dispatch_loop(), name="guestwatch-events")

    async def stop(self, timeout: float = 5.0) -> None:
        """Deliver what is queued (bounded by timeout), then stop the dispatcher."""
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except TimeoutError:
            logger.warning(f"Gave up delivering {self._queue.qsize()} queued events")
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

    async def _dispatch_loop(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.deliver(event)
            finally:
                self._queue.task_done()

    async def deliver(self, event: GuestEvent) -> None:
        """Hand one event to every handler; a failing handler does not affect the others."""
        for handler in self.handlers:
            try:
                await handler.handle(event)
            except Exception as e:
                logger.error(
                    f"Event handler {type(handler).__name__} failed for guest "
                    f"{event.guest_id}: {e}",
                    exc_info=True,
                )

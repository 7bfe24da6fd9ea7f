"""Poll scheduler - background task that fans out liveness polls to due guests."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from guestwatch.monitor.clock import MonotonicClock
from guestwatch.monitor.worker import GuestWorker

if TYPE_CHECKING:
    from guestwatch.config.app import MonitorSettings
    from guestwatch.config.guests import GuestConfig
    from guestwatch.events.base import EventSink
    from guestwatch.monitor.clock import Clock
    from guestwatch.monitor.models import GuestStatus
    from guestwatch.transport.base import TransportAdapter

__all__ = ["PollScheduler"]

logger = logging.getLogger(__name__)


class PollScheduler:
    """Drives all guest workers from a single tick.

    Each tick starts one task per due guest and waits at most one tick
    interval for them. Polls that take longer keep running in the
    background; their guest is skipped until they finish, while every other
    guest keeps being polled on schedule.
    """

    def __init__(
        self,
        workers: Iterable[GuestWorker],
        settings: MonitorSettings,
        clock: Clock | None = None,
    ):
        self.workers: dict[str, GuestWorker] = {w.guest.id: w for w in workers}
        self.settings = settings
        self.clock = clock or MonotonicClock()
        self._running = False
        self._loop_task: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[None]] = set()

    @classmethod
    def from_guests(
        cls,
        guests: Iterable[GuestConfig],
        transport: TransportAdapter,
        sink: EventSink,
        settings: MonitorSettings,
        clock: Clock | None = None,
    ) -> PollScheduler:
        clock = clock or MonotonicClock()
        workers = [GuestWorker(guest, transport, sink, clock) for guest in guests]
        return cls(workers, settings, clock)

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the polling loop."""
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._tick_loop(), name="guestwatch-scheduler")
        logger.info(
            f"Poll scheduler started (guests={len(self.workers)}, "
            f"tick={self.settings.tick_interval}s)"
        )

    async def stop(self) -> None:
        """Stop scheduling polls and abandon the ones in flight."""
        self._running = False
        if self._loop_task is not None:
            self._loop_task.cancel()
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None

        inflight = list(self._inflight)
        for task in inflight:
            task.cancel()
        if inflight:
            await asyncio.gather(*inflight, return_exceptions=True)
        logger.info("Poll scheduler stopped")

    async def drain_recoveries(self, timeout: float) -> None:
        """Let in-flight resets finish, bounded by timeout overall."""
        results = await asyncio.gather(
            *(w.coordinator.drain(timeout) for w in self.workers.values()),
            return_exceptions=True,
        )
        abandoned = sum(1 for r in results if r is not True)
        if abandoned:
            logger.warning(f"{abandoned} reset(s) abandoned at shutdown")

    async def _tick_loop(self) -> None:
        while self._running:
            started = self.clock.monotonic()
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Poll scheduler tick error: {e}", exc_info=True)
            remaining = self.settings.tick_interval - (self.clock.monotonic() - started)
            try:
                await asyncio.sleep(max(0.0, remaining))
            except asyncio.CancelledError:
                break

    async def tick(self) -> list[str]:
        """
        Poll every due guest once.

        Returns:
            IDs of the guests a poll was started for.
        """
        now = self.clock.monotonic()
        due = [w for w in self.workers.values() if w.is_due(now)]
        if not due:
            return []

        tasks = []
        for worker in due:
            task = asyncio.create_task(
                self._poll_guest(worker), name=f"guestwatch-poll-{worker.guest.id}"
            )
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            tasks.append(task)

        _, pending = await asyncio.wait(tasks, timeout=self.settings.tick_interval)
        if pending:
            logger.debug(f"{len(pending)} poll(s) still running after tick")
        return [w.guest.id for w in due]

    async def _poll_guest(self, worker: GuestWorker) -> None:
        try:
            await worker.poll()
        except Exception as e:
            # Fault isolation: one guest's failure never reaches the others.
            logger.error(f"Poll of guest {worker.guest.label} failed: {e}", exc_info=True)

    async def wait_idle(self) -> None:
        """Wait until no poll is in flight."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def status(self) -> dict[str, GuestStatus]:
        """Consistent per-guest snapshots for status queries."""
        return {guest_id: w.snapshot for guest_id, w in self.workers.items()}

    def guest_status(self, guest_id: str) -> GuestStatus | None:
        worker = self.workers.get(guest_id)
        return worker.snapshot if worker is not None else None

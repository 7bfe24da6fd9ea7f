"""
Per-guest watchdog unit.

A GuestWorker owns everything mutable about one guest (tracker, health
state, recovery coordinator) behind a single asyncio.Lock, and publishes an
immutable GuestStatus snapshot after every update. Workers never share state,
so a failure on one guest's path cannot touch another guest.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TYPE_CHECKING, Any, TypeVar

from guestwatch.events.base import EventKind, GuestEvent
from guestwatch.monitor.countdown import countdown_bucket
from guestwatch.monitor.detector import evaluate
from guestwatch.monitor.models import Evaluation, GuestStatus, HealthState, RecoveryAttempt
from guestwatch.monitor.recovery import RecoveryCoordinator
from guestwatch.monitor.tracker import LivenessTracker
from guestwatch.transport.base import ProtocolError, TransportError, TransportTimeout

if TYPE_CHECKING:
    from guestwatch.config.guests import GuestConfig
    from guestwatch.events.base import EventSink
    from guestwatch.monitor.clock import Clock
    from guestwatch.transport.base import TransportAdapter

__all__ = ["GuestWorker"]

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GuestWorker:
    """Polls, tracks, evaluates and recovers a single guest."""

    def __init__(
        self,
        guest: GuestConfig,
        transport: TransportAdapter,
        sink: EventSink,
        clock: Clock,
    ):
        self.guest = guest
        self.transport = transport
        self.sink = sink
        self.clock = clock

        now = clock.monotonic()
        self.lock = asyncio.Lock()
        self.tracker = LivenessTracker(guest.id, now)
        self.coordinator = RecoveryCoordinator(
            guest,
            transport,
            sink,
            clock,
            lock=self.lock,
            on_finished=self._after_recovery,
        )
        self.state = HealthState.HEALTHY
        self.powered_off = False
        self.busy = False
        self.next_poll_at = now
        self._evaluation = Evaluation(state=HealthState.HEALTHY, reason="starting", elapsed=0.0)
        self._countdown: int | None = None
        self._snapshot = self._build_snapshot(now)

    @property
    def snapshot(self) -> GuestStatus:
        """Latest published status. Replaced wholesale, never mutated."""
        return self._snapshot

    def is_due(self, now: float) -> bool:
        return not self.busy and now >= self.next_poll_at

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def poll(self) -> None:
        """Run one poll cycle. Overlapping calls for the same guest are skipped."""
        if self.busy:
            logger.debug(f"Guest {self.guest.label}: previous poll still running, skipping")
            return
        self.busy = True
        try:
            await self._poll()
        finally:
            self.busy = False

    async def _poll(self) -> None:
        self.next_poll_at = self.clock.monotonic() + self.guest.poll_interval
        timeout = self.guest.read_timeout

        if self.guest.check_power_state:
            try:
                running = await self._bounded(
                    self.transport.is_running(self.guest, timeout), timeout, "power state query"
                )
            except TransportError as e:
                await self._record_failure(e)
                return

            if not running:
                async with self.lock:
                    self._power_off()
                return
            if self.powered_off:
                async with self.lock:
                    self._power_on()

        if self.guest.ping_agent:
            try:
                await self._bounded(self.transport.ping(self.guest, timeout), timeout, "agent ping")
            except TransportError as e:
                await self._record_failure(e)
                return

        try:
            token = await self._bounded(
                self.transport.read_liveness(self.guest, timeout), timeout, "liveness read"
            )
        except TransportError as e:
            await self._record_failure(e)
            return

        async with self.lock:
            now = self.clock.monotonic()
            if self.tracker.observe_token(token, now, self.clock.wall()):
                logger.debug(f"Guest {self.guest.label} fed token {token!r}")
            self._evaluate(now)

    async def _bounded(self, call: Awaitable[T], timeout: float, what: str) -> T:
        """Await a transport call, converting every failure into a TransportError."""
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except TimeoutError as e:
            raise TransportTimeout(f"{what} timed out after {timeout}s") from e
        except TransportError:
            raise
        except Exception as e:
            logger.error(
                f"Unexpected error during {what} for guest {self.guest.label}: {e}",
                exc_info=True,
            )
            raise ProtocolError(f"{what} failed: {e}") from e

    async def _record_failure(self, error: TransportError) -> None:
        async with self.lock:
            now = self.clock.monotonic()
            self.tracker.observe_failure(error, now)
            logger.info(
                f"Guest {self.guest.label} channel failure "
                f"({self.tracker.record.consecutive_failures} in a row): {error}"
            )
            if not self.powered_off:
                self._evaluate(now)
            else:
                self._publish(now)

    async def _after_recovery(self, attempt: RecoveryAttempt) -> None:
        # Only publish; the next poll decides whether to retry.
        async with self.lock:
            self._publish(self.clock.monotonic())

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _evaluate(self, now: float) -> None:
        evaluation = evaluate(
            self.state, self.tracker.record, self.guest, now, self.coordinator.current
        )
        self._evaluation = evaluation

        if evaluation.state is HealthState.UNRESPONSIVE:
            self._transition(HealthState.UNRESPONSIVE, evaluation)
            if self.coordinator.on_unresponsive(now, HealthState.UNRESPONSIVE) is not None:
                self._transition(HealthState.RECOVERING, evaluation)
        elif evaluation.state is HealthState.RECOVERING:
            self._transition(HealthState.RECOVERING, evaluation)
            if evaluation.retry_due:
                self.coordinator.on_unresponsive(now, HealthState.RECOVERING)
        else:
            self._transition(evaluation.state, evaluation)
            if evaluation.state is HealthState.HEALTHY:
                self.coordinator.reset()

        self._update_countdown(evaluation)
        self._publish(now)

    def _transition(self, new: HealthState, evaluation: Evaluation) -> None:
        previous = self.state
        if previous is new:
            return
        self.state = new

        record = self.tracker.record
        if new is HealthState.RECOVERING and previous is HealthState.UNRESPONSIVE:
            message = "Grace period has expired, resetting guest"
        elif new is HealthState.HEALTHY:
            message = "Guest is OK"
        else:
            message = evaluation.reason[:1].upper() + evaluation.reason[1:]

        logger.info(
            f"Guest {self.guest.label}: {previous.value} -> {new.value} ({evaluation.reason})"
        )
        self._emit(
            EventKind.TRANSITION,
            previous,
            new,
            message,
            {
                "reason": evaluation.reason,
                "seconds_since_feed": round(evaluation.elapsed, 3),
                "channel_degraded": evaluation.channel_degraded,
                "consecutive_failures": record.consecutive_failures,
                "consecutive_stale": record.consecutive_stale,
                "recovery_attempts": self.coordinator.attempt_count,
            },
        )

    def _update_countdown(self, evaluation: Evaluation) -> None:
        if evaluation.state is not HealthState.SUSPICIOUS or evaluation.reset_in is None:
            self._countdown = None
            return

        seconds, label = countdown_bucket(evaluation.reset_in)
        if seconds == self._countdown:
            return
        self._countdown = seconds
        self._emit(
            EventKind.COUNTDOWN,
            self.state,
            self.state,
            f"Guest will reset in {label} unless the issue is fixed",
            {"reset_in": round(evaluation.reset_in, 3), "bucket": seconds},
        )

    def _power_off(self) -> None:
        if self.powered_off:
            return
        self.powered_off = True
        self._countdown = None
        self._emit(
            EventKind.POWER_OFF,
            self.state,
            self.state,
            "Guest has been powered off, stopping monitoring",
            {},
        )
        self._publish(self.clock.monotonic())

    def _power_on(self) -> None:
        now = self.clock.monotonic()
        previous = self.state
        self.powered_off = False
        self.tracker.rebaseline(now)
        self.coordinator.reset()
        self.state = HealthState.HEALTHY
        self._evaluation = Evaluation(state=HealthState.HEALTHY, reason="powered on", elapsed=0.0)
        self._emit(
            EventKind.POWER_ON,
            previous,
            HealthState.HEALTHY,
            "Guest has been powered on, restarting the liveness timer",
            {},
        )
        self._publish(now)

    # ------------------------------------------------------------------
    # Publication
    # ------------------------------------------------------------------

    def _emit(
        self,
        kind: EventKind,
        previous: HealthState,
        new: HealthState,
        message: str,
        details: dict[str, Any],
    ) -> None:
        self.sink.notify(
            GuestEvent(
                guest_id=self.guest.id,
                guest_name=self.guest.name,
                kind=kind,
                previous_state=previous,
                new_state=new,
                timestamp=self.clock.wall(),
                message=message,
                details=details,
            )
        )

    def _build_snapshot(self, now: float) -> GuestStatus:
        record = self.tracker.record
        coordinator = self.coordinator
        last = coordinator.current or (coordinator.history[-1] if coordinator.history else None)
        return GuestStatus(
            guest_id=self.guest.id,
            name=self.guest.name,
            state=self.state,
            reason=self._evaluation.reason,
            channel_degraded=self._evaluation.channel_degraded,
            powered_off=self.powered_off,
            last_token=record.last_token,
            last_seen=record.last_seen_wall,
            seconds_since_feed=self.tracker.elapsed(now),
            consecutive_failures=record.consecutive_failures,
            consecutive_stale=record.consecutive_stale,
            last_error=record.last_error,
            recovery_attempts=coordinator.attempt_count,
            recovery_active=coordinator.active,
            last_recovery=last.to_dict() if last is not None else None,
            updated_at=self.clock.wall(),
        )

    def _publish(self, now: float) -> None:
        self._snapshot = self._build_snapshot(now)

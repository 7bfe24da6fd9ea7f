"""
Recovery coordinator.

Issues resets for one guest. At most one reset is in flight per guest, a
cooldown separates successive attempts, and every attempt is reported to the
event sink before and after it runs.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from guestwatch.events.base import EventKind, GuestEvent
from guestwatch.monitor.models import HealthState, RecoveryAttempt, RecoveryOutcome
from guestwatch.transport.base import TransportError

if TYPE_CHECKING:
    from guestwatch.config.guests import GuestConfig
    from guestwatch.events.base import EventSink
    from guestwatch.monitor.clock import Clock
    from guestwatch.transport.base import TransportAdapter

__all__ = ["RecoveryCoordinator"]

logger = logging.getLogger(__name__)

HISTORY_SIZE = 20


class RecoveryCoordinator:
    """
    Serializes reset attempts for a single guest.

    on_unresponsive() must be called with the guest's lock held; the reset
    itself runs on its own task and re-acquires the lock to record the outcome.
    """

    def __init__(
        self,
        guest: GuestConfig,
        transport: TransportAdapter,
        sink: EventSink,
        clock: Clock,
        lock: asyncio.Lock,
        on_finished: Callable[[RecoveryAttempt], Awaitable[None]] | None = None,
    ):
        self.guest = guest
        self.transport = transport
        self.sink = sink
        self.clock = clock
        self.lock = lock
        self.on_finished = on_finished

        self.current: RecoveryAttempt | None = None
        self.history: deque[RecoveryAttempt] = deque(maxlen=HISTORY_SIZE)
        self.attempt_count = 0
        self.total_attempts = 0
        self.last_finished_at: float | None = None
        self._exhausted_reported = False
        self._task: asyncio.Task[None] | None = None

    @property
    def active(self) -> bool:
        return self.current is not None and self.current.active

    @property
    def exhausted(self) -> bool:
        cap = self.guest.max_recovery_attempts
        return cap is not None and self.attempt_count >= cap

    def cooldown_remaining(self, now: float) -> float:
        if self.last_finished_at is None:
            return 0.0
        return max(0.0, self.guest.recovery_cooldown - (now - self.last_finished_at))

    def on_unresponsive(self, now: float, state: HealthState) -> RecoveryAttempt | None:
        """
        Start a reset attempt if none is in flight, the cooldown has elapsed
        and the attempt cap is not reached.

        Returns:
            The new attempt, or None if no attempt was started.
        """
        if self.active:
            logger.debug(f"Guest {self.guest.label}: reset already in flight")
            return None

        if self.exhausted:
            if not self._exhausted_reported:
                self._exhausted_reported = True
                self._emit(
                    EventKind.RECOVERY_EXHAUSTED,
                    state,
                    state,
                    f"Giving up after {self.attempt_count} reset attempts",
                    {"attempts": self.attempt_count},
                )
            return None

        remaining = self.cooldown_remaining(now)
        if remaining > 0:
            logger.debug(
                f"Guest {self.guest.label}: reset cooldown active, {remaining:.1f}s remaining"
            )
            return None

        self.attempt_count += 1
        self.total_attempts += 1
        attempt = RecoveryAttempt(
            guest_id=self.guest.id,
            attempt=self.attempt_count,
            started_at=now,
            started_at_wall=self.clock.wall(),
        )
        if self.current is not None:
            self.history.append(self.current)
        self.current = attempt

        verb = "Simulating reset (dry run)" if self.guest.dry_run else "Resetting guest"
        self._emit(
            EventKind.RECOVERY_STARTED,
            state,
            HealthState.RECOVERING,
            f"{verb}, attempt {attempt.attempt}",
            {"attempt": attempt.attempt, "dry_run": self.guest.dry_run},
        )
        self._task = asyncio.create_task(
            self._run(attempt),
            name=f"guestwatch-reset-{self.guest.id}-{attempt.attempt}",
        )
        return attempt

    async def _run(self, attempt: RecoveryAttempt) -> None:
        outcome = RecoveryOutcome.SUCCESS
        error: str | None = None

        if self.guest.dry_run:
            outcome = RecoveryOutcome.SKIPPED
        else:
            timeout = self.guest.reset_timeout
            try:
                await asyncio.wait_for(self.transport.request_reset(self.guest, timeout), timeout)
            except TimeoutError:
                outcome = RecoveryOutcome.FAILURE
                error = f"reset timed out after {timeout}s"
            except TransportError as e:
                outcome = RecoveryOutcome.FAILURE
                error = f"{e.kind}: {e}"
            except asyncio.CancelledError:
                async with self.lock:
                    self._finish(attempt, RecoveryOutcome.FAILURE, "cancelled")
                raise
            except Exception as e:
                logger.error(
                    f"Unexpected error resetting guest {self.guest.label}: {e}", exc_info=True
                )
                outcome = RecoveryOutcome.FAILURE
                error = str(e)

        async with self.lock:
            self._finish(attempt, outcome, error)

        if self.on_finished is not None:
            try:
                await self.on_finished(attempt)
            except Exception as e:
                logger.error(
                    f"Post-recovery hook failed for guest {self.guest.label}: {e}", exc_info=True
                )

    def _finish(
        self, attempt: RecoveryAttempt, outcome: RecoveryOutcome, error: str | None
    ) -> None:
        attempt.outcome = outcome
        attempt.error = error
        attempt.finished_at = self.clock.monotonic()
        self.last_finished_at = attempt.finished_at

        if outcome is RecoveryOutcome.FAILURE:
            message = f"Reset attempt {attempt.attempt} failed: {error}"
        elif outcome is RecoveryOutcome.SKIPPED:
            message = f"Dry-run mode: not actually resetting (attempt {attempt.attempt})"
        else:
            message = f"Reset attempt {attempt.attempt} succeeded, waiting for a fresh token"

        self._emit(
            EventKind.RECOVERY_FINISHED,
            HealthState.RECOVERING,
            HealthState.RECOVERING,
            message,
            {"attempt": attempt.attempt, "outcome": outcome.value, "error": error},
        )

    def reset(self) -> None:
        """Close the current recovery cycle once the guest is healthy again."""
        if self.current is not None and not self.current.active:
            self.history.append(self.current)
            self.current = None
        if not self.active:
            self.attempt_count = 0
            self._exhausted_reported = False

    async def drain(self, timeout: float) -> bool:
        """Wait for an in-flight reset to finish. Returns False if it was abandoned."""
        task = self._task
        if task is None or task.done():
            return True
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except TimeoutError:
            logger.warning(
                f"Reset of guest {self.guest.label} still in flight at shutdown, outcome unknown"
            )
            return False
        return True

    def _emit(
        self,
        kind: EventKind,
        previous: HealthState,
        new: HealthState,
        message: str,
        details: dict,
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

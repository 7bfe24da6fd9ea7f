"""
Liveness tracker.

Turns poll results into raw evidence for one guest. Channel failures and
stale tokens are counted separately: a flaky channel says nothing about
whether the guest itself is alive.
"""

from __future__ import annotations

import logging
from datetime import datetime

from guestwatch.monitor.models import LivenessRecord
from guestwatch.transport.base import TransportError

__all__ = ["LivenessTracker"]

logger = logging.getLogger(__name__)


class LivenessTracker:
    """Owns the LivenessRecord of a single guest."""

    def __init__(self, guest_id: str, now: float):
        self.guest_id = guest_id
        self.record = LivenessRecord(last_seen=now)

    def observe_token(self, token: str, now: float, wall: datetime) -> bool:
        """
        Record a successful read.

        Returns:
            True if the token differs from the previous one (the guest fed).
        """
        record = self.record
        record.observations += 1
        record.consecutive_failures = 0
        record.failure_streak_started = None
        record.last_error = None

        if token != record.last_token:
            record.last_token = token
            record.last_seen = now
            record.last_seen_wall = wall
            record.consecutive_stale = 0
            return True

        record.consecutive_stale += 1
        logger.debug(
            f"Guest {self.guest_id} token unchanged "
            f"({record.consecutive_stale} consecutive stale reads)"
        )
        return False

    def observe_failure(self, error: TransportError, now: float) -> None:
        """Record a channel failure. Stale evidence is left untouched."""
        record = self.record
        if record.consecutive_failures == 0:
            record.failure_streak_started = now
        record.consecutive_failures += 1
        record.last_error = f"{error.kind}: {error}"

    def elapsed(self, now: float) -> float:
        """Seconds since the last distinct token (or since monitoring began)."""
        return max(0.0, now - self.record.last_seen)

    def rebaseline(self, now: float) -> None:
        """Start over, e.g. after the guest was powered back on."""
        last_token = self.record.last_token
        self.record = LivenessRecord(last_seen=now, last_token=last_token)

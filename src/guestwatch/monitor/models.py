"""Per-guest watchdog state: liveness evidence, health, recovery attempts and snapshots."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

__all__ = [
    "Evaluation",
    "GuestStatus",
    "HealthState",
    "LivenessRecord",
    "RecoveryAttempt",
    "RecoveryOutcome",
]


class HealthState(str, Enum):
    """Health verdict for a guest."""

    HEALTHY = "healthy"
    SUSPICIOUS = "suspicious"
    UNRESPONSIVE = "unresponsive"
    RECOVERING = "recovering"


class RecoveryOutcome(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


@dataclass
class LivenessRecord:
    """Raw liveness evidence for one guest. Mutated only by its tracker."""

    last_seen: float
    last_token: str | None = None
    last_seen_wall: datetime | None = None
    consecutive_failures: int = 0
    consecutive_stale: int = 0
    failure_streak_started: float | None = None
    last_error: str | None = None
    observations: int = 0

    def failure_streak(self, now: float) -> float:
        """Seconds the current run of channel failures has lasted."""
        started = self.failure_streak_started
        return 0.0 if started is None else max(0.0, now - started)

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_token": self.last_token,
            "last_seen": self.last_seen_wall.isoformat() if self.last_seen_wall else None,
            "consecutive_failures": self.consecutive_failures,
            "consecutive_stale": self.consecutive_stale,
            "last_error": self.last_error,
        }


@dataclass
class RecoveryAttempt:
    """A single reset issued to an unresponsive guest."""

    guest_id: str
    attempt: int
    started_at: float
    started_at_wall: datetime
    outcome: RecoveryOutcome = RecoveryOutcome.PENDING
    finished_at: float | None = None
    error: str | None = None

    @property
    def active(self) -> bool:
        return self.outcome is RecoveryOutcome.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "guest_id": self.guest_id,
            "attempt": self.attempt,
            "started_at": self.started_at_wall.isoformat(),
            "outcome": self.outcome.value,
            "error": self.error,
        }


@dataclass(frozen=True)
class Evaluation:
    """Output of the failure detector for one guest at one instant."""

    state: HealthState
    reason: str
    elapsed: float
    channel_degraded: bool = False
    reset_in: float | None = None
    retry_due: bool = False


@dataclass(frozen=True)
class GuestStatus:
    """Immutable snapshot of a guest, published after every update."""

    guest_id: str
    name: str
    state: HealthState
    reason: str
    channel_degraded: bool
    powered_off: bool
    last_token: str | None
    last_seen: datetime | None
    seconds_since_feed: float
    consecutive_failures: int
    consecutive_stale: int
    last_error: str | None
    recovery_attempts: int
    recovery_active: bool
    last_recovery: dict[str, Any] | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "guest_id": self.guest_id,
            "name": self.name,
            "state": self.state.value,
            "reason": self.reason,
            "channel_degraded": self.channel_degraded,
            "powered_off": self.powered_off,
            "last_token": self.last_token,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
            "seconds_since_feed": round(self.seconds_since_feed, 3),
            "consecutive_failures": self.consecutive_failures,
            "consecutive_stale": self.consecutive_stale,
            "last_error": self.last_error,
            "recovery_attempts": self.recovery_attempts,
            "recovery_active": self.recovery_active,
            "last_recovery": self.last_recovery,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

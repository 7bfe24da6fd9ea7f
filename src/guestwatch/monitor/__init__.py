"""Per-guest liveness tracking, failure detection, recovery and polling."""

from guestwatch.monitor.models import (
    Evaluation,
    GuestStatus,
    HealthState,
    LivenessRecord,
    RecoveryAttempt,
    RecoveryOutcome,
)

__all__ = [
    "Evaluation",
    "GuestStatus",
    "HealthState",
    "LivenessRecord",
    "RecoveryAttempt",
    "RecoveryOutcome",
]

"""
Failure detector.

A pure function from (current state, liveness evidence, policy, now, latest
recovery attempt) to a health verdict. No I/O and no clock reads happen here,
so every branch can be exercised directly with synthetic evidence.

Verdicts, with T the seconds since the last distinct token:

    T <  feed_interval                     -> healthy
    feed_interval <= T < grace             -> suspicious
    T >= grace, stale reads, channel ok    -> unresponsive
    T >= grace, channel degraded           -> suspicious (channel_degraded)
    T >= grace, no stale read since the
        last distinct token                -> suspicious (channel_degraded)
    T >= grace, channel failing for longer
        than channel_failure_escalation    -> unresponsive

A stale read is a successful read that returned the previous token.

While a recovery attempt is pending, or until a distinct token arrives after
the latest attempt finished, the guest stays recovering.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from guestwatch.monitor.models import (
    Evaluation,
    HealthState,
    LivenessRecord,
    RecoveryAttempt,
    RecoveryOutcome,
)

if TYPE_CHECKING:
    from guestwatch.config.guests import GuestConfig

__all__ = ["evaluate", "retry_delay"]


def retry_delay(attempt: RecoveryAttempt, policy: GuestConfig) -> float:
    """Seconds after an attempt finished before the next one may start."""
    if attempt.outcome is RecoveryOutcome.FAILURE:
        return policy.recovery_cooldown
    # The reset went through (or was skipped in dry-run): give the guest a
    # full grace period to boot and feed before trying again.
    return max(policy.grace, policy.recovery_cooldown)


def _recovering(
    record: LivenessRecord,
    policy: GuestConfig,
    now: float,
    attempt: RecoveryAttempt,
) -> Evaluation | None:
    elapsed = max(0.0, now - record.last_seen)

    if attempt.active:
        return Evaluation(
            state=HealthState.RECOVERING,
            reason=f"reset attempt {attempt.attempt} in flight",
            elapsed=elapsed,
        )

    finished_at = attempt.finished_at if attempt.finished_at is not None else attempt.started_at
    if record.last_seen >= finished_at:
        # Fresh token observed after the attempt: back to time-based evaluation.
        return None

    since = now - finished_at
    delay = retry_delay(attempt, policy)
    return Evaluation(
        state=HealthState.RECOVERING,
        reason=(
            f"waiting for a fresh token after reset attempt {attempt.attempt} "
            f"({attempt.outcome.value})"
        ),
        elapsed=elapsed,
        reset_in=max(0.0, delay - since),
        retry_due=since >= delay,
    )


def evaluate(
    current: HealthState,
    record: LivenessRecord,
    policy: GuestConfig,
    now: float,
    attempt: RecoveryAttempt | None = None,
) -> Evaluation:
    """
    Compute the health verdict for one guest.

    Args:
        current: State the guest is in now
        record: Liveness evidence from the tracker
        policy: The guest's watchdog configuration
        now: Monitor monotonic time
        attempt: Latest recovery attempt of the current recovery cycle, if any

    Returns:
        Evaluation with the new state and the evidence behind it
    """
    if current in (HealthState.RECOVERING, HealthState.UNRESPONSIVE) and attempt is not None:
        verdict = _recovering(record, policy, now, attempt)
        if verdict is not None:
            return verdict

    elapsed = max(0.0, now - record.last_seen)
    grace = policy.grace
    degraded = record.consecutive_failures >= policy.channel_failure_tolerance

    if elapsed < policy.feed_interval:
        return Evaluation(
            state=HealthState.HEALTHY,
            reason="feeding",
            elapsed=elapsed,
            channel_degraded=degraded,
        )

    if elapsed < grace:
        return Evaluation(
            state=HealthState.SUSPICIOUS,
            reason=f"no fresh token for {elapsed:.0f}s (feed interval {policy.feed_interval:.0f}s)",
            elapsed=elapsed,
            channel_degraded=degraded,
            reset_in=grace - elapsed,
        )

    # Only a successful read of the unchanged token proves the guest stopped
    # feeding; failed reads alone say nothing about the guest.
    stale_evidence = record.consecutive_stale > 0
    if stale_evidence and not degraded:
        return Evaluation(
            state=HealthState.UNRESPONSIVE,
            reason=f"no fresh token for {elapsed:.0f}s (grace {grace:.0f}s)",
            elapsed=elapsed,
        )

    streak = record.failure_streak(now)
    escalation = policy.channel_failure_escalation
    if escalation is not None and streak >= escalation:
        return Evaluation(
            state=HealthState.UNRESPONSIVE,
            reason=f"channel down for {streak:.0f}s (escalation after {escalation:.0f}s)",
            elapsed=elapsed,
            channel_degraded=True,
        )

    if degraded:
        reason = (
            f"no fresh token for {elapsed:.0f}s but channel degraded "
            f"({record.consecutive_failures} consecutive failures)"
        )
    else:
        reason = f"no readable token for {elapsed:.0f}s, guest state unknown"
    return Evaluation(
        state=HealthState.SUSPICIOUS,
        reason=reason,
        elapsed=elapsed,
        channel_degraded=True,
        reset_in=None if escalation is None else max(0.0, escalation - streak),
    )

"""Tests for the pure failure detector."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

import pytest

from guestwatch.config.guests import GuestConfig
from guestwatch.monitor.countdown import THRESHOLDS, countdown_bucket
from guestwatch.monitor.detector import evaluate, retry_delay
from guestwatch.monitor.models import (
    HealthState,
    LivenessRecord,
    RecoveryAttempt,
    RecoveryOutcome,
)

pytestmark = pytest.mark.unit

WALL = datetime(2026, 1, 1, tzinfo=UTC)


@pytest.fixture
def policy(make_guest: Callable[..., GuestConfig]) -> GuestConfig:
    # feed 60s, grace 180s, cooldown 300s
    return make_guest()


def finished_attempt(
    outcome: RecoveryOutcome, started_at: float, finished_at: float, attempt: int = 1
) -> RecoveryAttempt:
    return RecoveryAttempt(
        guest_id="100",
        attempt=attempt,
        started_at=started_at,
        started_at_wall=WALL,
        outcome=outcome,
        finished_at=finished_at,
    )


# ---------------------------------------------------------------------------
# Time-based verdicts
# ---------------------------------------------------------------------------


class TestTimeBasedVerdicts:
    @pytest.mark.parametrize(
        ("now", "expected"),
        [
            (0.0, HealthState.HEALTHY),
            (59.9, HealthState.HEALTHY),
            (60.0, HealthState.SUSPICIOUS),
            (179.9, HealthState.SUSPICIOUS),
            (180.0, HealthState.UNRESPONSIVE),
            (10_000.0, HealthState.UNRESPONSIVE),
        ],
    )
    def test_boundaries(self, policy: GuestConfig, now: float, expected: HealthState) -> None:
        record = LivenessRecord(last_seen=0.0, last_token="t1", consecutive_stale=1)
        assert evaluate(HealthState.HEALTHY, record, policy, now).state is expected

    def test_suspicious_reports_time_until_reset(self, policy: GuestConfig) -> None:
        record = LivenessRecord(last_seen=0.0)
        result = evaluate(HealthState.HEALTHY, record, policy, 95.0)

        assert result.state is HealthState.SUSPICIOUS
        assert result.reset_in == pytest.approx(85.0)
        assert result.elapsed == pytest.approx(95.0)

    def test_unresponsive_reason_mentions_grace(self, policy: GuestConfig) -> None:
        record = LivenessRecord(last_seen=0.0, last_token="t1", consecutive_stale=1)
        result = evaluate(HealthState.SUSPICIOUS, record, policy, 200.0)
        assert "grace 180s" in result.reason

    def test_clock_never_goes_negative(self, policy: GuestConfig) -> None:
        record = LivenessRecord(last_seen=50.0)
        assert evaluate(HealthState.HEALTHY, record, policy, 10.0).elapsed == 0.0


# ---------------------------------------------------------------------------
# Degraded channel
# ---------------------------------------------------------------------------


class TestDegradedChannel:
    def test_staleness_with_failing_channel_stays_suspicious(self, policy: GuestConfig) -> None:
        record = LivenessRecord(
            last_seen=0.0, consecutive_failures=3, failure_streak_started=20.0
        )
        result = evaluate(HealthState.SUSPICIOUS, record, policy, 400.0)

        assert result.state is HealthState.SUSPICIOUS
        assert result.channel_degraded is True
        assert result.reset_in is None
        assert "channel degraded" in result.reason

    def test_failures_below_tolerance_do_not_protect_guest(self, policy: GuestConfig) -> None:
        record = LivenessRecord(
            last_seen=0.0,
            consecutive_stale=5,
            consecutive_failures=2,
            failure_streak_started=170.0,
        )
        result = evaluate(HealthState.SUSPICIOUS, record, policy, 190.0)

        assert result.state is HealthState.UNRESPONSIVE
        assert result.channel_degraded is False

    def test_failures_without_stale_reads_never_reset(self, policy: GuestConfig) -> None:
        # A single failed read after the last feed, below the tolerance
        record = LivenessRecord(
            last_seen=0.0, last_token="t1", consecutive_failures=1, failure_streak_started=180.0
        )
        result = evaluate(HealthState.SUSPICIOUS, record, policy, 180.0)

        assert result.state is HealthState.SUSPICIOUS
        assert result.channel_degraded is True
        assert "guest state unknown" in result.reason

    def test_no_token_ever_read_stays_suspicious(self, policy: GuestConfig) -> None:
        record = LivenessRecord(last_seen=0.0, consecutive_failures=2, failure_streak_started=0.0)
        result = evaluate(HealthState.SUSPICIOUS, record, policy, 1000.0)

        assert result.state is HealthState.SUSPICIOUS
        assert result.reset_in is None

    def test_degraded_flag_is_reported_before_grace(self, policy: GuestConfig) -> None:
        record = LivenessRecord(
            last_seen=0.0, consecutive_failures=5, failure_streak_started=10.0
        )
        result = evaluate(HealthState.HEALTHY, record, policy, 30.0)

        assert result.state is HealthState.HEALTHY
        assert result.channel_degraded is True

    def test_escalation_after_prolonged_outage(
        self, make_guest: Callable[..., GuestConfig]
    ) -> None:
        policy = make_guest(channel_failure_escalation=120)
        record = LivenessRecord(
            last_seen=0.0, consecutive_failures=10, failure_streak_started=100.0
        )

        before = evaluate(HealthState.SUSPICIOUS, record, policy, 200.0)
        assert before.state is HealthState.SUSPICIOUS
        assert before.reset_in == pytest.approx(20.0)

        after = evaluate(HealthState.SUSPICIOUS, record, policy, 230.0)
        assert after.state is HealthState.UNRESPONSIVE
        assert after.channel_degraded is True
        assert "escalation" in after.reason


# ---------------------------------------------------------------------------
# Recovery
# ---------------------------------------------------------------------------


class TestRecoveringVerdicts:
    def test_pending_attempt_keeps_recovering(self, policy: GuestConfig) -> None:
        attempt = RecoveryAttempt(
            guest_id="100", attempt=1, started_at=200.0, started_at_wall=WALL
        )
        record = LivenessRecord(last_seen=0.0)
        result = evaluate(HealthState.RECOVERING, record, policy, 210.0, attempt)

        assert result.state is HealthState.RECOVERING
        assert result.retry_due is False
        assert "in flight" in result.reason

    def test_successful_reset_alone_is_not_recovery(self, policy: GuestConfig) -> None:
        attempt = finished_attempt(RecoveryOutcome.SUCCESS, 200.0, 205.0)
        record = LivenessRecord(last_seen=0.0, last_token="t1")
        result = evaluate(HealthState.RECOVERING, record, policy, 250.0, attempt)

        assert result.state is HealthState.RECOVERING
        assert result.retry_due is False
        # max(grace, cooldown) after a reset that went through
        assert result.reset_in == pytest.approx(255.0)

    def test_retry_due_after_delay(self, policy: GuestConfig) -> None:
        attempt = finished_attempt(RecoveryOutcome.SUCCESS, 200.0, 205.0)
        record = LivenessRecord(last_seen=0.0)
        result = evaluate(HealthState.RECOVERING, record, policy, 505.0, attempt)

        assert result.state is HealthState.RECOVERING
        assert result.retry_due is True
        assert result.reset_in == 0.0

    def test_fresh_token_after_reset_returns_to_healthy(self, policy: GuestConfig) -> None:
        attempt = finished_attempt(RecoveryOutcome.SUCCESS, 200.0, 205.0)
        record = LivenessRecord(last_seen=230.0, last_token="t2")
        result = evaluate(HealthState.RECOVERING, record, policy, 240.0, attempt)

        assert result.state is HealthState.HEALTHY

    def test_token_seen_before_reset_finished_does_not_count(self, policy: GuestConfig) -> None:
        attempt = finished_attempt(RecoveryOutcome.SUCCESS, 200.0, 205.0)
        record = LivenessRecord(last_seen=190.0, last_token="t1")
        result = evaluate(HealthState.RECOVERING, record, policy, 240.0, attempt)

        assert result.state is HealthState.RECOVERING

    def test_failed_reset_retries_after_cooldown(
        self, make_guest: Callable[..., GuestConfig]
    ) -> None:
        policy = make_guest(recovery_cooldown=30)
        attempt = finished_attempt(RecoveryOutcome.FAILURE, 200.0, 201.0)
        record = LivenessRecord(last_seen=0.0)

        assert evaluate(HealthState.RECOVERING, record, policy, 220.0, attempt).retry_due is False
        assert evaluate(HealthState.RECOVERING, record, policy, 231.0, attempt).retry_due is True

    def test_attempt_ignored_outside_recovery(self, policy: GuestConfig) -> None:
        attempt = finished_attempt(RecoveryOutcome.SUCCESS, 200.0, 205.0)
        record = LivenessRecord(last_seen=0.0)
        result = evaluate(HealthState.SUSPICIOUS, record, policy, 100.0, attempt)

        assert result.state is HealthState.SUSPICIOUS


class TestRetryDelay:
    def test_failure_waits_for_cooldown(self, make_guest: Callable[..., GuestConfig]) -> None:
        policy = make_guest(recovery_cooldown=30)
        attempt = finished_attempt(RecoveryOutcome.FAILURE, 0.0, 1.0)
        assert retry_delay(attempt, policy) == 30

    def test_success_waits_for_grace_at_least(
        self, make_guest: Callable[..., GuestConfig]
    ) -> None:
        policy = make_guest(recovery_cooldown=30)
        attempt = finished_attempt(RecoveryOutcome.SUCCESS, 0.0, 1.0)
        assert retry_delay(attempt, policy) == 180

    def test_skipped_counts_like_success(self, make_guest: Callable[..., GuestConfig]) -> None:
        policy = make_guest(recovery_cooldown=600)
        attempt = finished_attempt(RecoveryOutcome.SKIPPED, 0.0, 1.0)
        assert retry_delay(attempt, policy) == 600


class TestCountdownBucket:
    @pytest.mark.parametrize(
        ("remaining", "expected"),
        [
            (0.5, (60, "1 minute")),
            (60.0, (120, "2 minutes")),
            (95.0, (120, "2 minutes")),
            (299.0, (300, "5 minutes")),
            (3599.0, (3600, "1 hour")),
            (50_000.0, (7200, "2 hours")),
        ],
    )
    def test_bucket(self, remaining: float, expected: tuple[int, str]) -> None:
        assert countdown_bucket(remaining) == expected

    def test_thresholds_are_sorted(self) -> None:
        seconds = [t[0] for t in THRESHOLDS]
        assert seconds == sorted(seconds)

"""Human-friendly "will reset in ..." buckets for guests in their grace period."""

from __future__ import annotations

__all__ = ["THRESHOLDS", "countdown_bucket"]

THRESHOLDS: tuple[tuple[int, str], ...] = (
    (60, "1 minute"),
    (120, "2 minutes"),
    (180, "3 minutes"),
    (240, "4 minutes"),
    (300, "5 minutes"),
    (600, "10 minutes"),
    (900, "15 minutes"),
    (1800, "30 minutes"),
    (3600, "1 hour"),
    (7200, "2 hours"),
)


def countdown_bucket(seconds_until_reset: float) -> tuple[int, str]:
    """
    Smallest threshold strictly above the remaining time, capped at the largest.

    A guest 95 seconds away from reset falls in the (120, "2 minutes") bucket.
    """
    for threshold in THRESHOLDS:
        if threshold[0] > seconds_until_reset:
            return threshold
    return THRESHOLDS[-1]

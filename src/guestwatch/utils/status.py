"""
Status message formatting for the guestwatch daemon.

Renders the JSON served by the status endpoint for the CLI.
"""

from typing import Any


def _format_age(seconds: float | None) -> str:
    if seconds is None:
        return "-"
    seconds = int(seconds)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h{minutes:02d}m"
    if minutes:
        return f"{minutes}m{secs:02d}s"
    return f"{secs}s"


def format_status_message(
    *,
    running: bool,
    guests: list[dict[str, Any]] | None = None,
    uptime: str | None = None,
    endpoint: str | None = None,
) -> str:
    """
    Format watchdog status with consistent styling.

    Args:
        running: Whether the daemon answered
        guests: Guest snapshots as returned by GET /status
        uptime: Formatted uptime string (e.g., "1h 23m 45s")
        endpoint: Status endpoint that was queried

    Returns:
        Formatted status message string
    """
    lines = []

    lines.append("=" * 70)
    lines.append("GUESTWATCH STATUS")
    lines.append("=" * 70)
    lines.append("")

    if not running:
        lines.append("Status: Stopped")
        if endpoint:
            lines.append(f"  (no answer from {endpoint})")
        lines.append("")
        lines.append("=" * 70)
        return "\n".join(lines)

    status_line = "Status: Running"
    if uptime:
        status_line += f" (uptime {uptime})"
    lines.append(status_line)
    lines.append("")

    guests = guests or []
    if not guests:
        lines.append("No guests are being monitored.")
        lines.append("")
    else:
        lines.append(
            f"{'GUEST':<22} {'STATE':<13} {'LAST FEED':>10} "
            f"{'FAIL':>5} {'STALE':>6} {'RESETS':>7}"
        )
        for guest in guests:
            label = guest["guest_id"]
            if guest.get("name"):
                label = f"{label} ({guest['name']})"
            state = guest["state"]
            if guest.get("powered_off"):
                state = "powered-off"
            elif guest.get("channel_degraded"):
                state = f"{state}*"
            resets = str(guest.get("recovery_attempts", 0))
            if guest.get("recovery_active"):
                resets += "+"
            lines.append(
                f"{label[:22]:<22} {state:<13} "
                f"{_format_age(guest.get('seconds_since_feed')):>10} "
                f"{guest.get('consecutive_failures', 0):>5} "
                f"{guest.get('consecutive_stale', 0):>6} {resets:>7}"
            )
        lines.append("")
        lines.append("* channel degraded    + reset in flight")
        lines.append("")

        reasons = [g for g in guests if g["state"] != "healthy"]
        if reasons:
            lines.append("Details:")
            for guest in reasons:
                lines.append(f"  {guest['guest_id']}: {guest.get('reason', '')}")
                if guest.get("last_error"):
                    lines.append(f"    last error: {guest['last_error']}")
            lines.append("")

    lines.append("=" * 70)

    return "\n".join(lines)

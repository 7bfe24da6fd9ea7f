"""
Per-guest watchdog configuration.

Each guest entry is validated on its own so that a malformed entry only
disables monitoring of that guest; the rest of the fleet is still watched.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

__all__ = ["ConfigurationError", "GuestConfig", "load_guest_configs"]

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """A guest entry is missing required fields or holds invalid values."""

    def __init__(self, guest_id: str | None, message: str):
        self.guest_id = guest_id
        self.message = message
        label = guest_id if guest_id is not None else "<unknown>"
        super().__init__(f"Invalid configuration for guest {label}: {message}")


class GuestConfig(BaseModel):
    """Watchdog policy for a single guest. Immutable once loaded."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(
        description="Stable guest identifier (the hypervisor VMID)",
    )
    node: str = Field(
        default="pve",
        description="Hypervisor node the guest runs on",
    )
    name: str = Field(
        default="",
        description="Friendly name used in log lines and notifications",
    )
    feed_interval: float = Field(
        default=60.0,
        gt=0,
        description="Expected seconds between two feeds from the guest",
    )
    grace_multiplier: float = Field(
        default=3.0,
        ge=1.0,
        description="Grace period as a multiple of feed_interval",
    )
    poll_interval: float = Field(
        default=10.0,
        gt=0,
        description="Seconds between two liveness reads",
    )
    poll_timeout: float | None = Field(
        default=None,
        gt=0,
        description="Bound on a single liveness read (defaults to poll_interval)",
    )
    recovery_cooldown: float = Field(
        default=300.0,
        ge=0,
        description="Minimum seconds between two reset attempts",
    )
    reset_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Bound on a single reset request",
    )
    channel_failure_tolerance: int = Field(
        default=3,
        ge=1,
        description="Consecutive channel failures after which the channel is considered "
        "degraded and staleness alone no longer justifies a reset",
    )
    channel_failure_escalation: float | None = Field(
        default=None,
        gt=0,
        description="Seconds of uninterrupted channel failure after which the guest is "
        "declared unresponsive anyway (null = never)",
    )
    max_recovery_attempts: int | None = Field(
        default=None,
        ge=1,
        description="Stop resetting after this many consecutive attempts (null = unbounded)",
    )
    dry_run: bool = Field(
        default=False,
        description="Report resets without performing them",
    )
    liveness_path: str = Field(
        default="/tmp/watchdog_token",
        description="File inside the guest holding the liveness token",
    )
    publish_host_time: bool = Field(
        default=False,
        description="Write the host's unix time into the guest before each read",
    )
    host_time_path: str = Field(
        default="/tmp/watchdog_current_unix_time",
        description="File inside the guest receiving the host's unix time",
    )
    check_power_state: bool = Field(
        default=True,
        description="Suspend monitoring while the guest is powered off",
    )
    ping_agent: bool = Field(
        default=True,
        description="Ping the guest agent before each read; a failed ping counts as a "
        "channel failure and skips the read",
    )
    telegram_chat_id: str | None = Field(
        default=None,
        description="Per-guest Telegram chat overriding the global one",
    )

    @field_validator("id", mode="before")
    @classmethod
    def validate_id(cls, v: Any) -> str:
        """Accept numeric VMIDs, reject empty identifiers."""
        if isinstance(v, bool) or v is None:
            raise ValueError("id must be a string or integer")
        v = str(v).strip()
        if not v:
            raise ValueError("id must not be empty")
        return v

    @property
    def grace(self) -> float:
        """Seconds without a fresh token before the guest is declared unresponsive."""
        return self.feed_interval * self.grace_multiplier

    @property
    def read_timeout(self) -> float:
        return self.poll_timeout if self.poll_timeout is not None else self.poll_interval

    @property
    def label(self) -> str:
        return f"{self.id} ({self.name})" if self.name else self.id


def load_guest_configs(
    entries: list[Any],
    defaults: dict[str, Any] | None = None,
) -> tuple[list[GuestConfig], list[ConfigurationError]]:
    """
    Validate guest entries one by one.

    Args:
        entries: Raw guest mappings from the config file
        defaults: Values applied to every guest unless the entry overrides them

    Returns:
        Tuple of (valid guest configs, errors for the rejected entries)
    """
    guests: list[GuestConfig] = []
    errors: list[ConfigurationError] = []
    seen: set[str] = set()

    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            error = ConfigurationError(None, f"entry #{index} is not a mapping")
            logger.error(str(error))
            errors.append(error)
            continue

        raw_id = entry.get("id")
        guest_id = str(raw_id) if raw_id is not None else None
        merged = {**(defaults or {}), **entry}

        try:
            guest = GuestConfig(**merged)
        except ValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'entry'}: {err['msg']}"
                for err in e.errors()
            )
            error = ConfigurationError(guest_id, details)
            logger.error(str(error))
            errors.append(error)
            continue

        if guest.id in seen:
            error = ConfigurationError(guest.id, "duplicate guest id")
            logger.error(str(error))
            errors.append(error)
            continue

        seen.add(guest.id)
        guests.append(guest)

    return guests, errors

"""Watchdog events and the sink interface they are published to."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from guestwatch.monitor.models import HealthState

__all__ = ["EventHandler", "EventKind", "EventSink", "GuestEvent"]


class EventKind(str, Enum):
    TRANSITION = "transition"
    RECOVERY_STARTED = "recovery_started"
    RECOVERY_FINISHED = "recovery_finished"
    RECOVERY_EXHAUSTED = "recovery_exhausted"
    COUNTDOWN = "countdown"
    POWER_OFF = "power_off"
    POWER_ON = "power_on"


@dataclass(frozen=True)
class GuestEvent:
    """Something observable happened to a guest."""

    guest_id: str
    kind: EventKind
    previous_state: HealthState
    new_state: HealthState
    timestamp: datetime
    message: str
    guest_name: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return f"{self.guest_id} ({self.guest_name})" if self.guest_name else self.guest_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "guest_id": self.guest_id,
            "guest_name": self.guest_name,
            "kind": self.kind.value,
            "previous_state": self.previous_state.value,
            "new_state": self.new_state.value,
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
            "details": dict(self.details),
        }


class EventSink(Protocol):
    """Receives events from the monitor. notify() must never block."""

    def notify(self, event: GuestEvent) -> None: ...


class EventHandler(Protocol):
    """Downstream consumer fed by a buffered sink."""

    async def handle(self, event: GuestEvent) -> None: ...

"""Pytest configuration and shared fixtures for guestwatch tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from guestwatch.config.guests import GuestConfig
from guestwatch.events.base import EventKind, GuestEvent
from guestwatch.transport.base import ChannelUnavailable, TransportAdapter

EPOCH = datetime(2026, 1, 1, tzinfo=UTC)


class ManualClock:
    """Clock that only moves when a test says so."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def monotonic(self) -> float:
        return self.now

    def wall(self) -> datetime:
        return EPOCH + timedelta(seconds=self.now)

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport(TransportAdapter):
    """In-memory guest channel.

    tokens maps guest id -> token the feeder last wrote; a guest without a
    token behaves like a guest whose agent is not answering.
    """

    def __init__(self) -> None:
        self.tokens: dict[str, str] = {}
        self.read_errors: dict[str, Exception] = {}
        self.read_delay: dict[str, float] = {}
        self.running: dict[str, bool] = {}
        self.reads: list[str] = []
        self.ping_errors: dict[str, Exception] = {}
        self.pings: list[str] = []
        self.reset_calls: list[str] = []
        self.reset_error: Exception | None = None
        self.reset_gate: asyncio.Event | None = None
        self.closed = False

    async def read_liveness(self, guest: GuestConfig, timeout: float) -> str:
        self.reads.append(guest.id)
        delay = self.read_delay.get(guest.id)
        if delay:
            await asyncio.sleep(delay)
        error = self.read_errors.get(guest.id)
        if error is not None:
            raise error
        if guest.id not in self.tokens:
            raise ChannelUnavailable("guest agent is not running")
        return self.tokens[guest.id]

    async def ping(self, guest: GuestConfig, timeout: float) -> None:
        self.pings.append(guest.id)
        error = self.ping_errors.get(guest.id)
        if error is not None:
            raise error

    async def request_reset(self, guest: GuestConfig, timeout: float) -> None:
        self.reset_calls.append(guest.id)
        if self.reset_gate is not None:
            await self.reset_gate.wait()
        if self.reset_error is not None:
            raise self.reset_error

    async def is_running(self, guest: GuestConfig, timeout: float) -> bool:
        return self.running.get(guest.id, True)

    async def aclose(self) -> None:
        self.closed = True


class CollectingSink:
    """Event sink that keeps everything it is notified of."""

    def __init__(self) -> None:
        self.events: list[GuestEvent] = []

    def notify(self, event: GuestEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: EventKind) -> list[GuestEvent]:
        return [e for e in self.events if e.kind is kind]

    def transitions(self) -> list[tuple[str, str]]:
        return [
            (e.previous_state.value, e.new_state.value)
            for e in self.events
            if e.kind is EventKind.TRANSITION
        ]


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def sink() -> CollectingSink:
    return CollectingSink()


@pytest.fixture
def make_guest() -> Callable[..., GuestConfig]:
    """Factory for guest configs with test-friendly defaults."""

    def _make(**overrides: Any) -> GuestConfig:
        values: dict[str, Any] = {
            "id": "100",
            "name": "web",
            "feed_interval": 60,
            "grace_multiplier": 3,
            "poll_interval": 10,
            "recovery_cooldown": 300,
        }
        values.update(overrides)
        return GuestConfig(**values)

    return _make


@pytest.fixture
def guest(make_guest: Callable[..., GuestConfig]) -> GuestConfig:
    return make_guest()

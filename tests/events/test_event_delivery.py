"""Tests for the buffered event sink and its handlers."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import httpx
import pytest

from guestwatch.config.notifications import TelegramConfig
from guestwatch.events.base import EventKind, GuestEvent
from guestwatch.events.handlers import LoggingEventHandler, TelegramEventHandler
from guestwatch.events.sink import BufferedEventSink
from guestwatch.monitor.models import HealthState

pytestmark = pytest.mark.unit


def make_event(
    kind: EventKind = EventKind.TRANSITION,
    guest_id: str = "100",
    new_state: HealthState = HealthState.SUSPICIOUS,
    message: str = "No fresh token for 70s",
    **details,
) -> GuestEvent:
    return GuestEvent(
        guest_id=guest_id,
        guest_name="web",
        kind=kind,
        previous_state=HealthState.HEALTHY,
        new_state=new_state,
        timestamp=datetime(2026, 1, 1, tzinfo=UTC),
        message=message,
        details=details,
    )


# ---------------------------------------------------------------------------
# GuestEvent
# ---------------------------------------------------------------------------


class TestGuestEvent:
    def test_label_includes_name(self) -> None:
        assert make_event().label == "100 (web)"

    def test_to_dict(self) -> None:
        data = make_event(reason="stale").to_dict()
        assert data["kind"] == "transition"
        assert data["previous_state"] == "healthy"
        assert data["new_state"] == "suspicious"
        assert data["timestamp"] == "2026-01-01T00:00:00+00:00"
        assert data["details"] == {"reason": "stale"}
        json.dumps(data)


# ---------------------------------------------------------------------------
# BufferedEventSink
# ---------------------------------------------------------------------------


class TestBufferedEventSink:
    @pytest.mark.asyncio
    async def test_delivers_in_order(self) -> None:
        handler = AsyncMock()
        sink = BufferedEventSink([handler])
        await sink.start()

        events = [make_event(message=f"event {i}") for i in range(5)]
        for event in events:
            sink.notify(event)
        await sink.stop()

        assert [c.args[0] for c in handler.handle.await_args_list] == events

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self) -> None:
        sink = BufferedEventSink([], maxsize=2)

        first, second, third = (make_event(message=str(i)) for i in range(3))
        sink.notify(first)
        sink.notify(second)
        sink.notify(third)

        assert sink.dropped == 1
        assert sink.pending == 2
        assert sink._queue.get_nowait() is second
        assert sink._queue.get_nowait() is third

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self, caplog) -> None:
        broken = AsyncMock()
        broken.handle.side_effect = RuntimeError("handler down")
        healthy = AsyncMock()
        sink = BufferedEventSink([broken, healthy])

        await sink.deliver(make_event())

        healthy.handle.assert_awaited_once()
        assert "handler down" in caplog.text

    @pytest.mark.asyncio
    async def test_stop_gives_up_on_slow_handler(self) -> None:
        class SlowHandler:
            async def handle(self, event: GuestEvent) -> None:
                await asyncio.sleep(10)

        sink = BufferedEventSink([SlowHandler()])
        await sink.start()
        sink.notify(make_event())
        await sink.stop(timeout=0.05)

        assert sink._task is None

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self) -> None:
        sink = BufferedEventSink([])
        await sink.start()
        task = sink._task
        await sink.start()
        assert sink._task is task
        await sink.stop()


# ---------------------------------------------------------------------------
# LoggingEventHandler
# ---------------------------------------------------------------------------


class TestLoggingEventHandler:
    @pytest.mark.parametrize(
        ("event", "level"),
        [
            (make_event(), logging.INFO),
            (make_event(new_state=HealthState.UNRESPONSIVE), logging.WARNING),
            (make_event(EventKind.RECOVERY_STARTED), logging.WARNING),
            (make_event(EventKind.RECOVERY_FINISHED, outcome="failure"), logging.ERROR),
            (make_event(EventKind.RECOVERY_FINISHED, outcome="success"), logging.INFO),
            (make_event(EventKind.RECOVERY_EXHAUSTED), logging.ERROR),
        ],
    )
    def test_level_for(self, event: GuestEvent, level: int) -> None:
        assert LoggingEventHandler.level_for(event) == level

    @pytest.mark.asyncio
    async def test_handle_writes_line(self, caplog) -> None:
        caplog.set_level(logging.INFO, logger="guestwatch.events")
        await LoggingEventHandler().handle(make_event())

        assert "[100 (web)] transition healthy -> suspicious: No fresh token for 70s" in caplog.text


# ---------------------------------------------------------------------------
# TelegramEventHandler
# ---------------------------------------------------------------------------


def telegram_client(requests: list[httpx.Request], status_code: int = 200) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_code, json={"ok": status_code < 400})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestTelegramEventHandler:
    @pytest.fixture
    def config(self) -> TelegramConfig:
        return TelegramConfig(bot_token="123:abc", chat_id="-1001")

    @pytest.mark.asyncio
    async def test_sends_message(self, config: TelegramConfig) -> None:
        requests: list[httpx.Request] = []
        handler = TelegramEventHandler(config, client=telegram_client(requests))

        await handler.handle(make_event(message="Guest is OK"))

        assert len(requests) == 1
        assert requests[0].url.host == "api.telegram.org"
        assert requests[0].url.path == "/bot123:abc/sendMessage"
        body = json.loads(requests[0].content)
        assert body == {"chat_id": "-1001", "text": "VMID 100 (web): Guest is OK"}

    @pytest.mark.asyncio
    async def test_per_guest_chat_override(self, config: TelegramConfig) -> None:
        requests: list[httpx.Request] = []
        handler = TelegramEventHandler(
            config, chat_overrides={"101": "-2002"}, client=telegram_client(requests)
        )

        await handler.handle(make_event(guest_id="101"))
        await handler.handle(make_event(guest_id="100"))

        chats = [json.loads(r.content)["chat_id"] for r in requests]
        assert chats == ["-2002", "-1001"]

    @pytest.mark.asyncio
    async def test_no_chat_configured(self) -> None:
        requests: list[httpx.Request] = []
        handler = TelegramEventHandler(
            TelegramConfig(bot_token="123:abc"), client=telegram_client(requests)
        )

        await handler.handle(make_event())

        assert requests == []

    @pytest.mark.asyncio
    async def test_api_error_is_logged(self, config: TelegramConfig, caplog) -> None:
        requests: list[httpx.Request] = []
        handler = TelegramEventHandler(config, client=telegram_client(requests, 502))

        await handler.handle(make_event())

        assert "Telegram request failed: 502" in caplog.text

    @pytest.mark.asyncio
    async def test_network_error_is_logged(self, config: TelegramConfig, caplog) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(refuse))
        handler = TelegramEventHandler(config, client=client)

        await handler.handle(make_event())

        assert "Failed to send Telegram message for guest 100" in caplog.text

    @pytest.mark.asyncio
    async def test_aclose_leaves_injected_client_open(self, config: TelegramConfig) -> None:
        client = telegram_client([])
        handler = TelegramEventHandler(config, client=client)

        await handler.aclose()

        assert client.is_closed is False
        await client.aclose()

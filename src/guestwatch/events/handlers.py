"""Event handlers: structured log lines and Telegram messages."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from guestwatch.events.base import EventKind, GuestEvent
from guestwatch.monitor.models import HealthState

if TYPE_CHECKING:
    from guestwatch.config.notifications import TelegramConfig

__all__ = ["LoggingEventHandler", "TelegramEventHandler"]

logger = logging.getLogger(__name__)


class LoggingEventHandler:
    """Writes every event to the guestwatch.events logger."""

    def __init__(self, log: logging.Logger | None = None):
        self.log = log or logging.getLogger("guestwatch.events")

    @staticmethod
    def level_for(event: GuestEvent) -> int:
        if event.kind is EventKind.RECOVERY_EXHAUSTED:
            return logging.ERROR
        if event.kind is EventKind.RECOVERY_FINISHED and event.details.get("outcome") == "failure":
            return logging.ERROR
        if event.kind is EventKind.RECOVERY_STARTED:
            return logging.WARNING
        if event.kind is EventKind.TRANSITION and event.new_state is HealthState.UNRESPONSIVE:
            return logging.WARNING
        return logging.INFO

    async def handle(self, event: GuestEvent) -> None:
        self.log.log(
            self.level_for(event),
            f"[{event.label}] {event.kind.value} "
            f"{event.previous_state.value} -> {event.new_state.value}: {event.message}",
        )


class TelegramEventHandler:
    """Relays events to a Telegram chat through the Bot API."""

    def __init__(
        self,
        config: TelegramConfig,
        chat_overrides: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.config = config
        self.chat_overrides = chat_overrides or {}
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None

    @property
    def send_url(self) -> str:
        return f"{self.config.api_url.rstrip('/')}/bot{self.config.bot_token}/sendMessage"

    def chat_for(self, guest_id: str) -> str | None:
        return self.chat_overrides.get(guest_id) or self.config.chat_id

    @staticmethod
    def format_message(event: GuestEvent) -> str:
        return f"VMID {event.label}: {event.message}"

    async def handle(self, event: GuestEvent) -> None:
        chat_id = self.chat_for(event.guest_id)
        if not self.config.bot_token or not chat_id:
            return

        try:
            response = await self._client.post(
                self.send_url,
                json={"chat_id": chat_id, "text": self.format_message(event)},
                timeout=self.config.timeout,
            )
        except httpx.HTTPError as e:
            logger.error(f"Failed to send Telegram message for guest {event.guest_id}: {e}")
            return

        if response.status_code >= 400:
            logger.error(
                f"Telegram request failed: {response.status_code} - {response.text[:200]}"
            )
        else:
            logger.debug(f"Telegram message sent for guest {event.guest_id}")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

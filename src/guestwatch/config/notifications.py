"""Notification configuration for watchdog events."""

from __future__ import annotations

from pydantic import BaseModel, Field

__all__ = ["NotificationsConfig", "TelegramConfig"]


class TelegramConfig(BaseModel):
    """Telegram bot used to relay watchdog events to a chat."""

    bot_token: str | None = Field(
        default=None,
        description="Telegram bot token (supports ${VAR} expansion)",
    )
    chat_id: str | None = Field(
        default=None,
        description="Chat that receives the messages",
    )
    api_url: str = Field(
        default="https://api.telegram.org",
        description="Telegram Bot API base URL",
    )
    timeout: float = Field(
        default=10.0,
        gt=0,
        description="Seconds to wait for the Bot API to answer",
    )

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)


class NotificationsConfig(BaseModel):
    """Where watchdog events are delivered besides the log."""

    telegram: TelegramConfig = Field(
        default_factory=TelegramConfig,
        description="Telegram notifications",
    )
    queue_size: int = Field(
        default=1000,
        ge=1,
        description="Maximum buffered events before the oldest are dropped",
    )

"""Watchdog events, buffered delivery and handlers."""

from guestwatch.events.base import EventHandler, EventKind, EventSink, GuestEvent
from guestwatch.events.handlers import LoggingEventHandler, TelegramEventHandler
from guestwatch.events.sink import BufferedEventSink

__all__ = [
    "BufferedEventSink",
    "EventHandler",
    "EventKind",
    "EventSink",
    "GuestEvent",
    "LoggingEventHandler",
    "TelegramEventHandler",
]

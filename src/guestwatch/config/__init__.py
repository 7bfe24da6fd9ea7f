"""
Configuration package for the guestwatch daemon.

Module structure:
- app.py: WatchdogDaemonConfig, loading and saving
- guests.py: per-guest watchdog policy (GuestConfig) and per-guest validation
- logging.py: LoggingSettings
- notifications.py: Telegram notification settings
"""

from guestwatch.config.app import (
    MonitorSettings,
    ProxmoxSettings,
    StatusServerSettings,
    WatchdogDaemonConfig,
    get_guestwatch_home,
    load_config,
    save_config,
)
from guestwatch.config.guests import ConfigurationError, GuestConfig, load_guest_configs
from guestwatch.config.logging import LoggingSettings
from guestwatch.config.notifications import NotificationsConfig, TelegramConfig

__all__ = [
    "ConfigurationError",
    "GuestConfig",
    "LoggingSettings",
    "MonitorSettings",
    "NotificationsConfig",
    "ProxmoxSettings",
    "StatusServerSettings",
    "TelegramConfig",
    "WatchdogDaemonConfig",
    "get_guestwatch_home",
    "load_config",
    "load_guest_configs",
    "save_config",
]

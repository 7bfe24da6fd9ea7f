"""
Shared utilities for CLI commands.
"""

import sys

import click

from guestwatch.config.app import WatchdogDaemonConfig, load_config


def load_config_or_exit(ctx: click.Context) -> WatchdogDaemonConfig:
    """Load the configuration selected with --config, exiting with a message on error."""
    try:
        return load_config(ctx.obj.get("config_path"))
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def format_uptime(seconds: float) -> str:
    """
    Format uptime in human-readable format.

    Args:
        seconds: Uptime in seconds

    Returns:
        Formatted string like "1h 23m 45s"
    """
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")

    return " ".join(parts)

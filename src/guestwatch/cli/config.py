"""
Configuration commands.
"""

import sys
from pathlib import Path

import click
import yaml

from guestwatch.config.app import default_config_path, generate_default_config

from .utils import load_config_or_exit


@click.group()
def config() -> None:
    """Create and check the watchdog configuration."""


@config.command()
@click.option("--force", is_flag=True, help="Overwrite an existing file")
@click.pass_context
def init(ctx: click.Context, force: bool) -> None:
    """Write a default configuration file."""
    path = Path(ctx.obj.get("config_path") or default_config_path()).expanduser()
    if path.exists() and not force:
        click.echo(f"Config file already exists: {path} (use --force to overwrite)", err=True)
        sys.exit(1)
    generate_default_config(str(path))
    click.echo(f"Wrote default configuration to {path}")


@config.command()
@click.pass_context
def validate(ctx: click.Context) -> None:
    """Check the configuration and every guest entry."""
    cfg = load_config_or_exit(ctx)
    guests, errors = cfg.load_guests()

    for guest in guests:
        click.echo(
            f"OK    {guest.label}: feed every {guest.feed_interval:g}s, "
            f"reset after {guest.grace:g}s"
            + (" [dry run]" if guest.dry_run else "")
        )
    for error in errors:
        click.echo(f"ERROR {error}", err=True)

    click.echo(f"{len(guests)} valid guest(s), {len(errors)} invalid")
    if errors:
        sys.exit(1)


@config.command()
@click.pass_context
def show(ctx: click.Context) -> None:
    """Print the effective configuration with secrets masked."""
    cfg = load_config_or_exit(ctx)
    data = cfg.model_dump(mode="python", exclude_none=True)
    for section, key in (
        ("proxmox", "password"),
        ("proxmox", "token_secret"),
    ):
        if data.get(section, {}).get(key):
            data[section][key] = "********"
    telegram = data.get("notifications", {}).get("telegram", {})
    if telegram.get("bot_token"):
        telegram["bot_token"] = "********"
    click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))

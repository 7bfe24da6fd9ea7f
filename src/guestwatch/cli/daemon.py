"""
Daemon commands: run the watchdog and query its status.
"""

import json
import logging
import sys
from pathlib import Path

import click
import httpx

from guestwatch import runner
from guestwatch.utils.status import format_status_message

from .utils import format_uptime, load_config_or_exit

logger = logging.getLogger(__name__)


@click.command()
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose debug output",
)
@click.pass_context
def run(ctx: click.Context, verbose: bool) -> None:
    """Run the watchdog in the foreground until SIGTERM/SIGINT."""
    config = load_config_or_exit(ctx)
    guests, errors = config.load_guests()
    click.echo(f"Watching {len(guests)} guest(s)")
    for error in errors:
        click.echo(f"Skipping: {error}", err=True)

    config_path = ctx.obj.get("config_path")
    verbose = verbose or ctx.obj.get("verbose", False)
    runner.main(config_path=Path(config_path) if config_path else None, verbose=verbose)


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Print the raw status JSON")
@click.option("--guest", "guest_id", default=None, help="Only show this guest")
@click.pass_context
def status(ctx: click.Context, as_json: bool, guest_id: str | None) -> None:
    """Show the health of every watched guest."""
    config = load_config_or_exit(ctx)
    host = config.status_server.host
    if host in ("0.0.0.0", "::"):
        host = "localhost"
    endpoint = f"http://{host}:{config.status_server.port}"

    try:
        if guest_id:
            response = httpx.get(f"{endpoint}/status/{guest_id}", timeout=5.0)
            if response.status_code == 404:
                click.echo(f"Unknown guest: {guest_id}", err=True)
                sys.exit(1)
            response.raise_for_status()
            guests = [response.json()]
        else:
            response = httpx.get(f"{endpoint}/status", timeout=5.0)
            response.raise_for_status()
            guests = response.json()["guests"]
        health = httpx.get(f"{endpoint}/health", timeout=5.0).json()
    except httpx.HTTPError as e:
        logger.debug(f"Status query failed: {e}")
        click.echo(format_status_message(running=False, endpoint=endpoint))
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(guests, indent=2))
        return

    uptime = health.get("uptime_seconds")
    click.echo(
        format_status_message(
            running=True,
            guests=guests,
            uptime=format_uptime(uptime) if uptime is not None else None,
            endpoint=endpoint,
        )
    )

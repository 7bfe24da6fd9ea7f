"""
guestwatch CLI entry point.
"""

import click

from guestwatch.utils.logging import setup_logging

from .config import config
from .daemon import run, status


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help="Path to custom configuration file",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose debug output",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """guestwatch - host-side software watchdog for virtual machine guests."""
    setup_logging(verbose)
    # Subcommands load the file themselves so `config validate` can report errors
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


cli.add_command(run)
cli.add_command(status)
cli.add_command(config)

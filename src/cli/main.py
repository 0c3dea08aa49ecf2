"""CLI entry point for the Gmail sync engine."""

import logging

import click
from dotenv import load_dotenv

from src.gmail.config import MailConfig

logger = logging.getLogger(__name__)

# Long-running commands log progress at INFO; one-shot commands stay quiet.
_LONG_RUNNING_COMMANDS = {"watch"}


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log at DEBUG level.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Mail sync engine. Sync, search, send and manage Gmail conversations."""
    load_dotenv()
    if verbose:
        level = logging.DEBUG
    elif ctx.invoked_subcommand in _LONG_RUNNING_COMMANDS:
        level = logging.INFO
    else:
        level = logging.WARNING  # keep CLI output clean; errors still surface
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    ctx.ensure_object(dict)
    ctx.obj = MailConfig.from_env()


# Import and register commands after cli is defined to avoid circular imports.
from src.cli.commands import download, mark_read, search, send, sync, trash, watch  # noqa: E402

cli.add_command(sync)
cli.add_command(search)
cli.add_command(send)
cli.add_command(download)
cli.add_command(mark_read)
cli.add_command(trash)
cli.add_command(watch)

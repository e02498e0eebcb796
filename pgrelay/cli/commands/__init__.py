import logging

import typer
from dotenv import load_dotenv
from rich.table import Table

from pgrelay.cli.console import console
from pgrelay.cli.run_commands import run_app
from pgrelay.constants import CHANNEL_EVENT_TYPES
from pgrelay.utils.env_paths import resolve_backend_env_path

_cli_logging_configured = False


def configure_cli_logging() -> None:
    """Configure CLI log levels once at runtime (not at import time)."""
    global _cli_logging_configured
    if _cli_logging_configured:
        return
    _cli_logging_configured = True

    for logger_name in ("asyncpg", "websockets"):
        logging.getLogger(logger_name).setLevel(logging.WARNING)


cli_app = typer.Typer(
    help=("""[bold]pgrelay CLI[/bold]\nRelay PostgreSQL notifications to WebSocket subscribers."""),
    no_args_is_help=True,
    rich_markup_mode="rich",
)


@cli_app.callback()
def cli_callback() -> None:
    """Configure CLI logging before command execution."""
    configure_cli_logging()


cli_app.add_typer(run_app, name="run", help="Run pgrelay services like the relay server.")


@cli_app.command(name="channels")
def list_channels() -> None:
    """Show the channels the relay listens on and the event type each one broadcasts as."""
    load_dotenv(resolve_backend_env_path())
    from pgrelay.config import settings  # noqa: PLC0415

    table = Table(title="Notification channels")
    table.add_column("Channel", style="cyan")
    table.add_column("Event type", style="green")
    table.add_column("Subscribed")
    for channel in sorted(set(CHANNEL_EVENT_TYPES) | set(settings.NOTIFY_CHANNELS)):
        event_type = CHANNEL_EVENT_TYPES.get(channel, "[red]unmapped (dropped)[/red]")
        subscribed = "yes" if channel in settings.NOTIFY_CHANNELS else "no"
        table.add_row(channel, event_type, subscribed)
    console.print(table)

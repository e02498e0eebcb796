"""pgrelay CLI package."""

__all__ = [
    "cli_app",
    "run_app",
]

from pgrelay.cli.commands import cli_app  # noqa: E402
from pgrelay.cli.run_commands import run_app  # noqa: E402

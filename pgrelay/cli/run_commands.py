import typer
import uvicorn
from dotenv import load_dotenv
from rich.panel import Panel

from pgrelay.cli.console import console
from pgrelay.utils.env_paths import resolve_backend_env_path

run_app = typer.Typer(help="Commands to run pgrelay services.")


@run_app.command(name="server")
def run_server(
    port: int | None = typer.Option(None, "--port", "-p", help="Port to listen on. Defaults to PORT from settings."),
    reload: bool = typer.Option(False, "--reload", help="Restart the server when source files change."),
) -> None:
    """Run the relay server."""
    load_dotenv(resolve_backend_env_path())
    from pgrelay.config import settings  # noqa: PLC0415

    port = port or settings.PORT
    console.print(
        Panel(
            f"[bold green]Starting pgrelay on port {port}[/bold green]\n"
            f"channels: {', '.join(settings.NOTIFY_CHANNELS)}\n"
            f"websocket path: {settings.WEBSOCKET_PATH}",
            border_style="green",
        )
    )
    uvicorn.run(
        "pgrelay.forge.api_app:create_api_app",
        host="0.0.0.0",
        port=port,
        log_level="info",
        reload=reload,
        access_log=False,
        factory=True,
    )

"""Server management commands for subgate CLI."""

import os
from typing import Optional

import typer
import uvicorn
from rich.console import Console

from subgate.config import Settings, get_settings

server_app = typer.Typer(help="API server management commands")
console = Console()


def create_app_from_settings(settings: Optional[Settings] = None):
    """Build the application with collaborators bound from settings.

    Used as the uvicorn application factory.
    """
    from subgate.analysis_service import create_analysis_service_client
    from subgate.api import create_app
    from subgate.file_repository import SubmissionFileRepository
    from subgate.registry import HttpSubmissionRegistry

    settings = settings or get_settings()
    analysis_client = create_analysis_service_client(settings)
    file_repository = None
    if analysis_client is not None:
        file_repository = SubmissionFileRepository.from_settings(settings)

    return create_app(
        registry=HttpSubmissionRegistry.from_settings(settings),
        analysis_client=analysis_client,
        file_repository=file_repository,
        settings=settings,
    )


@server_app.command("start")
def start(
    port: int = typer.Option(None, "--port", "-p", help="Port to run the server on (default: API_PORT)"),
    host: str = typer.Option(None, "--host", "-h", help="Host to bind to (default: API_HOST)"),
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable auto-reload"),
):
    """Start the subgate API server in the foreground."""
    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port

    if os.path.exists(".env"):
        console.print("[dim]Loaded .env file[/dim]")
    console.print(f"[green]✓[/green]  Starting subgate on [cyan]http://{host}:{port}[/cyan]")
    console.print(f"   Registry: [dim]{settings.registry_url}[/dim]")
    if settings.sequencing_submission_enabled:
        console.print(f"   Analysis service: [dim]{settings.sequencing_submission_url}[/dim]")
    else:
        console.print("   Sequencing submissions: [dim]disabled[/dim]")

    uvicorn.run(
        "subgate.cli.server:create_app_from_settings",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )

"""DynamoDB table commands for subgate CLI."""

import typer
from botocore.exceptions import ClientError
from rich.console import Console

from subgate.config import get_settings
from subgate.file_repository import SubmissionFileRepository

tables_app = typer.Typer(help="DynamoDB table management commands")
console = Console()


@tables_app.command("create")
def create(
    table_name: str = typer.Option(None, "--table", "-t", help="Table name (default: SUBMISSION_FILES_TABLE)"),
    region: str = typer.Option(None, "--region", help="AWS region (default: AWS_DEFAULT_REGION)"),
    profile: str = typer.Option(None, "--profile", help="AWS profile (default: AWS_PROFILE)"),
):
    """Create the submission files table if it does not exist."""
    settings = get_settings()
    repository = SubmissionFileRepository(
        table_name=table_name or settings.submission_files_table,
        region=region or settings.aws_default_region,
        profile=profile or settings.aws_profile,
    )
    try:
        repository.create_table_if_not_exists()
    except ClientError as e:
        console.print(f"[red]✗[/red]  Failed to create table {repository.table_name}: {e}")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green]  Table [cyan]{repository.table_name}[/cyan] is ready")

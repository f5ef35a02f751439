"""subgate CLI - submission gateway tooling using Typer."""

import json
import shutil
import tempfile
from pathlib import Path
from typing import Optional

import typer
import yaml  # type: ignore[import-untyped]
from rich.console import Console
from rich.table import Table

from subgate.cli.server import server_app
from subgate.cli.tables import tables_app
from subgate.exceptions import SubgateException
from subgate.file_validation import prevalidate_edit_file, prevalidate_new_data_file
from subgate.models import UploadedFile
from subgate.read_file import parse_file_to_records
from subgate.schema import Dictionary, Schema
from subgate.submission_handler import entity_name_from_file_name

console = Console()

app = typer.Typer(
    name="subgate",
    help="subgate - clinical data submission gateway",
    add_completion=True,
    no_args_is_help=True,
)

# Register subcommand groups
app.add_typer(server_app, name="server", help="API server management")
app.add_typer(tables_app, name="tables", help="DynamoDB table management")


def load_schema(schema_path: Path, data_file: Path) -> Schema:
    """Load a schema from a YAML or JSON file.

    The file holds either a single schema or a whole dictionary; in the
    latter case the schema is chosen from the data file's name.
    """
    with open(schema_path) as f:
        data = yaml.safe_load(f) or {}

    if "dictionary" in data or "schemas" in data:
        entity_name = entity_name_from_file_name(data_file.name)
        schema = Dictionary.from_dict(data).find_schema(entity_name)
        if schema is None:
            console.print(f"[red]✗[/red]  No schema named '{entity_name}' in {schema_path}")
            raise typer.Exit(1)
        return schema
    return Schema.from_dict(data)


@app.command("version")
def version():
    """Show subgate version."""
    from subgate import __version__
    console.print(f"subgate [cyan]{__version__}[/cyan]")


@app.command("validate")
def validate(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Data file (.tsv or .csv)"),
    schema_path: Path = typer.Option(..., "--schema", "-s", exists=True, dir_okay=False, help="Schema file (YAML or JSON)"),
    edit: bool = typer.Option(False, "--edit", help="Validate as an edit file (requires systemId)"),
):
    """Prevalidate a data file against an entity schema."""
    schema = load_schema(schema_path, file)
    prevalidate = prevalidate_edit_file if edit else prevalidate_new_data_file
    result = prevalidate(UploadedFile(path=file, original_name=file.name), schema)

    if result.is_valid:
        console.print(f"[green]✓[/green]  {file.name} is valid for schema '{schema.name}'")
        return

    table = Table(title=f"Batch errors: {file.name}")
    table.add_column("Type", style="red", no_wrap=True)
    table.add_column("Message")
    table.add_column("Batch", style="dim")
    error = result.error
    table.add_row(error.type.value, error.message, error.batch_name)
    console.print(table)
    raise typer.Exit(1)


@app.command("extract")
def extract(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Data file (.tsv or .csv)"),
    schema_path: Path = typer.Option(..., "--schema", "-s", exists=True, dir_okay=False, help="Schema file (YAML or JSON)"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write records to this JSON file"),
):
    """Print the records extracted from a data file as JSON."""
    schema = load_schema(schema_path, file)

    # Extraction consumes its input, so work on a copy
    with tempfile.NamedTemporaryFile(delete=False, suffix=file.suffix) as handle:
        copy_path = handle.name
    shutil.copyfile(file, copy_path)
    try:
        records = parse_file_to_records(UploadedFile(path=copy_path, original_name=file.name), schema)
    except SubgateException as e:
        console.print(f"[red]✗[/red]  {e.message}")
        raise typer.Exit(1)

    text = json.dumps(records, indent=2)
    if output:
        output.write_text(text + "\n")
        console.print(f"[green]✓[/green]  Wrote {len(records)} records to {output}")
    else:
        console.print_json(text)


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()

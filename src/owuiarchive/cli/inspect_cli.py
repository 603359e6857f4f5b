"""Commands for looking inside backup files without touching a server."""

import json
import tempfile
from pathlib import Path
from typing import List, Optional

import typer
from rich.table import Table

from owuiarchive.archive.reader import ContainerSummary, inspect_container
from owuiarchive.cli.common import LOG_LEVEL_OPTION, configure_logging, console, plain_container
from owuiarchive.core.errors import StructuralError


def _summarize(path: Path, decrypt_key: Optional[List[Path]]) -> ContainerSummary:
    if not path.exists():
        typer.echo(f"Error: {path} does not exist", err=True)
        raise typer.Exit(1)
    with tempfile.TemporaryDirectory() as tmpdir:
        container = plain_container(path, decrypt_key, Path(tmpdir))
        try:
            summary = inspect_container(container)
        except StructuralError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise typer.Exit(1)
    summary.path = path
    return summary


def info(
    path: Path = typer.Argument(..., help="Backup file or directory of legacy ZIPs"),
    decrypt_key: Optional[List[Path]] = typer.Option(None, "--decrypt-key", help="Key file for an encrypted backup"),
    as_json: bool = typer.Option(False, "--json", help="Print the summary as JSON"),
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level"),
):
    """
    Show what a backup contains.
    """
    configure_logging(log_level)
    summary = _summarize(path, decrypt_key)
    if as_json:
        typer.echo(json.dumps(summary.to_dict(), indent=2))
        return

    console.print(f"[bold]Backup:[/bold] {summary.path}")
    console.print(f"[bold]Format:[/bold] {summary.container_format.value}")
    manifest = summary.manifest
    if manifest is not None:
        console.print(f"[bold]Source:[/bold] {manifest.open_webui_url} {manifest.open_webui_version}".rstrip())
        console.print(f"[bold]Created:[/bold] {manifest.backup_timestamp}")
        console.print(f"[bold]Tool version:[/bold] {manifest.backup_tool_version}")
        console.print(f"[bold]Type:[/bold] {manifest.backup_type}")

    table = Table(title="Contents")
    table.add_column("Category", style="cyan")
    table.add_column("Items", style="magenta")
    table.add_column("Payload bytes", style="green")
    for category, count in summary.counts.items():
        table.add_row(category.value, str(count), str(summary.payload_bytes.get(category, 0)))
    console.print(table)
    console.print(f"[bold]Total items:[/bold] {summary.total}")


def verify(
    path: Path = typer.Argument(..., help="Backup file or directory of legacy ZIPs"),
    decrypt_key: Optional[List[Path]] = typer.Option(None, "--decrypt-key", help="Key file for an encrypted backup"),
    log_level: str = LOG_LEVEL_OPTION,
):
    """
    Check that a backup can be read completely.
    """
    configure_logging(log_level)
    summary = _summarize(path, decrypt_key)

    for problem in summary.problems:
        console.print(f"[red]Problem:[/red] {problem}")
    for dropped in summary.dropped:
        console.print(f"[yellow]Unreadable entry:[/yellow] {dropped}")

    if not summary.ok:
        console.print(f"[bold red]Verification failed[/bold red] ({summary.total} readable items)")
        raise typer.Exit(1)
    console.print(f"[bold green]Backup is valid[/bold green] ({summary.total} items)")

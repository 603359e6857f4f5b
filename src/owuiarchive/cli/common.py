"""
Helpers shared by the command modules.
"""

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from owuiarchive.client.openwebui import OpenWebUIClient
from owuiarchive.core.config import get_settings
from owuiarchive.core.errors import EncryptionError
from owuiarchive.encryption.fernet_service import ENCRYPTED_SUFFIX, FernetEncryptionService
from owuiarchive.schemas.results import RestoreReport

console = Console()

URL_OPTION = typer.Option(None, "--url", help="Open WebUI URL (default: OPEN_WEBUI_URL)")
API_KEY_OPTION = typer.Option(None, "--api-key", help="API key (default: OPEN_WEBUI_API_KEY or keyring)")
LOG_LEVEL_OPTION = typer.Option("INFO", "--log-level", help="Logging level")


def configure_logging(log_level: str) -> None:
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        typer.echo(f"Error: invalid log level: {log_level}", err=True)
        raise typer.Exit(1)

    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def build_client(url: Optional[str], api_key: Optional[str]) -> OpenWebUIClient:
    """Client from command line options, falling back to settings."""
    settings = get_settings()
    key = api_key or settings.api_key
    if not key:
        typer.echo("Error: no API key; set OPEN_WEBUI_API_KEY or pass --api-key", err=True)
        raise typer.Exit(1)
    return OpenWebUIClient(url or settings.open_webui_url, key, timeout=settings.request_timeout)


def plain_container(path: Path, decrypt_keys: Optional[List[Path]], workdir: Path) -> Path:
    """Decrypt path into workdir when it is encrypted; otherwise return it."""
    service = FernetEncryptionService()
    if not path.is_file() or not service.is_encrypted(path):
        return path

    identities = list(decrypt_keys or [])
    if not identities and get_settings().encryption_key_file:
        identities = [Path(get_settings().encryption_key_file)]
    if not identities:
        typer.echo(f"Error: {path.name} is encrypted; pass --decrypt-key", err=True)
        raise typer.Exit(1)

    name = path.name[:-len(ENCRYPTED_SUFFIX)] if path.name.endswith(ENCRYPTED_SUFFIX) else path.name
    try:
        return service.decrypt(path, identities, output=workdir / name)
    except EncryptionError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


def print_report(report: RestoreReport) -> None:
    table = Table(title=f"Restore of {Path(report.container).name} ({report.container_format})")
    table.add_column("Category", style="cyan")
    table.add_column("Created", style="green")
    table.add_column("Updated", style="green")
    table.add_column("Overwritten", style="yellow")
    table.add_column("Skipped")
    table.add_column("Failed", style="red")
    table.add_column("Files new/overwritten/skipped", style="magenta")

    for category_report in report.categories:
        counts = category_report.counts()
        stats = category_report.file_stats
        files = f"{stats.new}/{stats.overwritten}/{stats.skipped}" if (stats.new or stats.overwritten or stats.skipped) else "-"
        table.add_row(
            category_report.category.value,
            str(counts["created"]),
            str(counts["updated"]),
            str(counts["overwritten"]),
            str(counts["skipped"]),
            str(counts["failed"]),
            files,
        )
    console.print(table)

    for failure in report.failures():
        console.print(f"[red]Failed[/red] {failure.category.value} '{failure.key}': {failure.reason}")
    for category_report in report.categories:
        for reference in category_report.unresolved_references:
            console.print(f"[yellow]Unresolved reference[/yellow] {reference}")

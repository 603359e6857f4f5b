"""
Commands that create backups and encryption keys.
"""

import logging
from pathlib import Path
from typing import List, Optional

import typer

from owuiarchive.archive.layout import unified_filename
from owuiarchive.archive.writer import ArchiveWriter
from owuiarchive.cli.common import (
    API_KEY_OPTION,
    LOG_LEVEL_OPTION,
    URL_OPTION,
    build_client,
    configure_logging,
    console,
)
from owuiarchive.core.config import get_settings
from owuiarchive.core.errors import APIError, ContainerExistsError, EncryptionError
from owuiarchive.encryption.fernet_service import FernetEncryptionService
from owuiarchive.schemas.selection import Selection

logger = logging.getLogger(__name__)


def backup(
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Backup file (or directory with --legacy); defaults to the backups directory"
    ),
    legacy: bool = typer.Option(False, "--legacy", help="Write one ZIP per resource instead of a unified backup"),
    encrypt_key: Optional[List[Path]] = typer.Option(
        None, "--encrypt-key", help="Key file to encrypt for; repeat for several recipients"
    ),
    knowledge: bool = typer.Option(False, "--knowledge", help="Include knowledge bases"),
    models: bool = typer.Option(False, "--models", help="Include models"),
    tools: bool = typer.Option(False, "--tools", help="Include tools"),
    prompts: bool = typer.Option(False, "--prompts", help="Include prompts"),
    files: bool = typer.Option(False, "--files", help="Include files"),
    chats: bool = typer.Option(False, "--chats", help="Include chats"),
    users: bool = typer.Option(False, "--users", help="Include users"),
    groups: bool = typer.Option(False, "--groups", help="Include groups"),
    feedbacks: bool = typer.Option(False, "--feedbacks", help="Include feedback"),
    url: Optional[str] = URL_OPTION,
    api_key: Optional[str] = API_KEY_OPTION,
    progress: bool = typer.Option(True, "--progress/--no-progress", help="Show progress bars"),
    log_level: str = LOG_LEVEL_OPTION,
):
    """
    Back up resources from an Open WebUI instance.

    Without category flags every category is included.
    """
    configure_logging(log_level)
    selection = Selection.from_flags(
        knowledge=knowledge, models=models, tools=tools, prompts=prompts, files=files,
        chats=chats, users=users, groups=groups, feedbacks=feedbacks,
    )
    writer = ArchiveWriter(build_client(url, api_key), show_progress=progress)
    backups_dir = Path(get_settings().backups_dir)

    try:
        if legacy:
            written = writer.write_legacy(selection, output or backups_dir)
            console.print(f"[bold green]Created {len(written)} legacy backup file(s)[/bold green]")
            return

        target = output or backups_dir / unified_filename()
        manifest = writer.write(selection, target)
    except ContainerExistsError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    except APIError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    console.print(f"[bold]Backup:[/bold] {target}")
    console.print(f"[bold]Items:[/bold] {manifest.item_count}")
    console.print(f"[bold]Types:[/bold] {', '.join(manifest.contained_types) or 'none'}")

    if encrypt_key:
        try:
            encrypted = FernetEncryptionService().encrypt(target, encrypt_key, remove_plain=True)
        except EncryptionError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise typer.Exit(1)
        console.print(f"[bold]Encrypted:[/bold] {encrypted}")


def keygen(
    path: Path = typer.Argument(..., help="Where to write the new key file"),
):
    """
    Generate an encryption key file.
    """
    try:
        FernetEncryptionService().generate_key(path)
    except EncryptionError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    console.print(f"[bold green]Key written to {path}[/bold green]")
    console.print("[yellow]Keep this file safe; backups encrypted for it cannot be restored without it.[/yellow]")

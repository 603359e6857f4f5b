"""
Restore command.
"""

import logging
import tempfile
from pathlib import Path
from typing import List, Optional

import typer

from owuiarchive.cli.common import (
    API_KEY_OPTION,
    LOG_LEVEL_OPTION,
    URL_OPTION,
    build_client,
    configure_logging,
    console,
    plain_container,
    print_report,
)
from owuiarchive.core.errors import StructuralError
from owuiarchive.migration.engine import MigrationEngine
from owuiarchive.schemas.selection import Selection

logger = logging.getLogger(__name__)


def restore(
    path: Path = typer.Argument(..., help="Unified backup, legacy ZIP, or directory of legacy ZIPs"),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace resources that already exist"),
    unified: bool = typer.Option(False, "--unified", help="Fail unless the backup is a unified backup"),
    decrypt_key: Optional[List[Path]] = typer.Option(
        None, "--decrypt-key", help="Key file for an encrypted backup; may be repeated"
    ),
    knowledge: bool = typer.Option(False, "--knowledge", help="Restore knowledge bases"),
    models: bool = typer.Option(False, "--models", help="Restore models"),
    tools: bool = typer.Option(False, "--tools", help="Restore tools"),
    prompts: bool = typer.Option(False, "--prompts", help="Restore prompts"),
    files: bool = typer.Option(False, "--files", help="Restore files"),
    chats: bool = typer.Option(False, "--chats", help="Restore chats"),
    users: bool = typer.Option(False, "--users", help="Restore users"),
    groups: bool = typer.Option(False, "--groups", help="Restore groups"),
    feedbacks: bool = typer.Option(False, "--feedbacks", help="Restore feedback"),
    url: Optional[str] = URL_OPTION,
    api_key: Optional[str] = API_KEY_OPTION,
    progress: bool = typer.Option(True, "--progress/--no-progress", help="Show progress bars"),
    log_level: str = LOG_LEVEL_OPTION,
):
    """
    Restore a backup into an Open WebUI instance.

    Without category flags every category is restored.
    """
    configure_logging(log_level)
    if not path.exists():
        typer.echo(f"Error: {path} does not exist", err=True)
        raise typer.Exit(1)

    selection = Selection.from_flags(
        knowledge=knowledge, models=models, tools=tools, prompts=prompts, files=files,
        chats=chats, users=users, groups=groups, feedbacks=feedbacks,
    )
    engine = MigrationEngine(build_client(url, api_key), show_progress=progress)

    with tempfile.TemporaryDirectory() as tmpdir:
        container = plain_container(path, decrypt_key, Path(tmpdir))
        try:
            report = engine.restore(container, selection, overwrite=overwrite, expect_unified=unified)
        except StructuralError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise typer.Exit(1)

    print_report(report)
    if not report.succeeded:
        console.print("[bold red]Every resource of at least one category failed to restore[/bold red]")
        raise typer.Exit(1)

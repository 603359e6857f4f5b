"""
Command that runs the HTTP API.
"""

import logging
from typing import List, Optional

import psutil
import typer

from owuiarchive.cli.common import LOG_LEVEL_OPTION, configure_logging, console
from owuiarchive.core.config import get_settings

logger = logging.getLogger(__name__)


def get_processes_using_port(port: int) -> List[int]:
    """Find process IDs listening on the specified port."""
    try:
        connections = psutil.net_connections(kind='inet')
    except psutil.AccessDenied:
        logger.debug("Not allowed to list connections, skipping port check")
        return []
    return sorted({conn.pid for conn in connections
                   if conn.laddr and conn.laddr.port == port
                   and conn.status == psutil.CONN_LISTEN and conn.pid})


def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
    port: Optional[int] = typer.Option(None, "--port", help="Port (default: OWUI_SERVER_PORT)"),
    debug: bool = typer.Option(False, "--debug", help="Run Flask in debug mode"),
    log_level: str = LOG_LEVEL_OPTION,
):
    """
    Serve the backup/restore HTTP API.
    """
    configure_logging(log_level)
    settings = get_settings()
    port = port or settings.server_port

    pids = get_processes_using_port(port)
    if pids:
        console.print(f"[bold red]Error:[/bold red] port {port} is in use by process(es) {', '.join(map(str, pids))}")
        raise typer.Exit(1)

    from owuiarchive.api import create_app

    app = create_app(settings)
    console.print(f"[bold]Serving API on http://{host}:{port}[/bold] (backups in {settings.backups_dir})")
    app.run(host=host, port=port, debug=debug)

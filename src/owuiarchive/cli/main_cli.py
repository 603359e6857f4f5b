"""
Top-level CLI that registers the commands of the backup, restore, inspect
and server modules.
"""

import typer

from owuiarchive.cli.backup_cli import backup, keygen
from owuiarchive.cli.inspect_cli import info, verify
from owuiarchive.cli.restore_cli import restore
from owuiarchive.cli.server_cli import serve

main_app = typer.Typer(help="Back up and restore Open WebUI resources")

main_app.command("backup")(backup)
main_app.command("restore")(restore)
main_app.command("info")(info)
main_app.command("verify")(verify)
main_app.command("keygen")(keygen)
main_app.command("serve")(serve)


def main():
    main_app()

if __name__ == "__main__":
    main()

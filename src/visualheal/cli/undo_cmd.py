"""visualheal undo command."""

from __future__ import annotations

from pathlib import Path

import click
from rich.markup import escape

from visualheal.core.config import get_state_dir, load_config
from visualheal.core.errors import VisualHealError
from visualheal.core.output import console, error_console, print_backup_entries, print_restored
from visualheal.fix.backup import BackupManager


@click.command()
@click.argument("patch_id", required=False)
@click.option("--last", is_flag=True, help="Undo every file from the last patch snapshot")
@click.option("--list", "list_all", is_flag=True, help="List all undoable patches")
def undo(patch_id: str | None, last: bool, list_all: bool):
    """Restore stylesheets from patch backups.

    Pass a PATCH_ID to undo a specific patch, or use --last to undo the
    most recent snapshot.
    """
    project_path = Path.cwd()
    config = load_config(project_path)
    manager = BackupManager(get_state_dir(project_path, config) / "backups")

    if list_all:
        print_backup_entries(manager.list_entries())
        return

    try:
        if last:
            entries = manager.undo_last_session()
            if not entries:
                console.print("\n  No recent patch to undo.\n")
                return
            console.print("\n  [bold]Undoing last patch snapshot:[/bold]\n")
            for entry in entries:
                print_restored(entry)
            console.print()
            return

        if patch_id:
            print_restored(manager.undo(patch_id))
            return
    except VisualHealError as exc:
        error_console.print(f"\n  [red]{escape(str(exc))}[/red]\n")
        raise SystemExit(1)

    console.print("\n  Usage: visualheal undo <PATCH_ID> or visualheal undo --last")
    console.print("  Run `visualheal undo --list` to see available undos.\n")

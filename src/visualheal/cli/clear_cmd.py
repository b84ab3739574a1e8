"""visualheal clear command."""

from __future__ import annotations

from pathlib import Path

import click
from rich.prompt import Confirm

from visualheal.confirm.store import ConfirmationStore
from visualheal.core.output import console


@click.command()
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
def clear(yes: bool):
    """Drop all pending and processed confirmations."""
    if not yes:
        if not Confirm.ask("  Clear all confirmation history?", default=False):
            console.print("  [dim]Cancelled.[/dim]")
            return

    store = ConfirmationStore.for_project(Path.cwd())
    store.clear()
    console.print("\n  Confirmation history cleared.\n")

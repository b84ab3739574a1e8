"""visualheal confirm commands."""

from __future__ import annotations

from pathlib import Path

import click
from rich.markup import escape

from visualheal.confirm.store import ConfirmationStore
from visualheal.core.errors import VisualHealError
from visualheal.core.output import (
    error_console,
    print_confirmation_result,
    print_confirmations,
)


def _open_store() -> ConfirmationStore:
    store = ConfirmationStore.for_project(Path.cwd())
    store.initialize()
    return store


@click.group()
def confirm():
    """Review detected visual changes."""
    pass


@confirm.command("list")
@click.option("--all", "show_all", is_flag=True, help="Include processed confirmations")
def list_confirmations(show_all: bool):
    """List pending (and optionally processed) confirmations."""
    store = _open_store()
    print_confirmations(store.get_all_pending_confirmations(), title="Pending Confirmations")
    if show_all:
        print_confirmations(store.get_all_processed_confirmations(), title="Processed Confirmations")


@confirm.command()
@click.argument("record_ids", nargs=-1, required=True)
def approve(record_ids: tuple[str, ...]):
    """Mark changes as intended; their screenshots become the new baseline."""
    _decide(record_ids, True)


@confirm.command()
@click.argument("record_ids", nargs=-1, required=True)
def reject(record_ids: tuple[str, ...]):
    """Mark changes as regressions that need a fix."""
    _decide(record_ids, False)


def _decide(record_ids: tuple[str, ...], is_intended: bool) -> None:
    store = _open_store()
    failed = False
    for record_id in record_ids:
        try:
            record = store.process_confirmation(record_id, is_intended)
        except VisualHealError as exc:
            error_console.print(f"  [red]❌ {escape(record_id)}[/red]  {escape(str(exc))}")
            failed = True
            continue
        print_confirmation_result(record)
    if failed:
        raise SystemExit(1)

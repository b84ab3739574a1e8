"""Rich terminal formatting for visualheal output.

The CLI commands print through these helpers. :func:`print_healing_result`
is for scripts that embed :class:`~visualheal.heal.orchestrator.Orchestrator`
with their own capture, compare and fix-generation services; no command
drives a healing run, since those services live outside this package.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from visualheal.core.models import (
    BackupEntry,
    BatchResult,
    ConfirmationRecord,
    FixRecord,
    ProcessedConfirmation,
)

if TYPE_CHECKING:
    from visualheal.heal.orchestrator import HealingResult

console = Console()
error_console = Console(stderr=True)


def diff_color(diff_percentage: float, threshold: float = 0.1) -> str:
    """Return color name based on how far a diff is over threshold."""
    if diff_percentage <= threshold:
        return "green"
    elif diff_percentage <= threshold * 10:
        return "yellow"
    return "red"


def decision_label(record: ConfirmationRecord) -> str:
    if not isinstance(record, ProcessedConfirmation):
        return "[yellow]pending[/yellow]"
    if record.is_intended:
        label = "[green]intended[/green]"
        if record.baseline_updated_at:
            label += " [dim](baseline updated)[/dim]"
        return label
    return "[red]regression[/red]"


def print_confirmations(records: list[ConfirmationRecord], title: str = "Confirmations") -> None:
    """Print confirmation records as a table."""
    if not records:
        console.print(f"\n  No {title.lower()}.\n")
        return

    table = Table(title=title, title_justify="left", show_edge=False, pad_edge=False)
    table.add_column("ID", style="bold")
    table.add_column("Page")
    table.add_column("Diff", justify="right")
    table.add_column("Status")
    table.add_column("Created", style="dim")

    for record in sorted(records, key=lambda r: r.created_at):
        color = diff_color(record.diff_percentage)
        table.add_row(
            record.id,
            record.page,
            f"[{color}]{record.diff_percentage:.2f}%[/{color}]",
            decision_label(record),
            record.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print()
    console.print(table)
    console.print()


def print_confirmation_result(record: ProcessedConfirmation) -> None:
    verdict = "intended" if record.is_intended else "regression"
    color = "green" if record.is_intended else "red"
    console.print(f"  [{color}]✅ {record.id}[/{color}]  marked as {verdict}")


def print_batch_result(result: BatchResult) -> None:
    """Print summary after a baseline update pass."""
    console.print()
    console.print(f"  Processed {result.processed} confirmation(s).")
    if result.updated:
        console.print(f"  [green]{result.updated} baseline(s) updated.[/green]")
    if result.skipped:
        console.print(f"  [yellow]{result.skipped} skipped.[/yellow]")
    for record_id in result.failed:
        console.print(f"     [red]-> {record_id} failed; see log for details[/red]")
    console.print()


def print_healing_result(result: HealingResult) -> None:
    """Print the outcome of one orchestrator run."""
    from visualheal.heal.orchestrator import PipelineState

    if result.succeeded:
        border = "green"
    elif result.state is PipelineState.AWAITING_DECISION:
        border = "yellow"
    else:
        border = "red"

    lines = [""]
    lines.append("  " + " -> ".join(s.value for s in result.states))
    lines.append("")

    if result.candidate:
        source = "knowledge base" if result.from_cache else "generator"
        lines.append(
            f"  Fix: {escape(result.candidate.selector)} {{ {result.candidate.property}: "
            f"{escape(result.candidate.value)} }}  [dim]({source})[/dim]"
        )
        if result.candidate.rationale:
            lines.append(f"  {escape(result.candidate.rationale)}")
    if result.patch:
        lines.append(f"  {result.patch.file}:{result.patch.line}")
        lines.append(f"  [red]- {escape(result.patch.old_value)}[/red]")
        lines.append(f"  [green]+ {escape(result.patch.new_value)}[/green]")
    if result.verification:
        v = result.verification
        color = "green" if v.passed else "red"
        lines.append(
            f"  Verification: [{color}]{v.outcome.value.upper()}[/{color}]"
            f"  ({v.diff_percentage:.2f}% diff, threshold {v.threshold:.2f}%)"
        )
    if result.error:
        lines.append(f"  [yellow]{escape(result.error)}[/yellow]")
    lines.append("")

    console.print(Panel(
        "\n".join(lines),
        title=f"[bold]visualheal: {result.record_id} ({result.page_name})[/bold]",
        border_style=border,
        padding=(0, 1),
    ))


def print_backup_entries(entries: list[BackupEntry]) -> None:
    if not entries:
        console.print("\n  No undoable patches found.\n")
        return

    console.print("\n  [bold]Undoable Patches[/bold]\n")
    for entry in entries:
        state = "[dim]released[/dim]" if entry.released else "[yellow]held[/yellow]"
        console.print(f"  {entry.patch_id}  {entry.file}  [{entry.timestamp}]  {state}")
    console.print()


def print_restored(entry: BackupEntry) -> None:
    console.print(f"  [green]✅ {entry.patch_id}[/green]  restored {entry.file}")


def print_fix_records(records: list[FixRecord]) -> None:
    """Print the knowledge base as a table."""
    if not records:
        console.print("\n  Knowledge base is empty.\n")
        return

    table = Table(title="Known Fixes", title_justify="left", show_edge=False, pad_edge=False)
    table.add_column("Fingerprint", style="dim")
    table.add_column("Selector", style="bold")
    table.add_column("Property")
    table.add_column("Value", style="green")
    table.add_column("Successes", justify="right")
    table.add_column("Last applied", style="dim")

    for record in sorted(records, key=lambda r: r.applied_at, reverse=True):
        table.add_row(
            record.fingerprint[:12],
            escape(record.selector),
            record.property,
            escape(record.value),
            str(record.success_count),
            record.applied_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print()
    console.print(table)
    console.print()

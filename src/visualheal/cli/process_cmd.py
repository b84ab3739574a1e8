"""visualheal process command."""

from __future__ import annotations

from pathlib import Path

import click

from visualheal.confirm.batch import auto_approve_pending, process_confirmed_changes
from visualheal.confirm.store import ConfirmationStore
from visualheal.core.config import is_ci_environment, load_config
from visualheal.core.output import console, print_batch_result


@click.command()
@click.option("--auto-approve", is_flag=True, help="Approve every pending change first")
def process(auto_approve: bool):
    """Update baselines for every change confirmed as intended.

    In CI (CI=true or GITHUB_ACTIONS=true) pending changes are approved
    automatically unless `auto_approve_in_ci = false` is configured.
    """
    project_path = Path.cwd()
    config = load_config(project_path)
    store = ConfirmationStore.for_project(project_path, config)
    store.initialize()

    if auto_approve or (config.confirm.auto_approve_in_ci and is_ci_environment()):
        approved = auto_approve_pending(store)
        if approved:
            console.print(f"\n  Auto-approved {len(approved)} pending change(s).")

    result = process_confirmed_changes(store)
    print_batch_result(result)
    if result.failed:
        raise SystemExit(1)

"""visualheal kb commands."""

from __future__ import annotations

import json
from pathlib import Path

import click

from visualheal.core.config import get_state_dir, load_config
from visualheal.core.output import print_fix_records
from visualheal.fix.knowledge import KNOWLEDGE_BASE_FILE, KnowledgeBase


@click.group()
def kb():
    """Inspect the knowledge base of verified fixes."""
    pass


@kb.command("list")
@click.option("--json", "as_json", is_flag=True, help="Export as JSON")
def list_fixes(as_json: bool):
    """List every verified fix, most recently applied first."""
    project_path = Path.cwd()
    config = load_config(project_path)
    knowledge = KnowledgeBase(get_state_dir(project_path, config) / KNOWLEDGE_BASE_FILE)
    records = knowledge.entries()

    if as_json:
        click.echo(json.dumps({r.fingerprint: r.to_dict() for r in records}, indent=2))
        return

    print_fix_records(records)

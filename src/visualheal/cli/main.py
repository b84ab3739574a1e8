"""Click CLI entry point for visualheal."""

from __future__ import annotations

import logging

import click
from rich.logging import RichHandler

from visualheal._version import __version__
from visualheal.core.output import error_console


@click.group()
@click.version_option(version=__version__, prog_name="visualheal")
@click.option("--verbose", "-v", is_flag=True, help="Show log output from every component")
def cli(verbose: bool):
    """visualheal - decide, repair and verify visual regressions.

    Review detected screenshot diffs, promote intended changes to baseline
    and undo stylesheet patches.
    """
    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(message)s",
            handlers=[RichHandler(console=error_console, show_path=False)],
        )


# Import and register subcommands
from visualheal.cli.confirm_cmd import confirm  # noqa: E402
from visualheal.cli.process_cmd import process  # noqa: E402
from visualheal.cli.clear_cmd import clear  # noqa: E402
from visualheal.cli.undo_cmd import undo  # noqa: E402
from visualheal.cli.kb_cmd import kb  # noqa: E402

cli.add_command(confirm)
cli.add_command(process)
cli.add_command(clear)
cli.add_command(undo)
cli.add_command(kb)


if __name__ == "__main__":
    cli()

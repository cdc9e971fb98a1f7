"""Command-line interface for synclink.

This module provides the main CLI entry point and assembles all commands.

Commands:
- run: Start the sync daemon for a project
- state: Show the persisted sync state of a project
"""

from __future__ import annotations

import click

from synclink.daemon.cli.config import configure_logging, resolve_project_hash
from synclink.daemon.cli.run import run
from synclink.daemon.cli.state import state


@click.group()
@click.version_option(package_name="synclink")
def cli() -> None:
    """synclink - Sync code files between a project directory and the plugin."""


cli.add_command(run)
cli.add_command(state)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Helpers
    "configure_logging",
    "resolve_project_hash",
]

"""Run command for synclink CLI.

Commands:
- run: Start the sync daemon for a project
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from pathlib import Path

import click

from synclink.daemon.cli.config import configure_logging, resolve_project_hash

LOG_LEVELS = ["debug", "info", "warning", "error"]


@click.command()
@click.argument("project_hash", required=False)
@click.option("--name", "-n", help="Project name, used when creating the project directory.")
@click.option(
    "--dir",
    "-d",
    "directory",
    type=click.Path(file_okay=False, path_type=Path),
    help="Project directory to sync into.",
)
@click.option("--port", "-p", type=int, help="WebSocket port (default: derived from the project).")
@click.option("--verbose", "-v", is_flag=True, help="Show debug output.")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    help="Minimum level of log messages to print.",
)
@click.option(
    "--dangerously-auto-delete",
    is_flag=True,
    help="Delete files in the plugin without asking when they are deleted locally.",
)
def run(
    project_hash: str | None,
    name: str | None,
    directory: Path | None,
    port: int | None,
    verbose: bool,
    log_level: str | None,
    dangerously_auto_delete: bool,
) -> None:
    """Sync a project's code files with the plugin.

    PROJECT_HASH identifies the project; it can be omitted inside a project
    directory created by an earlier run.
    """
    from synclink.core.config import DaemonConfig
    from synclink.core.hashing import short_project_hash
    from synclink.daemon.sync.controller import SyncController
    from synclink.daemon.sync.types import SyncError

    if log_level:
        level = getattr(logging, log_level.upper())
    else:
        level = logging.DEBUG if verbose else logging.INFO
    configure_logging(level)

    resolved_hash = resolve_project_hash(project_hash, directory)
    if not resolved_hash:
        click.echo("Error: No project hash given and none found in this directory.", err=True)
        click.echo("Usage: synclink run <project-hash>", err=True)
        sys.exit(1)

    config = DaemonConfig(
        project_hash=resolved_hash,
        port=port,
        dangerously_auto_delete=dangerously_auto_delete,
        explicit_dir=directory,
        explicit_name=name,
    )
    if dangerously_auto_delete:
        click.echo(
            click.style("Local deletes will be applied in the plugin without confirmation.", fg="yellow")
        )
    click.echo(f"Project {short_project_hash(resolved_hash)} on port {config.port}")

    controller = SyncController(config)
    try:
        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(controller.run())
    except SyncError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo("Stopped.")

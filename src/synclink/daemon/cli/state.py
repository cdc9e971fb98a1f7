"""State command for synclink CLI.

Commands:
- state: Print the persisted sync state of a project directory
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import click

from synclink.core.paths import pluralize
from synclink.daemon.state import PersistedStateStore


@click.command()
@click.option(
    "--dir",
    "-d",
    "directory",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
    show_default=True,
    help="Project directory.",
)
def state(directory: Path) -> None:
    """Show which files have completed a sync, and when."""
    store = PersistedStateStore(directory)
    if not store.path.exists():
        click.echo(f"No sync state in {directory}")
        return

    files = store.load()
    click.echo(f"{pluralize(len(files), 'synced file')} in {store.path}")
    for file_name in sorted(files):
        entry = files[file_name]
        synced_at = datetime.fromtimestamp(entry.timestamp / 1000).strftime("%Y-%m-%d %H:%M:%S")
        click.echo(f"  {file_name}  {synced_at}  {entry.content_hash[:12]}")

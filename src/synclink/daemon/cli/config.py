"""Logging and project helpers for the synclink CLI.

This module provides shared functions used across CLI commands.
"""

from __future__ import annotations

import logging
from pathlib import Path

import click

from synclink.daemon.project import get_project_hash_from_cwd, get_project_hash_from_dir

LEVEL_STYLES = {
    logging.DEBUG: {"dim": True},
    logging.WARNING: {"fg": "yellow"},
    logging.ERROR: {"fg": "red"},
    logging.CRITICAL: {"fg": "red", "bold": True},
}


class ClickEchoHandler(logging.Handler):
    """Logging handler that prints through ``click.echo``.

    Warnings and errors go to stderr and are colored.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            style = LEVEL_STYLES.get(record.levelno)
            if style:
                msg = click.style(msg, **style)
            click.echo(msg, err=record.levelno >= logging.WARNING)
        except Exception:
            self.handleError(record)


def configure_logging(level: int = logging.INFO) -> logging.Handler:
    """Route ``synclink`` log records to the console.

    Args:
        level: Minimum level to print.

    Returns:
        The installed handler.
    """
    handler = ClickEchoHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.setLevel(level)

    synclink_logger = logging.getLogger("synclink")
    for existing in synclink_logger.handlers[:]:
        synclink_logger.removeHandler(existing)
    synclink_logger.addHandler(handler)
    synclink_logger.setLevel(level)
    synclink_logger.propagate = False
    return handler


def resolve_project_hash(project_hash: str | None, explicit_dir: Path | None) -> str | None:
    """Project hash from the argument, ``--dir`` or the current directory."""
    if project_hash:
        return project_hash
    if explicit_dir is not None:
        found = get_project_hash_from_dir(explicit_dir)
        if found:
            return found
    return get_project_hash_from_cwd()

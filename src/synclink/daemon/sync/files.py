"""Filesystem operations on the synced files directory.

This module provides:
- list_files: current state of the files directory
- read_file_safe: read one file, None on any error
- write_remote_files: apply remote content to disk
- delete_local_file: remove a file on behalf of the remote side
- filter_echoed_files: drop inbound files that echo our own sends

Writes and deletes update the HashTracker before touching the disk, so the
watcher event caused by the mutation is recognized as an echo.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Iterable
from pathlib import Path

from synclink.core.paths import (
    is_supported_extension,
    normalize_path,
    pluralize,
    sanitize_file_path,
    sanitize_relative_path,
)
from synclink.daemon.sync.hash_tracker import HashTracker
from synclink.daemon.sync.ignore import IgnorePatterns
from synclink.daemon.sync.types import FileRecord

logger = logging.getLogger(__name__)


def now_ms() -> float:
    """Current wall-clock time in milliseconds since the epoch."""
    return time.time() * 1000


def resolve_remote_reference(files_dir: Path, raw_name: str) -> tuple[str, Path]:
    """Map a remote file name to its relative and absolute local paths."""
    relative = sanitize_relative_path(raw_name)
    return relative, Path(files_dir) / relative


def list_files(files_dir: Path, ignore: IgnorePatterns | None = None) -> list[FileRecord]:
    """List every supported file under ``files_dir``.

    Names keep their on-disk casing. Unreadable files are skipped with a
    warning.

    Args:
        files_dir: Root of the synced files.
        ignore: Patterns of paths to leave out.

    Returns:
        Files sorted by name.
    """
    ignore = ignore or IgnorePatterns()
    files_dir = Path(files_dir)
    files: list[FileRecord] = []

    def _on_error(error: OSError) -> None:
        logger.warning("Failed to list %s: %s", error.filename, error)

    for root, dirs, names in os.walk(files_dir, onerror=_on_error):
        root_path = Path(root)
        rel_root = root_path.relative_to(files_dir).as_posix()
        rel_root = "" if rel_root == "." else rel_root
        dirs[:] = sorted(
            d for d in dirs if not ignore.should_ignore(f"{rel_root}/{d}/".lstrip("/"))
        )

        for name in sorted(names):
            if not is_supported_extension(name):
                continue
            rel_path = normalize_path(f"{rel_root}/{name}").lstrip("/")
            if ignore.should_ignore(rel_path):
                continue

            entry_path = root_path / name
            try:
                content = entry_path.read_text(encoding="utf-8")
                modified_at = entry_path.stat().st_mtime * 1000
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Failed to read %s: %s", entry_path, e)
                continue

            files.append(
                FileRecord(
                    name=sanitize_file_path(rel_path, capitalize=False).path,
                    content=content,
                    modified_at=modified_at,
                )
            )

    return files


def read_file_safe(file_name: str, files_dir: Path) -> str | None:
    """Read a synced file, returning None if it cannot be read."""
    _, path = resolve_remote_reference(files_dir, file_name)
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None


def write_remote_files(
    files: Iterable[FileRecord],
    files_dir: Path,
    hash_tracker: HashTracker,
) -> list[FileRecord]:
    """Write remote files to disk.

    A failure on one file is logged and does not stop the others.

    Returns:
        The files actually written, with their local relative names.
    """
    files = list(files)
    logger.debug("Writing %s", pluralize(len(files), "remote file"))
    written: list[FileRecord] = []

    for file in files:
        relative, path = resolve_remote_reference(files_dir, file.name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            hash_tracker.remember(relative, file.content)
            path.write_text(file.content, encoding="utf-8")
        except OSError as e:
            logger.warning("Failed to write file %s: %s", file.name, e)
            continue

        logger.debug("Wrote file: %s", relative)
        written.append(FileRecord(relative, file.content, file.modified_at))

    return written


def delete_local_file(file_name: str, files_dir: Path, hash_tracker: HashTracker) -> bool:
    """Delete a file on behalf of the remote side.

    Returns:
        True when the file is gone (including when it was already missing).
    """
    relative, path = resolve_remote_reference(files_dir, file_name)
    hash_tracker.mark_delete(relative)
    try:
        path.unlink()
    except FileNotFoundError:
        hash_tracker.forget(relative)
        logger.debug("File already deleted: %s", relative)
        return True
    except OSError as e:
        hash_tracker.clear_delete(relative)
        logger.warning("Failed to delete file %s: %s", file_name, e)
        return False

    hash_tracker.forget(relative)
    logger.debug("Deleted file: %s", relative)
    return True


def filter_echoed_files(
    files: Iterable[FileRecord], hash_tracker: HashTracker
) -> list[FileRecord]:
    """Drop files whose content matches the last hash we remembered."""
    return [f for f in files if not hash_tracker.should_skip(f.name, f.content)]

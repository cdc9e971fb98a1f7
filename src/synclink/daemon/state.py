"""Persisted sync state for the daemon.

This module provides:
- PersistedStateStore: JSON document with the last synced hash and remote
  timestamp of every file
- normalize_persisted_file_name: key normalization applied on load

File format::

    {"version": 1, "files": {"<path>": {"timestamp": 0, "contentHash": ""}}}

A version mismatch or an unreadable document is treated as "no persisted
state". The next snapshot comparison re-derives the truth from file content.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from synclink.core.config import STATE_FILE_NAME
from synclink.core.paths import ensure_extension, normalize_path
from synclink.daemon.sync.types import PersistedFileState

logger = logging.getLogger(__name__)

STATE_VERSION = 1


def normalize_persisted_file_name(file_name: str) -> str:
    """Normalize a persisted key, appending the default extension if missing."""
    return ensure_extension(normalize_path(file_name.strip()))


class PersistedStateStore:
    """Reads and writes the persisted sync state of one project directory."""

    def __init__(self, project_dir: Path) -> None:
        """Initialize the store.

        Args:
            project_dir: Project directory holding the state file.
        """
        self._path = Path(project_dir) / STATE_FILE_NAME

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, PersistedFileState]:
        """Load the persisted state.

        Returns:
            Entries keyed by normalized file name; empty when the file is
            missing, corrupt, or written by another format version.
        """
        result: dict[str, PersistedFileState] = {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.debug("No persisted state found (first run)")
            return result
        except (OSError, ValueError) as e:
            logger.warning("Failed to load persisted state: %s", e)
            return result

        if not isinstance(data, dict) or data.get("version") != STATE_VERSION:
            version = data.get("version") if isinstance(data, dict) else None
            logger.warning(
                "State file version mismatch (expected %s, got %s). "
                "Ignoring persisted state.",
                STATE_VERSION,
                version,
            )
            return result

        files = data.get("files")
        if not isinstance(files, dict):
            logger.warning("Persisted state has no file table, ignoring it")
            return result

        for file_name, entry in files.items():
            try:
                state = PersistedFileState(
                    content_hash=str(entry["contentHash"]),
                    timestamp=float(entry["timestamp"]),
                )
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed persisted entry %r", file_name)
                continue

            normalized = normalize_persisted_file_name(file_name)
            if normalized != file_name:
                logger.debug(
                    "Normalized persisted key %r -> %r", file_name, normalized
                )
            result[normalized] = state

        logger.debug("Loaded persisted state for %d files", len(result))
        return result

    def save(self, files: dict[str, PersistedFileState]) -> None:
        """Write the state document.

        Writes to a temporary file first, then renames it over the target
        so readers never see a partial document.

        Raises:
            OSError: If the document cannot be written.
        """
        document = {
            "version": STATE_VERSION,
            "files": {
                name: {"timestamp": state.timestamp, "contentHash": state.content_hash}
                for name, state in sorted(files.items())
            },
        }
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        tmp_path.replace(self._path)
        logger.debug("Saved persisted state for %d files", len(files))

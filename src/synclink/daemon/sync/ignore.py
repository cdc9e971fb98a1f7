"""Ignore patterns for the synced files directory.

This module provides:
- IgnorePatterns: gitignore-style pattern matching on relative paths
- DEFAULT_IGNORE_PATTERNS: Common patterns to ignore
"""

from __future__ import annotations

import fnmatch
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

IGNORE_FILE_NAME = ".synclinkignore"

DEFAULT_IGNORE_PATTERNS = [
    ".git/",
    "node_modules/",
    ".*",
    "*.tmp",
    "*.swp",
    "*.swo",
    "*~",
]


class IgnorePatterns:
    """Decides which paths under the files directory are invisible to sync."""

    def __init__(self, patterns: list[str] | None = None) -> None:
        self._patterns = list(DEFAULT_IGNORE_PATTERNS)
        if patterns:
            self._patterns.extend(patterns)

    @property
    def patterns(self) -> list[str]:
        return list(self._patterns)

    def load_from_file(self, path: Path) -> None:
        """Append the patterns of an ignore file, if it exists."""
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return
        except OSError as e:
            logger.warning("Failed to read %s: %s", path, e)
            return

        for line in lines:
            line = line.strip()
            # Skip comments and empty lines
            if line and not line.startswith("#"):
                self._patterns.append(line)

    def should_ignore(self, rel_path: str) -> bool:
        """Check a POSIX relative path against the patterns.

        A pattern ending with ``/`` matches any path segment that is a
        directory name. Other patterns match the whole path or any segment.
        """
        parts = rel_path.split("/")
        for pattern in self._patterns:
            if pattern.endswith("/"):
                if any(fnmatch.fnmatch(part, pattern[:-1]) for part in parts[:-1]):
                    return True
            elif fnmatch.fnmatch(rel_path, pattern) or any(
                fnmatch.fnmatch(part, pattern) for part in parts
            ):
                return True
        return False

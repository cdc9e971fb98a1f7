"""Echo suppression for daemon-initiated writes and deletes.

This module provides:
- HashTracker: remembers the hash of content the daemon wrote or sent, and
  which files the daemon is deleting, so the watcher events those actions
  cause are not reported back to the peer.

Keys are lookup keys (normalized, lowercased relative paths). Delete marks
expire after ``DELETE_TTL_S`` seconds so a later, user-initiated delete of
the same file is not swallowed.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from synclink.core.hashing import hash_file_content
from synclink.core.paths import file_key_for_lookup

DELETE_TTL_S = 5.0


class HashTracker:
    """Tracks recently written content hashes and pending deletes."""

    def __init__(
        self,
        delete_ttl_s: float = DELETE_TTL_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the tracker.

        Args:
            delete_ttl_s: Lifetime of a delete mark in seconds.
            clock: Monotonic clock, injectable for tests.
        """
        self._hashes: dict[str, str] = {}
        self._pending_deletes: dict[str, float] = {}
        self._delete_ttl_s = delete_ttl_s
        self._clock = clock

    def remember(self, file_path: str, content: str) -> str:
        """Record that ``content`` is what the daemon put on disk or sent."""
        content_hash = hash_file_content(content)
        self._hashes[file_key_for_lookup(file_path)] = content_hash
        return content_hash

    def should_skip(self, file_path: str, content: str) -> bool:
        """Check whether ``content`` is an echo of a remembered write."""
        remembered = self._hashes.get(file_key_for_lookup(file_path))
        return remembered is not None and remembered == hash_file_content(content)

    def get_hash(self, file_path: str) -> str | None:
        return self._hashes.get(file_key_for_lookup(file_path))

    def forget(self, file_path: str) -> None:
        self._hashes.pop(file_key_for_lookup(file_path), None)

    def clear(self) -> None:
        """Drop all remembered hashes and delete marks."""
        self._hashes.clear()
        self._pending_deletes.clear()

    def mark_delete(self, file_path: str) -> None:
        """Mark a daemon-initiated delete; re-marking restarts the timer."""
        key = file_key_for_lookup(file_path)
        self._pending_deletes[key] = self._clock() + self._delete_ttl_s

    def should_skip_delete(self, file_path: str) -> bool:
        """Check whether a delete event was caused by the daemon itself."""
        key = file_key_for_lookup(file_path)
        deadline = self._pending_deletes.get(key)
        if deadline is None:
            return False
        if self._clock() >= deadline:
            del self._pending_deletes[key]
            return False
        return True

    def clear_delete(self, file_path: str) -> None:
        self._pending_deletes.pop(file_key_for_lookup(file_path), None)

"""In-memory file metadata on top of the persisted state store.

This module provides:
- FileMetadataCache: per-file sync bookkeeping with coalesced persistence

All keys are lookup keys (see ``file_key_for_lookup``). Every mutation
marks the cache dirty and schedules a background save; at most one save is
in flight, and changes made while it runs are folded into a follow-up save.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from synclink.core.hashing import hash_file_content
from synclink.core.paths import file_key_for_lookup
from synclink.daemon.state import PersistedStateStore
from synclink.daemon.sync.types import FileSyncMetadata, PersistedFileState

logger = logging.getLogger(__name__)


class FileMetadataCache:
    """Fast lookup of per-file sync metadata."""

    def __init__(self) -> None:
        self._metadata: dict[str, FileSyncMetadata] = {}
        self._persisted: dict[str, PersistedFileState] = {}
        self._store: PersistedStateStore | None = None
        self._project_dir: Path | None = None
        self._dirty = False
        self._persist_task: asyncio.Task[None] | None = None

    async def initialize(self, project_dir: Path) -> None:
        """Load persisted state for ``project_dir``.

        Calling it again for the same directory is a no-op, so reconnects
        keep the in-memory view.
        """
        project_dir = Path(project_dir)
        if self._store is not None and self._project_dir == project_dir:
            return

        store = PersistedStateStore(project_dir)
        loaded = await asyncio.to_thread(store.load)

        self._store = store
        self._project_dir = project_dir
        self._persisted = {}
        self._metadata = {}
        for file_name, state in loaded.items():
            key = file_key_for_lookup(file_name)
            self._persisted[key] = state
            self._metadata[key] = FileSyncMetadata(
                local_hash=state.content_hash,
                last_synced_hash=state.content_hash,
                last_remote_timestamp=state.timestamp,
            )
        logger.debug("Loaded persisted metadata for %d files", len(self._metadata))

    @property
    def is_initialized(self) -> bool:
        return self._store is not None

    def get(self, file_name: str) -> FileSyncMetadata | None:
        return self._metadata.get(file_key_for_lookup(file_name))

    def has(self, file_name: str) -> bool:
        return file_key_for_lookup(file_name) in self._metadata

    def __len__(self) -> int:
        return len(self._metadata)

    def persisted_state(self) -> dict[str, PersistedFileState]:
        """Copy of the persisted entries, keyed by lookup key."""
        return dict(self._persisted)

    def record_remote_write(
        self, file_name: str, content: str, remote_modified_at: float
    ) -> None:
        """Record that remote content was written to disk."""
        self.record_synced_snapshot(
            file_name, hash_file_content(content), remote_modified_at
        )

    def record_synced_snapshot(
        self, file_name: str, content_hash: str, remote_modified_at: float
    ) -> None:
        """Record that both sides agree on ``content_hash``."""
        key = file_key_for_lookup(file_name)
        self._metadata[key] = FileSyncMetadata(
            local_hash=content_hash,
            last_synced_hash=content_hash,
            last_remote_timestamp=remote_modified_at,
        )
        self._persisted[key] = PersistedFileState(
            content_hash=content_hash, timestamp=remote_modified_at
        )
        self._schedule_persist()

    def record_local_change(self, file_name: str, content_hash: str) -> None:
        """Record a local edit that has been sent but not yet confirmed."""
        key = file_key_for_lookup(file_name)
        current = self._metadata.get(key)
        if current is None:
            self._metadata[key] = FileSyncMetadata(
                local_hash=content_hash, last_synced_hash=""
            )
        else:
            self._metadata[key] = FileSyncMetadata(
                local_hash=content_hash,
                last_synced_hash=current.last_synced_hash,
                last_remote_timestamp=current.last_remote_timestamp,
            )

    def record_delete(self, file_name: str) -> None:
        key = file_key_for_lookup(file_name)
        self._metadata.pop(key, None)
        if self._persisted.pop(key, None) is not None:
            self._schedule_persist()

    async def flush(self) -> None:
        """Wait until every recorded change is on disk."""
        if self._dirty and self._persist_task is None and self._store is not None:
            self._persist_task = asyncio.get_running_loop().create_task(
                self._persist_loop()
            )
        if self._persist_task is not None:
            await asyncio.shield(self._persist_task)

    def _schedule_persist(self) -> None:
        if self._store is None:
            return
        self._dirty = True
        if self._persist_task is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the next flush() writes the pending changes.
            return
        self._persist_task = loop.create_task(self._persist_loop())

    async def _persist_loop(self) -> None:
        try:
            while self._dirty and self._store is not None:
                self._dirty = False
                snapshot = dict(self._persisted)
                try:
                    await asyncio.to_thread(self._store.save, snapshot)
                except OSError as e:
                    logger.warning("Failed to save persisted state: %s", e)
        finally:
            if self._persist_task is asyncio.current_task():
                self._persist_task = None

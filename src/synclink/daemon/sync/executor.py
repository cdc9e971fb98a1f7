"""Effect executor.

Interprets the effects returned by the state machine. Each effect class has
exactly one handler; a handler may return follow-up events, which the
controller processes before the next effect of the same batch.

Failures are handled per file: they are logged and never propagated to the
dispatch loop.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from synclink.core.config import DaemonConfig
from synclink.core.hashing import hash_file_content
from synclink.core.paths import file_key_for_lookup, pluralize
from synclink.daemon.project import find_or_create_project_dir
from synclink.daemon.sync.domain.conflicts import detect_conflicts
from synclink.daemon.sync.files import (
    delete_local_file,
    filter_echoed_files,
    list_files,
    now_ms,
    read_file_safe,
    write_remote_files,
)
from synclink.daemon.sync.hash_tracker import HashTracker
from synclink.daemon.sync.ignore import IGNORE_FILE_NAME, IgnorePatterns
from synclink.daemon.sync.metadata import FileMetadataCache
from synclink.daemon.sync.notices import ConnectionNotices
from synclink.daemon.sync.prompts import UserPromptCoordinator
from synclink.daemon.sync.types import (
    ConflictsDetected,
    DeleteLocalFiles,
    DetectConflicts,
    Effect,
    FinalizeLocalDeletes,
    InitWorkspace,
    ListLocalFiles,
    LoadPersistedState,
    LocalDeletesConfirmed,
    LocalInitiatedFileDelete,
    Log,
    LogLevel,
    PeerDisconnectedError,
    PersistState,
    RequestConflictDecisions,
    RequestConflictVersions,
    SendLocalChange,
    SendMessage,
    SyncComplete,
    SyncEvent,
    SyncState,
    UpdateFileMetadata,
    WorkspaceError,
    WriteFiles,
)

logger = logging.getLogger(__name__)

Sender = Callable[[Any, dict[str, Any]], Awaitable[bool]]
EventPoster = Callable[[SyncEvent], None]

LOG_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARN: logging.WARNING,
}


class EffectExecutor:
    """Runs effects against the filesystem, transport and metadata cache."""

    def __init__(
        self,
        config: DaemonConfig,
        hash_tracker: HashTracker,
        metadata: FileMetadataCache,
        prompts: UserPromptCoordinator,
        send: Sender,
        post_event: EventPoster,
        cwd: Path | None = None,
        notices: ConnectionNotices | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            config: Daemon configuration; project paths are filled in here.
            hash_tracker: Echo suppression state.
            metadata: Per-file sync metadata.
            prompts: Coordinator for questions answered in the plugin.
            send: Coroutine sending a message to a peer.
            post_event: Enqueues an event for the controller; used by work
                that finishes after its effect returned.
            cwd: Directory used to display project paths.
            notices: Connection status shared with the controller; decides
                which message follows a completed sync.
        """
        self._config = config
        self._hash_tracker = hash_tracker
        self._metadata = metadata
        self._prompts = prompts
        self._send = send
        self._post_event = post_event
        self._cwd = cwd or Path.cwd()
        self._ignore: IgnorePatterns | None = None
        self._notices = notices or ConnectionNotices()
        self._background: set[asyncio.Task[None]] = set()

        self._handlers: dict[type[Effect], Callable[[Any, SyncState], Awaitable[list[SyncEvent]]]] = {
            InitWorkspace: self._init_workspace,
            LoadPersistedState: self._load_persisted_state,
            ListLocalFiles: self._list_local_files,
            DetectConflicts: self._detect_conflicts,
            SendMessage: self._send_message,
            WriteFiles: self._write_files,
            DeleteLocalFiles: self._delete_local_files,
            RequestConflictDecisions: self._request_conflict_decisions,
            RequestConflictVersions: self._request_conflict_versions,
            UpdateFileMetadata: self._update_file_metadata,
            SendLocalChange: self._send_local_change,
            LocalInitiatedFileDelete: self._local_initiated_file_delete,
            FinalizeLocalDeletes: self._finalize_local_deletes,
            PersistState: self._persist_state,
            SyncComplete: self._sync_complete,
            Log: self._log,
        }

    @property
    def handled_effects(self) -> frozenset[type[Effect]]:
        return frozenset(self._handlers)

    async def execute(self, effect: Effect, state: SyncState) -> list[SyncEvent]:
        """Run one effect.

        Args:
            effect: Effect to run.
            state: Sync state at the time the effect runs.

        Returns:
            Follow-up events to process before the next effect.

        Raises:
            TypeError: If no handler exists for the effect's class.
        """
        handler = self._handlers.get(type(effect))
        if handler is None:
            raise TypeError(f"No handler for effect {type(effect).__name__}")
        return await handler(effect, state)

    async def wait_background(self) -> None:
        """Wait for pending delete confirmations to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def cancel_background(self) -> None:
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*list(self._background), return_exceptions=True)

    def _ignore_patterns(self) -> IgnorePatterns:
        if self._ignore is None:
            self._ignore = IgnorePatterns()
            if self._config.files_dir is not None:
                self._ignore.load_from_file(self._config.files_dir / IGNORE_FILE_NAME)
        return self._ignore

    def _display_dir(self) -> str | None:
        project_dir = self._config.project_dir
        if project_dir is None:
            return None
        try:
            relative = Path(project_dir).resolve().relative_to(self._cwd.resolve())
        except ValueError:
            return str(project_dir)
        text = relative.as_posix()
        return "." if text == "." else f"./{text}"

    async def _init_workspace(self, effect: InitWorkspace, state: SyncState) -> list[SyncEvent]:
        config = self._config
        if config.project_dir is not None:
            return []

        name = config.explicit_name or effect.project_name
        try:
            directory, created = await asyncio.to_thread(
                find_or_create_project_dir, config.project_hash, name, config.explicit_dir
            )
            config.use_project_dir(directory, created)
            files_dir = config.files_dir
            if files_dir is None:
                raise WorkspaceError(f"No files directory for {directory}")
            files_dir.mkdir(parents=True, exist_ok=True)
        except (WorkspaceError, OSError) as e:
            logger.error("Failed to prepare workspace: %s", e)
            return []

        logger.debug("Files directory: %s", config.files_dir)
        return []

    async def _load_persisted_state(
        self, effect: LoadPersistedState, state: SyncState
    ) -> list[SyncEvent]:
        if self._config.project_dir is not None:
            await self._metadata.initialize(self._config.project_dir)
            logger.debug("Loaded persisted metadata for %s", pluralize(len(self._metadata), "file"))
        return []

    async def _list_local_files(self, effect: ListLocalFiles, state: SyncState) -> list[SyncEvent]:
        files_dir = self._config.files_dir
        if files_dir is None:
            return []
        files = await asyncio.to_thread(list_files, files_dir, self._ignore_patterns())
        message = {"type": "file-list", "files": [f.to_wire() for f in files]}
        if not await self._send(state.peer, message):
            logger.warning("Failed to send message: file-list")
        return []

    async def _detect_conflicts(self, effect: DetectConflicts, state: SyncState) -> list[SyncEvent]:
        files_dir = self._config.files_dir
        if files_dir is None:
            return []

        local_files = await asyncio.to_thread(list_files, files_dir, self._ignore_patterns())
        result = detect_conflicts(effect.remote_files, local_files, self._metadata.persisted_state())

        # Unchanged files count as synced so later watcher events on them are no-ops
        for file in result.unchanged:
            modified_at = file.modified_at if file.modified_at is not None else now_ms()
            self._metadata.record_remote_write(file.name, file.content, modified_at)
        for key in result.orphaned:
            self._metadata.record_delete(key)

        return [
            ConflictsDetected(
                conflicts=tuple(result.conflicts),
                safe_writes=tuple(result.writes),
                local_only=tuple(result.local_only),
            )
        ]

    async def _send_message(self, effect: SendMessage, state: SyncState) -> list[SyncEvent]:
        message_type = effect.payload.get("type")
        if state.peer is None:
            logger.warning("No peer available to send: %s", message_type)
        elif not await self._send(state.peer, effect.payload):
            logger.warning("Failed to send message: %s", message_type)
        return []

    async def _write_files(self, effect: WriteFiles, state: SyncState) -> list[SyncEvent]:
        files_dir = self._config.files_dir
        if files_dir is None:
            return []

        files = list(effect.files)
        if effect.skip_echo:
            files = filter_echoed_files(files, self._hash_tracker)
            skipped = len(effect.files) - len(files)
            if skipped:
                logger.debug("Skipped %s", pluralize(skipped, "echoed change"))
        if not files:
            return []

        written = await asyncio.to_thread(write_remote_files, files, files_dir, self._hash_tracker)
        for file in written:
            if not effect.silent:
                logger.info("↓ %s", file.name)
            modified_at = file.modified_at if file.modified_at is not None else now_ms()
            self._metadata.record_remote_write(file.name, file.content, modified_at)
        return []

    async def _delete_local_files(
        self, effect: DeleteLocalFiles, state: SyncState
    ) -> list[SyncEvent]:
        files_dir = self._config.files_dir
        if files_dir is None:
            return []
        for name in effect.names:
            if await asyncio.to_thread(delete_local_file, name, files_dir, self._hash_tracker):
                logger.info("✗ %s", name)
                self._metadata.record_delete(name)
        return []

    async def _request_conflict_decisions(
        self, effect: RequestConflictDecisions, state: SyncState
    ) -> list[SyncEvent]:
        try:
            sent = await self._prompts.request_conflict_decisions(state.peer, effect.conflicts)
        except PeerDisconnectedError as e:
            logger.warning("%s", e)
            return []
        if not sent:
            logger.warning("Failed to send message: conflicts-detected")
        return []

    async def _request_conflict_versions(
        self, effect: RequestConflictVersions, state: SyncState
    ) -> list[SyncEvent]:
        if state.peer is None:
            logger.warning("Cannot request conflict versions without an active peer")
            return []

        persisted = self._metadata.persisted_state()
        requests = []
        for conflict in effect.conflicts:
            last_synced_at = conflict.last_synced_at
            if last_synced_at is None:
                entry = persisted.get(file_key_for_lookup(conflict.file_name))
                last_synced_at = entry.timestamp if entry is not None else None
            requests.append({"fileName": conflict.file_name, "lastSyncedAt": last_synced_at})

        logger.debug("Requesting remote version data for %s", pluralize(len(requests), "file"))
        message = {"type": "conflict-version-request", "conflicts": requests}
        if not await self._send(state.peer, message):
            logger.warning("Failed to send message: conflict-version-request")
        return []

    async def _update_file_metadata(
        self, effect: UpdateFileMetadata, state: SyncState
    ) -> list[SyncEvent]:
        files_dir = self._config.files_dir
        if files_dir is None:
            return []
        content = await asyncio.to_thread(read_file_safe, effect.file_name, files_dir)
        if content is not None:
            self._metadata.record_synced_snapshot(
                effect.file_name, hash_file_content(content), effect.remote_modified_at
            )
        return []

    async def _send_local_change(self, effect: SendLocalChange, state: SyncState) -> list[SyncEvent]:
        content_hash = hash_file_content(effect.content)
        meta = self._metadata.get(effect.file_name)

        if meta is not None and meta.last_synced_hash == content_hash:
            logger.debug("Skipping local change for %s: matches last synced content", effect.file_name)
            return []
        if self._hash_tracker.should_skip(effect.file_name, effect.content):
            logger.debug("Skipping echo of our own write: %s", effect.file_name)
            return []

        message = {"type": "file-change", "fileName": effect.file_name, "content": effect.content}
        if not await self._send(state.peer, message):
            logger.warning("Failed to push %s", effect.file_name)
            return []

        logger.info("↑ %s", effect.file_name)
        self._hash_tracker.remember(effect.file_name, effect.content)
        self._metadata.record_local_change(effect.file_name, content_hash)
        return []

    async def _local_initiated_file_delete(
        self, effect: LocalInitiatedFileDelete, state: SyncState
    ) -> list[SyncEvent]:
        names = []
        for name in effect.file_names:
            if self._hash_tracker.should_skip_delete(name):
                self._hash_tracker.clear_delete(name)
                continue
            names.append(name)
        if not names:
            return []

        task = asyncio.get_running_loop().create_task(self._confirm_deletes(state.peer, names))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return []

    async def _confirm_deletes(self, peer: Any, names: list[str]) -> None:
        require_confirmation = not self._config.dangerously_auto_delete
        try:
            confirmed = await self._prompts.request_delete_decision(
                peer, names, require_confirmation=require_confirmation
            )
        except PeerDisconnectedError as e:
            logger.warning("Failed to handle deletion for %s: %s", ", ".join(names), e)
            return
        if not confirmed:
            return

        # A confirmed prompt only answers the question; the plugin deletes on
        # a plain file-delete.
        if require_confirmation:
            message = {"type": "file-delete", "fileNames": confirmed}
            if not await self._send(peer, message):
                logger.warning(
                    "Failed to handle deletion for %s: plugin unreachable", ", ".join(confirmed)
                )
        self._post_event(LocalDeletesConfirmed(tuple(confirmed)))

    async def _finalize_local_deletes(
        self, effect: FinalizeLocalDeletes, state: SyncState
    ) -> list[SyncEvent]:
        for name in effect.file_names:
            self._hash_tracker.forget(name)
            self._metadata.record_delete(name)
            logger.info("✗ %s", name)
        return []

    async def _persist_state(self, effect: PersistState, state: SyncState) -> list[SyncEvent]:
        await self._metadata.flush()
        return []

    async def _sync_complete(self, effect: SyncComplete, state: SyncState) -> list[SyncEvent]:
        if state.peer is not None and not await self._send(state.peer, {"type": "sync-complete"}):
            logger.warning("Failed to send message: sync-complete")

        counts = f"{effect.updated_count} updated, {effect.unchanged_count} unchanged"
        notices = self._notices
        if notices.recently_disconnected:
            # Quick reconnects stay silent
            if notices.disconnect_shown:
                logger.info(
                    "Reconnected, synced %s (%s)", pluralize(effect.total_count, "file"), counts
                )
                logger.info("Watching for changes...")
            notices.reset()
            return []

        directory = self._display_dir()
        if directory is None:
            logger.info("Synced %s (%s)", pluralize(effect.total_count, "file"), counts)
        elif effect.total_count == 0:
            verb = "Created" if self._config.project_dir_created else "Syncing to"
            logger.info("%s %s folder", verb, directory)
        elif self._config.project_dir_created:
            logger.info("Synced into %s (%s added)", directory, pluralize(effect.updated_count, "file"))
        else:
            logger.info(
                "Synced into %s (%s)",
                directory,
                f"{pluralize(effect.updated_count, 'file')} updated, "
                f"{effect.unchanged_count} unchanged",
            )
        logger.info("Watching for changes...")
        return []

    async def _log(self, effect: Log, state: SyncState) -> list[SyncEvent]:
        logger.log(LOG_LEVELS.get(effect.level, logging.INFO), "%s", effect.message)
        return []

"""Sync controller: the single consumer of all sync stimuli.

This module provides:
- SyncController: owns the sync state and runs every event through the
  state machine and the effect executor, one at a time

Architecture:
    PeerServer ──messages──┐
    FileWatcher ─events────┼──► asyncio.Queue ──► transition ──► EffectExecutor
    delete prompts ────────┘                          ▲               │
                                                      └── follow-ups ─┘

Each stimulus is processed to completion, including the follow-up events
its effects return, before the next one is dequeued. Follow-ups run
depth-first: they are handled before the next sibling effect.

Delete confirmations from the peer resolve the prompt coordinator's futures
directly when the message arrives, so a prompt waiting in a background task
never waits on the queue.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from synclink.core.config import DaemonConfig
from synclink.core.hashing import short_project_hash
from synclink.daemon.sync import messages
from synclink.daemon.sync.connection import PeerServer, send_message
from synclink.daemon.sync.domain.machine import transition
from synclink.daemon.sync.executor import EffectExecutor, Sender
from synclink.daemon.sync.files import now_ms
from synclink.daemon.sync.hash_tracker import HashTracker
from synclink.daemon.sync.metadata import FileMetadataCache
from synclink.daemon.sync.notices import DISCONNECT_NOTICE_DELAY_S, ConnectionNotices
from synclink.daemon.sync.prompts import UserPromptCoordinator, delete_action_id
from synclink.daemon.sync.types import (
    ConflictsResolved,
    ConflictVersionResponse,
    Disconnect,
    Effect,
    FileRecord,
    FileSyncedConfirmation,
    Handshake,
    LocalDeleteApproved,
    LocalDeleteRejected,
    RemoteFileChange,
    RemoteFileDelete,
    RemoteFileList,
    RequestFiles,
    SyncEvent,
    SyncMode,
    SyncState,
    TransportError,
    WatcherChange,
    WatcherEvent,
)
from synclink.daemon.sync.watcher import FileWatcher

logger = logging.getLogger(__name__)

SHUTDOWN_DRAIN_TIMEOUT_S = 5.0


class SyncController:
    """Single-actor dispatcher for one project."""

    def __init__(
        self,
        config: DaemonConfig,
        send: Sender = send_message,
        cwd: Path | None = None,
        watch: bool = True,
        debounce_s: float = 0.1,
        disconnect_notice_delay_s: float = DISCONNECT_NOTICE_DELAY_S,
    ) -> None:
        """Initialize the controller.

        Args:
            config: Daemon configuration.
            send: Coroutine sending a message to a peer.
            cwd: Directory used to display project paths.
            watch: Start a file watcher once the files directory is known.
            debounce_s: Debounce window of the file watcher.
            disconnect_notice_delay_s: How long a disconnect may last before
                the user is told about it.
        """
        self._config = config
        self._state = SyncState()
        self._queue: asyncio.Queue[SyncEvent] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._consumer: asyncio.Task[None] | None = None

        self._hash_tracker = HashTracker()
        self._metadata = FileMetadataCache()
        self._prompts = UserPromptCoordinator(send)
        self._notices = ConnectionNotices(disconnect_notice_delay_s)
        self._executor = EffectExecutor(
            config=config,
            hash_tracker=self._hash_tracker,
            metadata=self._metadata,
            prompts=self._prompts,
            send=send,
            post_event=self.submit,
            cwd=cwd,
            notices=self._notices,
        )

        self._watch = watch
        self._debounce_s = debounce_s
        self._watcher: FileWatcher | None = None
        self._server: PeerServer | None = None

        self._message_handlers = {
            messages.REQUEST_FILES: self._on_request_files,
            messages.FILE_LIST: self._on_file_list,
            messages.FILE_CHANGE: self._on_file_change,
            messages.FILE_DELETE: self._on_file_delete,
            messages.DELETE_CONFIRMED: self._on_delete_confirmed,
            messages.DELETE_CANCELLED: self._on_delete_cancelled,
            messages.FILE_SYNCED: self._on_file_synced,
            messages.CONFLICTS_RESOLVED: self._on_conflicts_resolved,
            messages.CONFLICT_VERSION_RESPONSE: self._on_conflict_version_response,
        }

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def metadata(self) -> FileMetadataCache:
        return self._metadata

    @property
    def hash_tracker(self) -> HashTracker:
        return self._hash_tracker

    @property
    def prompts(self) -> UserPromptCoordinator:
        return self._prompts

    @property
    def notices(self) -> ConnectionNotices:
        return self._notices

    @property
    def executor(self) -> EffectExecutor:
        return self._executor

    @property
    def port(self) -> int | None:
        """Port the WebSocket server is bound to, once started."""
        return self._server.port if self._server is not None else self._config.port

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start consuming events on the running loop."""
        if self._consumer is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._consumer = self._loop.create_task(self._consume())

    async def serve(self) -> None:
        """Start the consumer and the WebSocket server.

        Raises:
            TransportError: If no port is configured or the server cannot
                listen on it.
        """
        if self._config.port is None:
            raise TransportError("No port configured")
        self.start()
        server = PeerServer(
            host=self._config.host,
            port=self._config.port,
            on_handshake=self.handle_handshake,
            on_message=self.handle_message,
            on_disconnect=self.handle_disconnect,
            authorize=self.authorize,
        )
        try:
            await server.start()
        except Exception:
            await self.close()
            raise
        self._server = server
        logger.info("Listening on port %d, waiting for the plugin to connect...", server.port)

    async def run(self, stop: asyncio.Event | None = None) -> None:
        """Serve until ``stop`` is set (or forever), then shut down."""
        await self.serve()
        try:
            await (stop or asyncio.Event()).wait()
        finally:
            await self.close()

    async def close(self) -> None:
        """Stop the watcher and server, drain queued events, save state."""
        self._notices.cancel_disconnect()
        if self._watcher is not None:
            await asyncio.to_thread(self._watcher.stop)
            self._watcher = None

        if self._server is not None:
            await self._server.close()
            self._server = None

        await self._executor.cancel_background()

        if self._consumer is not None:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=SHUTDOWN_DRAIN_TIMEOUT_S)
            except asyncio.TimeoutError:
                logger.warning("Timed out draining %d queued events", self._queue.qsize())
            self._consumer.cancel()
            await asyncio.gather(self._consumer, return_exceptions=True)
            self._consumer = None

        await self._metadata.flush()

    async def drain(self) -> None:
        """Wait until every queued event has been processed."""
        await self._queue.join()

    # =========================================================================
    # Stimuli
    # =========================================================================

    def submit(self, event: SyncEvent) -> None:
        """Enqueue an event; must be called on the controller's loop."""
        self._queue.put_nowait(event)

    def submit_threadsafe(self, event: SyncEvent) -> None:
        """Enqueue an event from another thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("Dropping %s: event loop not running", event.type)
            return
        loop.call_soon_threadsafe(self.submit, event)

    def authorize(self, message: dict[str, Any]) -> bool:
        """Accept handshakes for the configured project only."""
        try:
            project_id, _ = messages.parse_handshake(message)
        except messages.InvalidMessageError as e:
            logger.warning("Invalid handshake: %s", e)
            return False
        if short_project_hash(project_id) != short_project_hash(self._config.project_hash):
            logger.warning(
                "Refusing plugin for project %s (serving %s)",
                short_project_hash(project_id),
                short_project_hash(self._config.project_hash),
            )
            return False
        return True

    def handle_handshake(self, peer: Any, message: dict[str, Any]) -> None:
        project_id, project_name = messages.parse_handshake(message)
        logger.debug("Handshake from project %s", project_name or project_id)
        self._notices.connected(project_name or short_project_hash(project_id))
        self.submit(Handshake(peer=peer, project_id=project_id, project_name=project_name))

    def handle_message(self, message: dict[str, Any]) -> None:
        """Translate a peer message into events."""
        message_type = message.get("type")
        handler = self._message_handlers.get(message_type)
        if handler is None:
            logger.warning("Unknown message type: %s", message_type)
            return
        try:
            handler(message)
        except messages.InvalidMessageError as e:
            logger.warning("Dropping invalid message: %s", e)

    def handle_disconnect(self) -> None:
        self._prompts.cleanup()
        self._notices.schedule_disconnect()
        self.submit(Disconnect())

    def _on_request_files(self, message: dict[str, Any]) -> None:
        self.submit(RequestFiles())

    def _on_file_list(self, message: dict[str, Any]) -> None:
        self.submit(RemoteFileList(messages.parse_file_list(message)))

    def _on_file_change(self, message: dict[str, Any]) -> None:
        name, content = messages.parse_file_change(message)
        record = FileRecord(name=name, content=content, modified_at=now_ms())
        self.submit(RemoteFileChange(file=record, file_meta=self._metadata.get(name)))

    def _on_file_delete(self, message: dict[str, Any]) -> None:
        for name in messages.parse_file_names(message):
            self.submit(RemoteFileDelete(name))

    def _on_delete_confirmed(self, message: dict[str, Any]) -> None:
        for name in messages.parse_file_names(message):
            if not self._prompts.handle_confirmation(delete_action_id(name), True):
                self.submit(LocalDeleteApproved(name))

    def _on_delete_cancelled(self, message: dict[str, Any]) -> None:
        for name, content in messages.parse_cancelled_files(message):
            self._prompts.handle_confirmation(delete_action_id(name), False)
            self.submit(LocalDeleteRejected(name, content))

    def _on_file_synced(self, message: dict[str, Any]) -> None:
        name, remote_modified_at = messages.parse_file_synced(message)
        self.submit(FileSyncedConfirmation(name, remote_modified_at))

    def _on_conflicts_resolved(self, message: dict[str, Any]) -> None:
        self.submit(ConflictsResolved(messages.parse_resolution(message)))

    def _on_conflict_version_response(self, message: dict[str, Any]) -> None:
        self.submit(ConflictVersionResponse(messages.parse_conflict_versions(message)))

    def _on_watcher_event(self, event: WatcherEvent) -> None:
        self.submit_threadsafe(WatcherChange(event))

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.process(event)
            except Exception:
                logger.exception("Failed to process %s", event.type)
            finally:
                self._queue.task_done()

    async def process(self, event: SyncEvent) -> None:
        """Process one event and all of its follow-ups.

        Work is kept on an explicit stack of iterators: events expand into
        their effects, effects into their follow-up events.
        """
        work: list[Iterator[SyncEvent | Effect]] = [iter([event])]
        while work:
            item = next(work[-1], None)
            if item is None:
                work.pop()
            elif isinstance(item, SyncEvent):
                work.append(iter(self._apply(item)))
            else:
                follow_ups = await self._executor.execute(item, self._state)
                if follow_ups:
                    work.append(iter(follow_ups))

        self._ensure_watcher()

    def _apply(self, event: SyncEvent) -> list[Effect]:
        logger.debug("[STATE] Processing event %s in mode %s", event.type, self._state.mode.value)
        result = transition(self._state, event)
        if result.state.mode != self._state.mode:
            logger.debug(
                "[STATE] %s -> %s", self._state.mode.value, result.state.mode.value
            )
        self._state = result.state
        return result.effects

    def _ensure_watcher(self) -> None:
        files_dir = self._config.files_dir
        if not self._watch or self._watcher is not None or files_dir is None:
            return
        if self._state.mode == SyncMode.DISCONNECTED:
            return
        try:
            watcher = FileWatcher(files_dir, self._on_watcher_event, debounce_s=self._debounce_s)
            watcher.start()
        except (ValueError, OSError) as e:
            logger.warning("Failed to start file watcher: %s", e)
            return
        self._watcher = watcher

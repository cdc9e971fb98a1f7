"""File system watcher for the synced files directory.

This module provides:
- DebouncedEventHandler: coalesces rapid watchdog events per path and turns
  them into WatcherEvent objects
- FileWatcher: owns the watchdog Observer for one directory

Events are delivered to a callback from a timer thread. Callers running an
asyncio loop should hop back onto it (``loop.call_soon_threadsafe``).

Files whose names are not valid identifiers are renamed on disk when they
appear, so the name matches what the remote side can hold.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import (
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from synclink.core.paths import is_supported_extension, normalize_path, sanitize_file_path
from synclink.daemon.sync.ignore import IGNORE_FILE_NAME, IgnorePatterns
from synclink.daemon.sync.types import WatcherEvent, WatcherEventKind

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

logger = logging.getLogger(__name__)

WatcherCallback = Callable[[WatcherEvent], None]


@dataclass
class PendingChange:
    """A change waiting for the debounce window to close."""

    path: Path
    kind: WatcherEventKind
    timestamp: float = field(default_factory=time.time)


def _decode(path: str | bytes) -> str:
    if isinstance(path, bytes):
        return path.decode("utf-8", errors="replace")
    return path


class DebouncedEventHandler(FileSystemEventHandler):
    """Event handler that debounces rapid file system events."""

    def __init__(
        self,
        base_path: Path,
        on_event: WatcherCallback,
        debounce_s: float = 0.1,
        ignore_patterns: IgnorePatterns | None = None,
    ) -> None:
        """Initialize the debounced handler.

        Args:
            base_path: Directory being watched.
            on_event: Receives each normalized event.
            debounce_s: Quiet period before pending changes are emitted.
            ignore_patterns: Patterns for files to ignore.
        """
        super().__init__()
        self._base_path = base_path
        self._on_event = on_event
        self._debounce_s = debounce_s
        self._ignore = ignore_patterns or IgnorePatterns()

        # Pending changes keyed by absolute path
        self._pending: dict[str, PendingChange] = {}
        # Sources of renames we performed ourselves
        self._renamed: set[str] = set()
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None

    def _schedule_flush(self) -> None:
        if self._timer:
            self._timer.cancel()
        self._timer = threading.Timer(self._debounce_s, self.flush)
        self._timer.daemon = True
        self._timer.start()

    def flush(self) -> None:
        """Emit all pending changes now."""
        with self._lock:
            changes = list(self._pending.values())
            self._pending.clear()
            self._timer = None

        for change in changes:
            self._emit(change)

    def _queue(self, path: Path, kind: WatcherEventKind) -> None:
        key = str(path)
        with self._lock:
            previous = self._pending.get(key)
            if previous is not None:
                if previous.kind == WatcherEventKind.ADD and kind == WatcherEventKind.CHANGE:
                    kind = WatcherEventKind.ADD
                elif previous.kind == WatcherEventKind.DELETE and kind == WatcherEventKind.ADD:
                    kind = WatcherEventKind.CHANGE
            self._pending[key] = PendingChange(path=path, kind=kind)
            self._schedule_flush()

    def _relative(self, path: Path) -> str | None:
        try:
            rel = path.relative_to(self._base_path)
        except ValueError:
            logger.warning("Path %s is not relative to %s", path, self._base_path)
            return None
        return normalize_path(rel.as_posix())

    def _emit(self, change: PendingChange) -> None:
        raw_relative = self._relative(change.path)
        if raw_relative is None:
            return

        relative = sanitize_file_path(raw_relative, capitalize=False).path
        path = change.path

        if change.kind == WatcherEventKind.ADD and relative != raw_relative:
            target = self._base_path / relative
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                with self._lock:
                    self._renamed.add(str(path))
                path.rename(target)
                logger.debug("Renamed %s -> %s", raw_relative, relative)
                path = target
            except OSError as e:
                with self._lock:
                    self._renamed.discard(str(path))
                logger.warning("Failed to rename %s: %s", raw_relative, e)

        content: str | None = None
        if change.kind != WatcherEventKind.DELETE:
            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.debug("Failed to read file %s: %s", relative, e)
                return

        event = WatcherEvent(kind=change.kind, relative_path=relative, content=content)
        logger.debug("Watcher event: %s %s", change.kind.value, relative)
        self._on_event(event)

    def _accepts(self, path: Path) -> bool:
        if not is_supported_extension(path.name):
            return False
        relative = self._relative(path)
        return relative is not None and not self._ignore.should_ignore(relative)

    def _handle_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return

        src = Path(_decode(event.src_path))

        if isinstance(event, FileMovedEvent):
            dest = Path(_decode(event.dest_path))
            with self._lock:
                self_renamed = str(src) in self._renamed
                self._renamed.discard(str(src))
            if self_renamed:
                return
            if self._accepts(src):
                self._queue(src, WatcherEventKind.DELETE)
            if self._accepts(dest):
                self._queue(dest, WatcherEventKind.ADD)
            return

        if not self._accepts(src):
            return

        if isinstance(event, FileCreatedEvent):
            self._queue(src, WatcherEventKind.ADD)
        elif isinstance(event, FileModifiedEvent):
            self._queue(src, WatcherEventKind.CHANGE)
        elif isinstance(event, FileDeletedEvent):
            self._queue(src, WatcherEventKind.DELETE)

    def on_created(self, event: FileSystemEvent) -> None:
        self._handle_event(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._handle_event(event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._handle_event(event)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._handle_event(event)

    def stop(self) -> None:
        """Stop any pending timers."""
        if self._timer:
            self._timer.cancel()
            self._timer = None


class FileWatcher:
    """Watches the files directory and reports normalized changes."""

    def __init__(
        self,
        watch_path: Path,
        on_event: WatcherCallback,
        debounce_s: float = 0.1,
        ignore_patterns: list[str] | None = None,
    ) -> None:
        """Initialize the file watcher.

        Args:
            watch_path: Directory to watch.
            on_event: Receives each WatcherEvent, on a watcher thread.
            debounce_s: Quiet period before a path's changes are emitted.
            ignore_patterns: Additional patterns to ignore.

        Raises:
            ValueError: If ``watch_path`` is not a directory.
        """
        self._watch_path = Path(watch_path).resolve()
        if not self._watch_path.is_dir():
            raise ValueError(f"Watch path must be a directory: {watch_path}")

        self._ignore = IgnorePatterns(ignore_patterns)
        self._ignore.load_from_file(self._watch_path / IGNORE_FILE_NAME)

        self._handler = DebouncedEventHandler(
            base_path=self._watch_path,
            on_event=on_event,
            debounce_s=debounce_s,
            ignore_patterns=self._ignore,
        )
        self._observer: BaseObserver = Observer()
        self._running = False

    @property
    def watch_path(self) -> Path:
        return self._watch_path

    @property
    def ignore_patterns(self) -> IgnorePatterns:
        return self._ignore

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start watching for changes."""
        if self._running:
            return
        self._observer.schedule(self._handler, str(self._watch_path), recursive=True)
        self._observer.start()
        self._running = True
        logger.debug("Watching directory: %s", self._watch_path)

    def stop(self) -> None:
        """Stop watching for changes."""
        if not self._running:
            return
        self._handler.stop()
        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._running = False

    def __enter__(self) -> FileWatcher:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()

"""Shared types for the sync engine.

This module provides:
- SyncError, TransportError, PeerDisconnectedError, WorkspaceError: Exceptions
- FileRecord, Conflict, ConflictVersion: File-level data
- PersistedFileState, FileSyncMetadata: Per-file sync bookkeeping
- WatcherEventKind, WatcherEvent: Normalized local filesystem changes
- SyncMode, SyncState: Lifecycle state owned by the controller
- SyncEvent subclasses: Inputs of the state machine
- Effect subclasses: Outputs of the state machine

Events and effects are frozen dataclasses. Each class carries a ``type``
name used in logs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar


class SyncError(Exception):
    """Base exception for sync errors."""


class TransportError(SyncError):
    """The peer transport could not be started or used."""


class PeerDisconnectedError(SyncError):
    """The peer went away while a request to it was pending."""


class WorkspaceError(SyncError):
    """The project workspace could not be prepared."""


# =============================================================================
# File data
# =============================================================================


@dataclass(frozen=True)
class FileRecord:
    """A file as seen on one side of the sync.

    Attributes:
        name: Normalized relative path with extension (case preserved).
        content: Full UTF-8 text of the file.
        modified_at: Modification time in ms since the epoch, if known.
    """

    name: str
    content: str
    modified_at: float | None = None

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "content": self.content}
        if self.modified_at is not None:
            data["modifiedAt"] = self.modified_at
        return data

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> FileRecord:
        """Create a FileRecord from a peer message entry."""
        return cls(
            name=str(data["name"]),
            content=str(data.get("content", "")),
            modified_at=data.get("modifiedAt"),
        )


@dataclass(frozen=True)
class Conflict:
    """Both sides changed a file since the last sync.

    ``None`` content means the file was deleted on that side.
    ``local_clean`` is True when local content still matches the last
    synced hash, and None when there is no sync history.
    """

    file_name: str
    local_content: str | None
    remote_content: str | None
    local_modified_at: float | None = None
    remote_modified_at: float | None = None
    last_synced_at: float | None = None
    local_clean: bool | None = None

    def to_wire(self) -> dict[str, Any]:
        return {
            "fileName": self.file_name,
            "localContent": self.local_content,
            "remoteContent": self.remote_content,
            "localModifiedAt": self.local_modified_at,
            "remoteModifiedAt": self.remote_modified_at,
        }


@dataclass(frozen=True)
class ConflictVersion:
    """Latest remote modification time reported for a conflicted file."""

    file_name: str
    latest_remote_version_ms: float | None = None


@dataclass(frozen=True)
class PersistedFileState:
    """Durable record of the last completed sync of a file."""

    content_hash: str
    timestamp: float


@dataclass(frozen=True)
class FileSyncMetadata:
    """In-memory sync bookkeeping for one file.

    Attributes:
        local_hash: Hash of the content last seen on disk.
        last_synced_hash: Hash both sides agreed on at the last sync.
        last_remote_timestamp: Remote modification time of that sync (ms).
    """

    local_hash: str
    last_synced_hash: str
    last_remote_timestamp: float | None = None


@dataclass(frozen=True)
class ConflictDetectionResult:
    """Partition of a remote snapshot against the local files.

    Every remote and local key lands in exactly one of ``writes``,
    ``conflicts``, ``local_only`` and ``unchanged``. ``orphaned`` lists
    persisted keys present on neither side.
    """

    writes: list[FileRecord] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)
    local_only: list[FileRecord] = field(default_factory=list)
    unchanged: list[FileRecord] = field(default_factory=list)
    orphaned: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class AutoResolveResult:
    """Outcome of the automatic conflict heuristic."""

    local: list[Conflict] = field(default_factory=list)
    remote: list[Conflict] = field(default_factory=list)
    unchanged: list[Conflict] = field(default_factory=list)
    remaining: list[Conflict] = field(default_factory=list)


class WatcherEventKind(str, Enum):
    """Kind of a local filesystem change."""

    ADD = "add"
    CHANGE = "change"
    DELETE = "delete"


@dataclass(frozen=True)
class WatcherEvent:
    """Normalized local change reported by the file watcher."""

    kind: WatcherEventKind
    relative_path: str
    content: str | None = None


# =============================================================================
# Lifecycle state
# =============================================================================


class SyncMode(str, Enum):
    """Connection and sync lifecycle mode."""

    DISCONNECTED = "disconnected"
    HANDSHAKING = "handshaking"
    SNAPSHOT_PROCESSING = "snapshot_processing"
    CONFLICT_RESOLUTION = "conflict_resolution"
    WATCHING = "watching"


class Resolution(str, Enum):
    """Side chosen by the user for all pending conflicts."""

    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True)
class SyncState:
    """Immutable snapshot of the sync lifecycle.

    Attributes:
        mode: Current lifecycle mode.
        pending_remote_changes: Remote snapshot held while it is processed.
        pending_conflicts: Conflicts awaiting resolution; only non-empty in
            ``CONFLICT_RESOLUTION``.
        peer: Opaque handle of the connected peer.
    """

    mode: SyncMode = SyncMode.DISCONNECTED
    pending_remote_changes: tuple[FileRecord, ...] = ()
    pending_conflicts: tuple[Conflict, ...] = ()
    peer: Any = None


# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True)
class SyncEvent:
    """Base class of state machine inputs."""

    type: ClassVar[str] = "event"


@dataclass(frozen=True)
class Handshake(SyncEvent):
    type: ClassVar[str] = "handshake"

    peer: Any
    project_id: str
    project_name: str = ""


@dataclass(frozen=True)
class RequestFiles(SyncEvent):
    type: ClassVar[str] = "request-files"


@dataclass(frozen=True)
class RemoteFileList(SyncEvent):
    type: ClassVar[str] = "remote-file-list"

    files: tuple[FileRecord, ...] = ()


@dataclass(frozen=True)
class ConflictsDetected(SyncEvent):
    type: ClassVar[str] = "conflicts-detected"

    conflicts: tuple[Conflict, ...] = ()
    safe_writes: tuple[FileRecord, ...] = ()
    local_only: tuple[FileRecord, ...] = ()


@dataclass(frozen=True)
class RemoteFileChange(SyncEvent):
    type: ClassVar[str] = "remote-file-change"

    file: FileRecord
    file_meta: FileSyncMetadata | None = None


@dataclass(frozen=True)
class RemoteFileDelete(SyncEvent):
    type: ClassVar[str] = "remote-file-delete"

    file_name: str


@dataclass(frozen=True)
class LocalDeleteApproved(SyncEvent):
    type: ClassVar[str] = "local-delete-approved"

    file_name: str


@dataclass(frozen=True)
class LocalDeleteRejected(SyncEvent):
    type: ClassVar[str] = "local-delete-rejected"

    file_name: str
    content: str


@dataclass(frozen=True)
class LocalDeletesConfirmed(SyncEvent):
    """The peer confirmed a batch of locally initiated deletes."""

    type: ClassVar[str] = "local-deletes-confirmed"

    file_names: tuple[str, ...] = ()


@dataclass(frozen=True)
class FileSyncedConfirmation(SyncEvent):
    type: ClassVar[str] = "file-synced"

    file_name: str
    remote_modified_at: float


@dataclass(frozen=True)
class ConflictsResolved(SyncEvent):
    type: ClassVar[str] = "conflicts-resolved"

    resolution: Resolution


@dataclass(frozen=True)
class ConflictVersionResponse(SyncEvent):
    type: ClassVar[str] = "conflict-version-response"

    versions: tuple[ConflictVersion, ...] = ()


@dataclass(frozen=True)
class WatcherChange(SyncEvent):
    type: ClassVar[str] = "watcher-event"

    event: WatcherEvent


@dataclass(frozen=True)
class Disconnect(SyncEvent):
    type: ClassVar[str] = "disconnect"


# =============================================================================
# Effects
# =============================================================================


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    SUCCESS = "success"


@dataclass(frozen=True)
class Effect:
    """Base class of state machine outputs."""

    type: ClassVar[str] = "effect"


@dataclass(frozen=True)
class InitWorkspace(Effect):
    type: ClassVar[str] = "init-workspace"

    project_id: str
    project_name: str = ""


@dataclass(frozen=True)
class LoadPersistedState(Effect):
    type: ClassVar[str] = "load-persisted-state"


@dataclass(frozen=True)
class SendMessage(Effect):
    type: ClassVar[str] = "send-message"

    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ListLocalFiles(Effect):
    type: ClassVar[str] = "list-local-files"


@dataclass(frozen=True)
class DetectConflicts(Effect):
    type: ClassVar[str] = "detect-conflicts"

    remote_files: tuple[FileRecord, ...] = ()


@dataclass(frozen=True)
class WriteFiles(Effect):
    type: ClassVar[str] = "write-files"

    files: tuple[FileRecord, ...] = ()
    silent: bool = False
    skip_echo: bool = False


@dataclass(frozen=True)
class DeleteLocalFiles(Effect):
    type: ClassVar[str] = "delete-local-files"

    names: tuple[str, ...] = ()


@dataclass(frozen=True)
class RequestConflictDecisions(Effect):
    type: ClassVar[str] = "request-conflict-decisions"

    conflicts: tuple[Conflict, ...] = ()


@dataclass(frozen=True)
class RequestConflictVersions(Effect):
    type: ClassVar[str] = "request-conflict-versions"

    conflicts: tuple[Conflict, ...] = ()


@dataclass(frozen=True)
class UpdateFileMetadata(Effect):
    type: ClassVar[str] = "update-file-metadata"

    file_name: str
    remote_modified_at: float


@dataclass(frozen=True)
class SendLocalChange(Effect):
    type: ClassVar[str] = "send-local-change"

    file_name: str
    content: str


@dataclass(frozen=True)
class LocalInitiatedFileDelete(Effect):
    type: ClassVar[str] = "local-initiated-file-delete"

    file_names: tuple[str, ...] = ()


@dataclass(frozen=True)
class FinalizeLocalDeletes(Effect):
    type: ClassVar[str] = "finalize-local-deletes"

    file_names: tuple[str, ...] = ()


@dataclass(frozen=True)
class PersistState(Effect):
    type: ClassVar[str] = "persist-state"


@dataclass(frozen=True)
class SyncComplete(Effect):
    type: ClassVar[str] = "sync-complete"

    total_count: int
    updated_count: int
    unchanged_count: int


@dataclass(frozen=True)
class Log(Effect):
    type: ClassVar[str] = "log"

    level: LogLevel
    message: str

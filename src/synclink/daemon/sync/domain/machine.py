"""Sync lifecycle state machine.

Modes:
    DISCONNECTED -> HANDSHAKING -> SNAPSHOT_PROCESSING -> WATCHING
                                                      -> CONFLICT_RESOLUTION -> WATCHING
    any mode -> DISCONNECTED on disconnect

``transition`` is pure: it never performs I/O, never mutates its inputs and
returns the same result for the same ``(state, event)``. Side effects are
described by the returned Effect list and run, in order, by the executor.
An event that is not valid in the current mode leaves the state object
untouched and yields a single Log effect.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace

from synclink.core.paths import pluralize
from synclink.daemon.sync.domain.conflicts import auto_resolve_conflicts
from synclink.daemon.sync.domain.validation import ChangeAction, validate_incoming_change
from synclink.daemon.sync.types import (
    Conflict,
    ConflictsDetected,
    ConflictsResolved,
    ConflictVersionResponse,
    DeleteLocalFiles,
    DetectConflicts,
    Disconnect,
    Effect,
    FileRecord,
    FileSyncedConfirmation,
    FinalizeLocalDeletes,
    Handshake,
    InitWorkspace,
    ListLocalFiles,
    LoadPersistedState,
    LocalDeleteApproved,
    LocalDeleteRejected,
    LocalDeletesConfirmed,
    LocalInitiatedFileDelete,
    Log,
    LogLevel,
    PersistState,
    RemoteFileChange,
    RemoteFileDelete,
    RemoteFileList,
    RequestConflictDecisions,
    RequestConflictVersions,
    RequestFiles,
    Resolution,
    SendLocalChange,
    SendMessage,
    SyncComplete,
    SyncEvent,
    SyncMode,
    SyncState,
    UpdateFileMetadata,
    WatcherChange,
    WatcherEventKind,
    WriteFiles,
)


@dataclass(frozen=True)
class Transition:
    """Result of applying one event."""

    state: SyncState
    effects: list[Effect] = field(default_factory=list)


def _log(level: LogLevel, message: str) -> Log:
    return Log(level=level, message=message)


def _ignore(state: SyncState, event: SyncEvent) -> Transition:
    return Transition(
        state, [_log(LogLevel.WARN, f"Received {event.type} in mode {state.mode.value}, ignoring")]
    )


def _file_change(name: str, content: str) -> SendMessage:
    return SendMessage({"type": "file-change", "fileName": name, "content": content})


def _apply_remote(conflicts: list[Conflict] | tuple[Conflict, ...]) -> list[Effect]:
    """Effects that make the local side match the remote version."""
    effects: list[Effect] = []
    for conflict in conflicts:
        if conflict.remote_content is None:
            effects.append(DeleteLocalFiles((conflict.file_name,)))
        else:
            record = FileRecord(
                conflict.file_name, conflict.remote_content, conflict.remote_modified_at
            )
            effects.append(WriteFiles((record,), silent=True))
    return effects


def _push_local(
    conflicts: list[Conflict] | tuple[Conflict, ...],
    make_change: Callable[[str, str], Effect],
) -> list[Effect]:
    """Effects that push local versions; local deletes share one prompt."""
    effects: list[Effect] = []
    deletes: list[str] = []
    for conflict in conflicts:
        if conflict.local_content is None:
            deletes.append(conflict.file_name)
        else:
            effects.append(make_change(conflict.file_name, conflict.local_content))
    if deletes:
        effects.append(LocalInitiatedFileDelete(tuple(deletes)))
    return effects


def _on_handshake(state: SyncState, event: Handshake) -> Transition:
    if state.mode != SyncMode.DISCONNECTED:
        return _ignore(state, event)
    effects: list[Effect] = [
        InitWorkspace(event.project_id, event.project_name),
        LoadPersistedState(),
        SendMessage({"type": "request-files"}),
    ]
    return Transition(replace(state, mode=SyncMode.HANDSHAKING, peer=event.peer), effects)


def _on_request_files(state: SyncState, event: RequestFiles) -> Transition:
    if state.mode == SyncMode.DISCONNECTED:
        return _ignore(state, event)
    return Transition(state, [_log(LogLevel.DEBUG, "Peer requested file list"), ListLocalFiles()])


def _on_remote_file_list(state: SyncState, event: RemoteFileList) -> Transition:
    if state.mode != SyncMode.HANDSHAKING:
        return _ignore(state, event)
    effects: list[Effect] = [
        _log(LogLevel.DEBUG, f"Received file list: {pluralize(len(event.files), 'file')}"),
        DetectConflicts(event.files),
    ]
    new_state = replace(
        state, mode=SyncMode.SNAPSHOT_PROCESSING, pending_remote_changes=event.files
    )
    return Transition(new_state, effects)


def _on_conflicts_detected(state: SyncState, event: ConflictsDetected) -> Transition:
    if state.mode != SyncMode.SNAPSHOT_PROCESSING:
        return _ignore(state, event)

    effects: list[Effect] = []
    if event.safe_writes:
        effects.append(
            _log(LogLevel.DEBUG, f"Applying {pluralize(len(event.safe_writes), 'safe write')}")
        )
        effects.append(WriteFiles(event.safe_writes, silent=True))

    if event.local_only:
        effects.append(
            _log(LogLevel.DEBUG, f"Uploading {pluralize(len(event.local_only), 'local-only file')}")
        )
        effects.extend(_file_change(f.name, f.content) for f in event.local_only)

    if event.conflicts:
        effects.append(
            _log(
                LogLevel.DEBUG,
                f"{pluralize(len(event.conflicts), 'conflict')} require version check",
            )
        )
        effects.append(RequestConflictVersions(event.conflicts))
        new_state = replace(
            state, mode=SyncMode.CONFLICT_RESOLUTION, pending_conflicts=event.conflicts
        )
        return Transition(new_state, effects)

    remote_total = len(state.pending_remote_changes)
    effects.append(PersistState())
    effects.append(
        SyncComplete(
            total_count=remote_total + len(event.local_only),
            updated_count=len(event.safe_writes) + len(event.local_only),
            unchanged_count=max(0, remote_total - len(event.safe_writes)),
        )
    )
    return Transition(
        replace(state, mode=SyncMode.WATCHING, pending_remote_changes=()), effects
    )


def _on_remote_file_change(state: SyncState, event: RemoteFileChange) -> Transition:
    validation = validate_incoming_change(event.file_meta, state.mode)
    name = event.file.name

    if validation.action == ChangeAction.QUEUE:
        return Transition(
            state, [_log(LogLevel.DEBUG, f"Ignoring file change during sync: {name}")]
        )
    if validation.action == ChangeAction.REJECT:
        return Transition(
            state,
            [_log(LogLevel.WARN, f"Rejected file change: {name} ({validation.reason})")],
        )

    effects: list[Effect] = [
        _log(LogLevel.DEBUG, f"Applying remote change: {name} ({validation.reason})"),
        WriteFiles((event.file,), skip_echo=True),
    ]
    return Transition(state, effects)


def _on_remote_file_delete(state: SyncState, event: RemoteFileDelete) -> Transition:
    if state.mode == SyncMode.DISCONNECTED:
        return Transition(
            state,
            [_log(LogLevel.WARN, f"Rejected delete while disconnected: {event.file_name}")],
        )
    effects: list[Effect] = [
        _log(LogLevel.DEBUG, f"Remote delete applied: {event.file_name}"),
        DeleteLocalFiles((event.file_name,)),
        PersistState(),
    ]
    return Transition(state, effects)


def _on_local_delete_approved(state: SyncState, event: LocalDeleteApproved) -> Transition:
    if state.mode == SyncMode.DISCONNECTED:
        return _ignore(state, event)
    effects: list[Effect] = [
        _log(LogLevel.DEBUG, f"Delete confirmed: {event.file_name}"),
        DeleteLocalFiles((event.file_name,)),
        PersistState(),
    ]
    return Transition(state, effects)


def _on_local_delete_rejected(state: SyncState, event: LocalDeleteRejected) -> Transition:
    if state.mode == SyncMode.DISCONNECTED:
        return _ignore(state, event)
    effects: list[Effect] = [
        _log(LogLevel.DEBUG, f"Delete cancelled, restoring {event.file_name}"),
        WriteFiles((FileRecord(event.file_name, event.content),)),
    ]
    return Transition(state, effects)


def _on_local_deletes_confirmed(state: SyncState, event: LocalDeletesConfirmed) -> Transition:
    if not event.file_names:
        return Transition(state, [_log(LogLevel.DEBUG, "No local deletes confirmed")])
    return Transition(state, [FinalizeLocalDeletes(event.file_names), PersistState()])


def _on_file_synced(state: SyncState, event: FileSyncedConfirmation) -> Transition:
    if state.mode == SyncMode.DISCONNECTED:
        return _ignore(state, event)
    effects: list[Effect] = [
        _log(LogLevel.DEBUG, f"Peer confirmed sync: {event.file_name}"),
        UpdateFileMetadata(event.file_name, event.remote_modified_at),
    ]
    return Transition(state, effects)


def _on_conflicts_resolved(state: SyncState, event: ConflictsResolved) -> Transition:
    if state.mode != SyncMode.CONFLICT_RESOLUTION:
        return _ignore(state, event)

    conflicts = state.pending_conflicts
    if event.resolution == Resolution.REMOTE:
        effects = _apply_remote(conflicts)
        effects.append(_log(LogLevel.SUCCESS, "Keeping remote changes"))
    else:
        effects = _push_local(conflicts, _file_change)
        effects.append(_log(LogLevel.SUCCESS, "Keeping local changes"))

    effects.append(PersistState())
    effects.append(SyncComplete(len(conflicts), len(conflicts), 0))
    new_state = replace(
        state, mode=SyncMode.WATCHING, pending_conflicts=(), pending_remote_changes=()
    )
    return Transition(new_state, effects)


def _on_conflict_version_response(
    state: SyncState, event: ConflictVersionResponse
) -> Transition:
    if state.mode != SyncMode.CONFLICT_RESOLUTION:
        return _ignore(state, event)

    resolved = auto_resolve_conflicts(state.pending_conflicts, event.versions)
    effects: list[Effect] = []

    if resolved.local:
        effects.append(
            _log(LogLevel.DEBUG, f"Auto-resolved {pluralize(len(resolved.local), 'local change')}")
        )
        effects.extend(_push_local(resolved.local, SendLocalChange))

    if resolved.remote:
        effects.append(
            _log(
                LogLevel.DEBUG,
                f"Auto-resolved {pluralize(len(resolved.remote), 'remote change')}",
            )
        )
        effects.extend(_apply_remote(resolved.remote))

    if resolved.remaining:
        remaining = tuple(resolved.remaining)
        effects.append(
            _log(LogLevel.WARN, f"{pluralize(len(remaining), 'conflict')} require resolution")
        )
        effects.append(RequestConflictDecisions(remaining))
        return Transition(replace(state, pending_conflicts=remaining), effects)

    resolved_count = len(resolved.local) + len(resolved.remote)
    unchanged_count = len(resolved.unchanged)
    effects.append(PersistState())
    effects.append(
        SyncComplete(
            total_count=resolved_count + unchanged_count,
            updated_count=resolved_count,
            unchanged_count=unchanged_count,
        )
    )
    new_state = replace(
        state, mode=SyncMode.WATCHING, pending_conflicts=(), pending_remote_changes=()
    )
    return Transition(new_state, effects)


def _on_watcher_change(state: SyncState, event: WatcherChange) -> Transition:
    change = event.event
    if state.mode != SyncMode.WATCHING:
        return Transition(
            state,
            [
                _log(
                    LogLevel.DEBUG,
                    f"Ignoring watcher event in {state.mode.value} mode: "
                    f"{change.kind.value} {change.relative_path}",
                )
            ],
        )

    if change.kind == WatcherEventKind.DELETE:
        effects: list[Effect] = [
            _log(LogLevel.DEBUG, f"Local delete detected: {change.relative_path}"),
            LocalInitiatedFileDelete((change.relative_path,)),
        ]
        return Transition(state, effects)

    if change.content is None:
        return Transition(
            state, [_log(LogLevel.WARN, f"Watcher event missing content: {change.relative_path}")]
        )
    return Transition(state, [SendLocalChange(change.relative_path, change.content)])


def _on_disconnect(state: SyncState, event: Disconnect) -> Transition:
    effects: list[Effect] = [
        PersistState(),
        _log(LogLevel.DEBUG, "Disconnected, persisting state"),
    ]
    new_state = replace(
        state, mode=SyncMode.DISCONNECTED, peer=None, pending_conflicts=()
    )
    return Transition(new_state, effects)


_HANDLERS: dict[type[SyncEvent], Callable[..., Transition]] = {
    Handshake: _on_handshake,
    RequestFiles: _on_request_files,
    RemoteFileList: _on_remote_file_list,
    ConflictsDetected: _on_conflicts_detected,
    RemoteFileChange: _on_remote_file_change,
    RemoteFileDelete: _on_remote_file_delete,
    LocalDeleteApproved: _on_local_delete_approved,
    LocalDeleteRejected: _on_local_delete_rejected,
    LocalDeletesConfirmed: _on_local_deletes_confirmed,
    FileSyncedConfirmation: _on_file_synced,
    ConflictsResolved: _on_conflicts_resolved,
    ConflictVersionResponse: _on_conflict_version_response,
    WatcherChange: _on_watcher_change,
    Disconnect: _on_disconnect,
}


def transition(state: SyncState, event: SyncEvent) -> Transition:
    """Apply ``event`` to ``state``.

    Args:
        state: Current lifecycle state.
        event: Incoming event.

    Returns:
        The next state and the effects to run, in order.
    """
    handler = _HANDLERS.get(type(event))
    if handler is None:
        return Transition(
            state, [_log(LogLevel.WARN, f"Unhandled event type: {type(event).__name__}")]
        )
    return handler(state, event)

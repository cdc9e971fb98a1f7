"""Snapshot reconciliation and conflict auto-resolution.

Detection rules, per remote file (names matched case-insensitively):

| Local  | Persisted | Content   | Outcome                            |
|--------|-----------|-----------|------------------------------------|
| absent | absent    | -         | write (new from remote)            |
| absent | present   | -         | conflict, local deleted offline    |
| found  | any       | identical | unchanged                          |
| found  | any       | differs   | conflict, local_clean from hash    |

Local files no remote entry matched become conflicts with the remote side
deleted when they were synced before, and local-only uploads otherwise.
Persisted keys present on neither side are orphaned and cleaned up silently.

Auto-resolve matrix (once both timestamps are known):

| Remote unchanged | Local clean | Outcome   |
|------------------|-------------|-----------|
| yes              | no          | local     |
| no               | yes         | remote    |
| yes              | yes         | unchanged |
| no               | no          | remaining |
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from synclink.core.hashing import hash_file_content
from synclink.core.paths import file_key_for_lookup, sanitize_relative_path
from synclink.daemon.sync.types import (
    AutoResolveResult,
    Conflict,
    ConflictDetectionResult,
    ConflictVersion,
    FileRecord,
    PersistedFileState,
)

logger = logging.getLogger(__name__)

# Tolerance for clock drift and propagation delay between the two sides
REMOTE_DRIFT_MS = 2000


def detect_conflicts(
    remote_files: Iterable[FileRecord],
    local_files: Iterable[FileRecord],
    persisted_state: Mapping[str, PersistedFileState],
) -> ConflictDetectionResult:
    """Partition a remote snapshot against the local file listing.

    Pure function: the same inputs always produce the same partition.

    Args:
        remote_files: Snapshot sent by the peer.
        local_files: Current files on disk.
        persisted_state: Last synced state, keyed by file name.

    Returns:
        Disjoint writes, conflicts, local-only and unchanged lists, plus
        orphaned persisted keys.
    """
    persisted = {file_key_for_lookup(k): v for k, v in persisted_state.items()}
    local_by_key: dict[str, FileRecord] = {}
    for local in local_files:
        local_by_key.setdefault(file_key_for_lookup(local.name), local)

    result = ConflictDetectionResult()
    processed: set[str] = set()

    for remote in remote_files:
        name = sanitize_relative_path(remote.name)
        key = file_key_for_lookup(name)
        if key in processed:
            logger.debug("Skipping duplicate remote entry %s", remote.name)
            continue
        processed.add(key)

        local = local_by_key.get(key)
        entry = persisted.get(key)

        if local is None:
            if entry is not None:
                logger.debug("Conflict: %s deleted locally while offline", name)
                result.conflicts.append(
                    Conflict(
                        file_name=name,
                        local_content=None,
                        remote_content=remote.content,
                        remote_modified_at=remote.modified_at,
                        last_synced_at=entry.timestamp,
                    )
                )
            else:
                result.writes.append(FileRecord(name, remote.content, remote.modified_at))
            continue

        if local.content == remote.content:
            result.unchanged.append(FileRecord(name, remote.content, remote.modified_at))
            continue

        local_clean = None
        if entry is not None:
            local_clean = hash_file_content(local.content) == entry.content_hash
        result.conflicts.append(
            Conflict(
                file_name=name,
                local_content=local.content,
                remote_content=remote.content,
                local_modified_at=local.modified_at,
                remote_modified_at=remote.modified_at,
                last_synced_at=entry.timestamp if entry is not None else None,
                local_clean=local_clean,
            )
        )

    for key, local in local_by_key.items():
        if key in processed:
            continue
        entry = persisted.get(key)
        if entry is None:
            result.local_only.append(local)
            continue

        local_clean = hash_file_content(local.content) == entry.content_hash
        logger.debug("Conflict: %s deleted remotely (local_clean=%s)", local.name, local_clean)
        result.conflicts.append(
            Conflict(
                file_name=local.name,
                local_content=local.content,
                remote_content=None,
                local_modified_at=local.modified_at,
                last_synced_at=entry.timestamp,
                local_clean=local_clean,
            )
        )

    for key in persisted:
        if key not in processed and key not in local_by_key:
            logger.debug("%s deleted on both sides, cleaning up", key)
            result.orphaned.append(key)

    return result


def auto_resolve_conflicts(
    conflicts: Iterable[Conflict],
    versions: Iterable[ConflictVersion],
    remote_drift_ms: float = REMOTE_DRIFT_MS,
) -> AutoResolveResult:
    """Resolve the conflicts where one side provably did not change.

    Never merges content: each conflict is resolved to a whole version,
    found to be a no-op, or left for the user.

    Args:
        conflicts: Conflicts from detection.
        versions: Latest remote modification time per file.
        remote_drift_ms: Tolerance added to the last sync time.

    Returns:
        Conflicts grouped by outcome.
    """
    latest = {
        file_key_for_lookup(v.file_name): v.latest_remote_version_ms for v in versions
    }
    result = AutoResolveResult()

    for conflict in conflicts:
        local_clean = conflict.local_clean is True

        if conflict.remote_content is None:
            if local_clean:
                logger.debug("%s: remote deleted, local clean -> remote", conflict.file_name)
                result.remote.append(conflict)
            else:
                logger.debug("%s: remote deleted, local modified -> conflict", conflict.file_name)
                result.remaining.append(conflict)
            continue

        latest_remote_ms = latest.get(file_key_for_lookup(conflict.file_name))
        if not latest_remote_ms or not conflict.last_synced_at:
            logger.debug("%s: missing version data -> conflict", conflict.file_name)
            result.remaining.append(conflict)
            continue

        remote_unchanged = latest_remote_ms <= conflict.last_synced_at + remote_drift_ms

        if remote_unchanged and not local_clean:
            logger.debug("%s: remote unchanged, local changed -> local", conflict.file_name)
            result.local.append(conflict)
        elif not remote_unchanged and local_clean:
            logger.debug("%s: remote changed, local clean -> remote", conflict.file_name)
            result.remote.append(conflict)
        elif remote_unchanged:
            logger.debug("%s: neither side changed", conflict.file_name)
            result.unchanged.append(conflict)
        else:
            logger.debug(
                "%s: both changed (remote ahead by %sms)",
                conflict.file_name,
                latest_remote_ms - conflict.last_synced_at,
            )
            result.remaining.append(conflict)

    return result

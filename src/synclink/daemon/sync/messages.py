"""Parsing of inbound peer messages.

Messages are JSON objects with a ``type`` key and camelCase fields. The
parsers here turn their payloads into sync types and raise
InvalidMessageError for anything malformed; the controller logs and drops
such messages.
"""

from __future__ import annotations

from typing import Any

from synclink.daemon.sync.types import ConflictVersion, FileRecord, Resolution, SyncError

# Inbound
HANDSHAKE = "handshake"
REQUEST_FILES = "request-files"
FILE_LIST = "file-list"
FILE_CHANGE = "file-change"
FILE_DELETE = "file-delete"
DELETE_CONFIRMED = "delete-confirmed"
DELETE_CANCELLED = "delete-cancelled"
FILE_SYNCED = "file-synced"
CONFLICTS_RESOLVED = "conflicts-resolved"
CONFLICT_VERSION_RESPONSE = "conflict-version-response"


class InvalidMessageError(SyncError):
    """A peer message is missing fields or has fields of the wrong type."""


def _require_str(message: dict[str, Any], key: str) -> str:
    value = message.get(key)
    if not isinstance(value, str) or not value:
        raise InvalidMessageError(f"{message.get('type')}: missing {key}")
    return value


def _require_list(message: dict[str, Any], key: str) -> list[Any]:
    value = message.get(key)
    if not isinstance(value, list):
        raise InvalidMessageError(f"{message.get('type')}: {key} must be a list")
    return value


def _optional_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def parse_handshake(message: dict[str, Any]) -> tuple[str, str]:
    """Return ``(project_id, project_name)`` of a handshake."""
    project_id = _require_str(message, "projectId")
    name = message.get("projectName")
    return project_id, name if isinstance(name, str) else ""


def parse_file_list(message: dict[str, Any]) -> tuple[FileRecord, ...]:
    files = []
    for entry in _require_list(message, "files"):
        if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
            raise InvalidMessageError("file-list: entry without a name")
        files.append(
            FileRecord(
                name=entry["name"],
                content=str(entry.get("content") or ""),
                modified_at=_optional_number(entry.get("modifiedAt")),
            )
        )
    return tuple(files)


def parse_file_change(message: dict[str, Any]) -> tuple[str, str]:
    """Return ``(file_name, content)`` of a file change."""
    name = _require_str(message, "fileName")
    content = message.get("content")
    if not isinstance(content, str):
        raise InvalidMessageError("file-change: content must be a string")
    return name, content


def parse_file_names(message: dict[str, Any]) -> list[str]:
    """File names of ``file-delete`` and ``delete-confirmed`` messages."""
    names = _require_list(message, "fileNames")
    return [name for name in names if isinstance(name, str) and name]


def parse_cancelled_files(message: dict[str, Any]) -> list[tuple[str, str]]:
    """Return ``(file_name, content)`` for each file the user kept."""
    result = []
    for entry in _require_list(message, "files"):
        if not isinstance(entry, dict) or not isinstance(entry.get("fileName"), str):
            raise InvalidMessageError("delete-cancelled: entry without a fileName")
        result.append((entry["fileName"], str(entry.get("content") or "")))
    return result


def parse_file_synced(message: dict[str, Any]) -> tuple[str, float]:
    name = _require_str(message, "fileName")
    remote_modified_at = _optional_number(message.get("remoteModifiedAt"))
    if remote_modified_at is None:
        raise InvalidMessageError("file-synced: remoteModifiedAt must be a number")
    return name, remote_modified_at


def parse_resolution(message: dict[str, Any]) -> Resolution:
    try:
        return Resolution(message.get("resolution"))
    except ValueError as e:
        raise InvalidMessageError(f"conflicts-resolved: {e}") from e


def parse_conflict_versions(message: dict[str, Any]) -> tuple[ConflictVersion, ...]:
    versions = []
    for entry in _require_list(message, "versions"):
        if not isinstance(entry, dict) or not isinstance(entry.get("fileName"), str):
            raise InvalidMessageError("conflict-version-response: entry without a fileName")
        versions.append(
            ConflictVersion(
                file_name=entry["fileName"],
                latest_remote_version_ms=_optional_number(entry.get("latestRemoteVersionMs")),
            )
        )
    return tuple(versions)

"""Tests for daemon/sync/messages.py."""

from __future__ import annotations

import pytest

from synclink.daemon.sync import messages
from synclink.daemon.sync.messages import InvalidMessageError
from synclink.daemon.sync.types import ConflictVersion, FileRecord, Resolution


class TestHandshake:
    def test_with_name(self) -> None:
        message = {"type": "handshake", "projectId": "abc", "projectName": "Site"}
        assert messages.parse_handshake(message) == ("abc", "Site")

    def test_without_name(self) -> None:
        assert messages.parse_handshake({"type": "handshake", "projectId": "abc"}) == ("abc", "")

    @pytest.mark.parametrize("project_id", [None, "", 42])
    def test_invalid_project_id(self, project_id: object) -> None:
        with pytest.raises(InvalidMessageError, match="projectId"):
            messages.parse_handshake({"type": "handshake", "projectId": project_id})


class TestFileList:
    def test_entries(self) -> None:
        message = {
            "type": "file-list",
            "files": [
                {"name": "A.tsx", "content": "a", "modifiedAt": 5},
                {"name": "B.tsx", "content": "b"},
                {"name": "C.tsx", "modifiedAt": True},
            ],
        }
        assert messages.parse_file_list(message) == (
            FileRecord("A.tsx", "a", 5.0),
            FileRecord("B.tsx", "b", None),
            FileRecord("C.tsx", "", None),
        )

    def test_files_must_be_a_list(self) -> None:
        with pytest.raises(InvalidMessageError):
            messages.parse_file_list({"type": "file-list", "files": "nope"})

    def test_entry_without_name(self) -> None:
        with pytest.raises(InvalidMessageError):
            messages.parse_file_list({"type": "file-list", "files": [{"content": "x"}]})


class TestFileChange:
    def test_valid(self) -> None:
        message = {"type": "file-change", "fileName": "A.tsx", "content": ""}
        assert messages.parse_file_change(message) == ("A.tsx", "")

    def test_missing_content(self) -> None:
        with pytest.raises(InvalidMessageError):
            messages.parse_file_change({"type": "file-change", "fileName": "A.tsx"})


class TestDeletes:
    def test_file_names_drop_non_strings(self) -> None:
        message = {"type": "file-delete", "fileNames": ["A.tsx", 3, "", "B.tsx"]}
        assert messages.parse_file_names(message) == ["A.tsx", "B.tsx"]

    def test_cancelled_files(self) -> None:
        message = {
            "type": "delete-cancelled",
            "files": [{"fileName": "A.tsx", "content": "keep"}, {"fileName": "B.tsx"}],
        }
        assert messages.parse_cancelled_files(message) == [("A.tsx", "keep"), ("B.tsx", "")]

    def test_cancelled_entry_without_name(self) -> None:
        with pytest.raises(InvalidMessageError):
            messages.parse_cancelled_files({"type": "delete-cancelled", "files": [{}]})


class TestConfirmations:
    def test_file_synced(self) -> None:
        message = {"type": "file-synced", "fileName": "A.tsx", "remoteModifiedAt": 1700}
        assert messages.parse_file_synced(message) == ("A.tsx", 1700.0)

    @pytest.mark.parametrize("value", [None, "1700", True])
    def test_file_synced_requires_number(self, value: object) -> None:
        with pytest.raises(InvalidMessageError):
            messages.parse_file_synced(
                {"type": "file-synced", "fileName": "A.tsx", "remoteModifiedAt": value}
            )

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("local", Resolution.LOCAL), ("remote", Resolution.REMOTE)],
    )
    def test_resolution(self, raw: str, expected: Resolution) -> None:
        assert messages.parse_resolution({"resolution": raw}) == expected

    def test_unknown_resolution(self) -> None:
        with pytest.raises(InvalidMessageError):
            messages.parse_resolution({"type": "conflicts-resolved", "resolution": "both"})

    def test_conflict_versions(self) -> None:
        message = {
            "type": "conflict-version-response",
            "versions": [
                {"fileName": "A.tsx", "latestRemoteVersionMs": 10},
                {"fileName": "B.tsx", "latestRemoteVersionMs": None},
            ],
        }
        assert messages.parse_conflict_versions(message) == (
            ConflictVersion("A.tsx", 10.0),
            ConflictVersion("B.tsx", None),
        )

"""Tests for daemon/sync/domain/conflicts.py.

Tests for:
- detect_conflicts - snapshot partitioning
- auto_resolve_conflicts - timestamp heuristic
"""

from __future__ import annotations

from synclink.core.hashing import hash_file_content
from synclink.core.paths import file_key_for_lookup
from synclink.daemon.sync.domain.conflicts import (
    REMOTE_DRIFT_MS,
    auto_resolve_conflicts,
    detect_conflicts,
)
from synclink.daemon.sync.types import (
    Conflict,
    ConflictVersion,
    FileRecord,
    PersistedFileState,
)


def persisted(content: str, timestamp: float = 1000.0) -> PersistedFileState:
    return PersistedFileState(content_hash=hash_file_content(content), timestamp=timestamp)


# =============================================================================
# Tests for detect_conflicts
# =============================================================================


class TestDetectConflicts:
    """Test classification of remote and local files."""

    def test_new_remote_file_is_written(self) -> None:
        """Remote-only files without history are safe writes."""
        result = detect_conflicts([FileRecord("Button.tsx", "a", 5.0)], [], {})

        assert result.writes == [FileRecord("Button.tsx", "a", 5.0)]
        assert result.conflicts == []

    def test_remote_names_get_default_extension(self) -> None:
        """Remote names without extension are components."""
        result = detect_conflicts([FileRecord("Button", "a")], [], {})
        assert [f.name for f in result.writes] == ["Button.tsx"]

    def test_local_deleted_offline(self) -> None:
        """A synced file missing locally is a conflict with null local content."""
        result = detect_conflicts(
            [FileRecord("Button.tsx", "a", 5.0)], [], {"Button.tsx": persisted("a", 900.0)}
        )

        assert result.writes == []
        [conflict] = result.conflicts
        assert conflict.local_content is None
        assert conflict.remote_content == "a"
        assert conflict.last_synced_at == 900.0

    def test_identical_content_is_unchanged(self) -> None:
        """Same content on both sides needs no action."""
        result = detect_conflicts(
            [FileRecord("Button.tsx", "same")], [FileRecord("Button.tsx", "same")], {}
        )
        assert [f.name for f in result.unchanged] == ["Button.tsx"]
        assert result.local_only == []

    def test_differing_content_with_clean_local(self) -> None:
        """Local content equal to the last sync is clean."""
        result = detect_conflicts(
            [FileRecord("Button.tsx", "remote")],
            [FileRecord("Button.tsx", "base", 3.0)],
            {"Button.tsx": persisted("base")},
        )

        [conflict] = result.conflicts
        assert conflict.local_clean is True
        assert conflict.local_content == "base"
        assert conflict.remote_content == "remote"
        assert conflict.local_modified_at == 3.0
        assert conflict.last_synced_at == 1000.0

    def test_differing_content_with_modified_local(self) -> None:
        """Local content different from the last sync is dirty."""
        result = detect_conflicts(
            [FileRecord("Button.tsx", "remote")],
            [FileRecord("Button.tsx", "edited")],
            {"Button.tsx": persisted("base")},
        )
        assert result.conflicts[0].local_clean is False

    def test_differing_content_without_history(self) -> None:
        """Without persisted state cleanliness is unknown."""
        result = detect_conflicts(
            [FileRecord("Button.tsx", "remote")], [FileRecord("Button.tsx", "local")], {}
        )
        conflict = result.conflicts[0]
        assert conflict.local_clean is None
        assert conflict.last_synced_at is None

    def test_remote_deleted(self) -> None:
        """A synced local file missing remotely is a conflict with null remote content."""
        result = detect_conflicts(
            [], [FileRecord("Old.tsx", "x")], {"Old.tsx": persisted("x")}
        )

        [conflict] = result.conflicts
        assert conflict.remote_content is None
        assert conflict.local_content == "x"
        assert conflict.local_clean is True
        assert result.local_only == []

    def test_local_only(self) -> None:
        """Local files never synced are uploads."""
        result = detect_conflicts([], [FileRecord("New.tsx", "n")], {})
        assert result.local_only == [FileRecord("New.tsx", "n")]

    def test_orphaned_persisted_keys(self) -> None:
        """Files gone on both sides are cleaned up silently."""
        result = detect_conflicts([], [], {"Gone.tsx": persisted("g")})

        assert result.orphaned == ["gone.tsx"]
        assert result.conflicts == []

    def test_case_insensitive_matching(self) -> None:
        """Names differing only by case are the same file."""
        result = detect_conflicts(
            [FileRecord("button.tsx", "same")],
            [FileRecord("Button.tsx", "same")],
            {"BUTTON.tsx": persisted("same")},
        )
        assert len(result.unchanged) == 1
        assert result.local_only == []
        assert result.orphaned == []

    def test_duplicate_remote_names_classified_once(self) -> None:
        """The first of two remote entries with one key wins."""
        result = detect_conflicts(
            [FileRecord("Button.tsx", "first"), FileRecord("button.tsx", "second")], [], {}
        )
        assert result.writes == [FileRecord("Button.tsx", "first")]

    def test_partition_is_complete_and_disjoint(self) -> None:
        """Every key lands in exactly one category."""
        remote = [
            FileRecord("New.tsx", "n"),
            FileRecord("Same.tsx", "s"),
            FileRecord("Changed.tsx", "remote"),
            FileRecord("LocalGone.tsx", "l"),
        ]
        local = [
            FileRecord("Same.tsx", "s"),
            FileRecord("Changed.tsx", "local"),
            FileRecord("Mine.tsx", "m"),
            FileRecord("RemoteGone.tsx", "r"),
        ]
        state = {
            "LocalGone.tsx": persisted("l"),
            "RemoteGone.tsx": persisted("r"),
            "Orphan.tsx": persisted("o"),
        }

        result = detect_conflicts(remote, local, state)

        groups = [
            {file_key_for_lookup(f.name) for f in result.writes},
            {file_key_for_lookup(c.file_name) for c in result.conflicts},
            {file_key_for_lookup(f.name) for f in result.local_only},
            {file_key_for_lookup(f.name) for f in result.unchanged},
        ]
        all_keys = {file_key_for_lookup(f.name) for f in remote + local}
        assert set().union(*groups) == all_keys
        assert sum(len(g) for g in groups) == len(all_keys)
        assert result.orphaned == ["orphan.tsx"]

    def test_idempotent(self) -> None:
        """Detection on the same inputs gives the same result."""
        remote = [FileRecord("A.tsx", "1"), FileRecord("B.tsx", "2")]
        local = [FileRecord("B.tsx", "3"), FileRecord("C.tsx", "4")]
        state = {"B.tsx": persisted("3")}

        assert detect_conflicts(remote, local, state) == detect_conflicts(remote, local, state)


# =============================================================================
# Tests for auto_resolve_conflicts
# =============================================================================


def conflict(
    name: str = "Button.tsx",
    local_clean: bool | None = False,
    last_synced_at: float | None = 1000.0,
    local: str | None = "local",
    remote: str | None = "remote",
) -> Conflict:
    return Conflict(
        file_name=name,
        local_content=local,
        remote_content=remote,
        last_synced_at=last_synced_at,
        local_clean=local_clean,
    )


def version(ms: float | None, name: str = "Button.tsx") -> list[ConflictVersion]:
    return [ConflictVersion(file_name=name, latest_remote_version_ms=ms)]


class TestAutoResolveMatrix:
    """Test the (remote unchanged, local clean) matrix."""

    def test_remote_unchanged_local_dirty_keeps_local(self) -> None:
        c = conflict(local_clean=False)
        assert auto_resolve_conflicts([c], version(1500.0)).local == [c]

    def test_remote_changed_local_clean_takes_remote(self) -> None:
        c = conflict(local_clean=True)
        assert auto_resolve_conflicts([c], version(9000.0)).remote == [c]

    def test_neither_changed_is_unchanged(self) -> None:
        """No side changed: nothing to write in either direction."""
        c = conflict(local_clean=True)
        result = auto_resolve_conflicts([c], version(1500.0))
        assert result.unchanged == [c]
        assert result.local == result.remote == result.remaining == []

    def test_both_changed_remains(self) -> None:
        c = conflict(local_clean=False)
        assert auto_resolve_conflicts([c], version(9000.0)).remaining == [c]


class TestAutoResolveEdges:
    """Test deletions, missing data and drift tolerance."""

    def test_drift_boundary(self) -> None:
        """Remote times within the drift window count as unchanged."""
        c = conflict(local_clean=False)
        assert auto_resolve_conflicts([c], version(1000.0 + REMOTE_DRIFT_MS)).local == [c]
        assert auto_resolve_conflicts([c], version(1001.0 + REMOTE_DRIFT_MS)).remaining == [c]

    def test_custom_drift(self) -> None:
        c = conflict(local_clean=False)
        assert auto_resolve_conflicts([c], version(1500.0), remote_drift_ms=100).remaining == [c]

    def test_remote_deleted_local_clean(self) -> None:
        """Deleting remotely wins over an untouched local file."""
        c = conflict(local_clean=True, remote=None)
        assert auto_resolve_conflicts([c], []).remote == [c]

    def test_remote_deleted_local_modified(self) -> None:
        """A local edit of a remotely deleted file needs the user."""
        c = conflict(local_clean=False, remote=None)
        assert auto_resolve_conflicts([c], []).remaining == [c]

    def test_missing_version(self) -> None:
        c = conflict(local_clean=True)
        assert auto_resolve_conflicts([c], []).remaining == [c]

    def test_null_version(self) -> None:
        c = conflict(local_clean=True)
        assert auto_resolve_conflicts([c], version(None)).remaining == [c]

    def test_missing_last_synced(self) -> None:
        c = conflict(local_clean=None, last_synced_at=None)
        assert auto_resolve_conflicts([c], version(1500.0)).remaining == [c]

    def test_version_lookup_is_case_insensitive(self) -> None:
        c = conflict(name="Button.tsx", local_clean=True)
        result = auto_resolve_conflicts([c], version(9000.0, name="button.tsx"))
        assert result.remote == [c]

    def test_never_merges(self) -> None:
        """Every conflict ends up in exactly one bucket, unmodified."""
        conflicts = [
            conflict("A.tsx", local_clean=False),
            conflict("B.tsx", local_clean=True),
            conflict("C.tsx", local_clean=True, remote=None),
        ]
        versions = [
            ConflictVersion("A.tsx", 1500.0),
            ConflictVersion("B.tsx", 9000.0),
        ]
        result = auto_resolve_conflicts(conflicts, versions)
        buckets = result.local + result.remote + result.unchanged + result.remaining
        assert sorted(buckets, key=lambda c: c.file_name) == conflicts

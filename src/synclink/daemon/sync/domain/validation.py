"""Validation of incoming remote file changes.

Matrix:
| Mode                          | Action | Reason                          |
|-------------------------------|--------|---------------------------------|
| handshaking                   | QUEUE  | snapshot-in-progress            |
| snapshot_processing           | QUEUE  | snapshot-in-progress            |
| watching, no metadata         | APPLY  | new-file                        |
| watching, known file          | APPLY  | safe-update                     |
| conflict_resolution           | QUEUE  | conflict-resolution-in-progress |
| disconnected                  | REJECT | not-connected                   |

Queued changes are not replayed: the snapshot being reconciled already
contains them.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto

from synclink.daemon.sync.types import FileSyncMetadata, SyncMode


class ChangeAction(Enum):
    """What to do with an incoming remote change."""

    APPLY = auto()
    QUEUE = auto()
    REJECT = auto()


@dataclass(frozen=True)
class ChangeValidation:
    action: ChangeAction
    reason: str


@dataclass(frozen=True)
class ValidationRule:
    """A rule in the validation matrix."""

    mode: SyncMode
    known_file: bool | None  # None matches with or without metadata
    action: ChangeAction
    reason: str


VALIDATION_RULES: list[ValidationRule] = [
    ValidationRule(SyncMode.HANDSHAKING, None, ChangeAction.QUEUE, "snapshot-in-progress"),
    ValidationRule(
        SyncMode.SNAPSHOT_PROCESSING, None, ChangeAction.QUEUE, "snapshot-in-progress"
    ),
    ValidationRule(SyncMode.WATCHING, False, ChangeAction.APPLY, "new-file"),
    ValidationRule(SyncMode.WATCHING, True, ChangeAction.APPLY, "safe-update"),
    ValidationRule(
        SyncMode.CONFLICT_RESOLUTION,
        None,
        ChangeAction.QUEUE,
        "conflict-resolution-in-progress",
    ),
    ValidationRule(SyncMode.DISCONNECTED, None, ChangeAction.REJECT, "not-connected"),
]


def validate_incoming_change(
    file_meta: FileSyncMetadata | None,
    mode: SyncMode,
    rules: list[ValidationRule] | None = None,
) -> ChangeValidation:
    """Decide whether a remote change can be written now.

    Args:
        file_meta: Metadata of the target file, if it was synced before.
        mode: Current sync mode.
        rules: Rule table to evaluate, defaults to VALIDATION_RULES.

    Returns:
        The action and a short reason.
    """
    known = file_meta is not None
    for rule in rules or VALIDATION_RULES:
        if rule.mode == mode and (rule.known_file is None or rule.known_file == known):
            return ChangeValidation(rule.action, rule.reason)
    return ChangeValidation(ChangeAction.REJECT, "no-matching-rule")

"""Domain modules for sync business rules.

This package centralizes the pure logic of the sync engine:
- machine: lifecycle state machine (event -> next state + effects)
- conflicts: snapshot reconciliation and auto-resolution
- validation: policy for incoming remote changes

Architecture:
    domain/ performs no I/O. Effects it returns are carried out by the
    executor, which owns the filesystem, transport and metadata cache.
"""

from synclink.daemon.sync.domain.conflicts import (
    REMOTE_DRIFT_MS,
    auto_resolve_conflicts,
    detect_conflicts,
)
from synclink.daemon.sync.domain.machine import Transition, transition
from synclink.daemon.sync.domain.validation import (
    VALIDATION_RULES,
    ChangeAction,
    ChangeValidation,
    ValidationRule,
    validate_incoming_change,
)

__all__ = [
    # conflicts
    "REMOTE_DRIFT_MS",
    "auto_resolve_conflicts",
    "detect_conflicts",
    # machine
    "Transition",
    "transition",
    # validation
    "VALIDATION_RULES",
    "ChangeAction",
    "ChangeValidation",
    "ValidationRule",
    "validate_incoming_change",
]

"""
Core Module - learner state and the pure logic that mutates it.

Components:
- state: UserState model, validate(), create_default()
- content: default seed content and the stitch_positions mapping
- scheduler: mastery-based spaced repetition (record_outcome, due_items)
- helix: triple-helix tube rotation state machine
- events: tagged learning events validated at the boundary
- errors: exception types

Design Principle:
Nothing in core performs I/O. Every transition takes a state and returns a
new one, leaving persistence and reconciliation to helix_sync.sync.
"""

from helix_sync.core.errors import (
    AllTubesExhausted,
    HelixSyncError,
    InvalidStateError,
    RecordAlreadyExists,
    RecordNotFoundError,
    SyncFailure,
    VersionConflict,
)
from helix_sync.core.events import LearningEvent, apply_event, parse_learning_event
from helix_sync.core.scheduler import Outcome, ReviewScheduler, SchedulerConfig
from helix_sync.core.state import SyncSource, UserState, create_default, validate

__all__ = [
    # Errors
    "AllTubesExhausted",
    "HelixSyncError",
    "InvalidStateError",
    "RecordAlreadyExists",
    "RecordNotFoundError",
    "SyncFailure",
    "VersionConflict",
    # State
    "SyncSource",
    "UserState",
    "create_default",
    "validate",
    # Scheduling & events
    "Outcome",
    "ReviewScheduler",
    "SchedulerConfig",
    "LearningEvent",
    "apply_event",
    "parse_learning_event",
]

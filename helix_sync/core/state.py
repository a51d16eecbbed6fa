"""
Versioned learner state model.

One UserState per learner. The tree is plain pydantic data: snake_case in
Python, camelCase on the wire. Behaviour lives in the scheduler and helix
modules; this module only defines the shape, the invariants and the
version-1 seed.

Components:
- UserState and its nested groups (helix, spaced repetition, metrics)
- validate(): invariant check raising InvalidStateError
- create_default(): deterministic version-1 seed
- content_equal(): structural comparison ignoring sync metadata
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from helix_sync.core.content import TUBES, ContentConfig, StaticContentConfig, positions_from_defaults
from helix_sync.core.errors import InvalidStateError

MAX_MASTERY_LEVEL = 5


def utcnow() -> datetime:
    """Timezone-aware now; every timestamp in the state is UTC."""
    return datetime.now(timezone.utc)


class SyncSource(str, Enum):
    """Actor that produced the last committed version (diagnostics only)."""

    USER_INITIALIZATION = "user_initialization"
    CLIENT = "client"
    SCHEDULER = "scheduler"
    SYNC_MERGE = "sync_merge"
    MIGRATION = "migration"


class _StateModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ========================================
# Triple Helix
# ========================================


class SessionRef(_StateModel):
    """An open learning session on one tube."""

    session_id: str
    tube: int
    started_at: AwareDatetime


class GroupingCompletion(_StateModel):
    """Marker stored in completed_groupings."""

    tube: int
    completed_at: AwareDatetime


class SessionProgress(_StateModel):
    """Units completed within a session, in completion order."""

    tube: int
    started_at: AwareDatetime
    updated_at: AwareDatetime
    completed_units: list[str] = Field(default_factory=list)


class TripleHelixState(_StateModel):
    current_tube: int = 1
    active_sessions: list[SessionRef] = Field(default_factory=list)
    completed_groupings: dict[str, GroupingCompletion] = Field(default_factory=dict)
    session_progress: dict[str, SessionProgress] = Field(default_factory=dict)
    # tube -> next position to read
    cursors: dict[int, int] = Field(default_factory=dict)
    rotation_count: int = 0
    last_rotation_time: AwareDatetime | None = None

    def active_session_for(self, tube: int) -> SessionRef | None:
        for ref in self.active_sessions:
            if ref.tube == tube:
                return ref
        return None


# ========================================
# Spaced Repetition & Metrics
# ========================================


class SpacedRepetitionState(_StateModel):
    """Per content unit schedule. Intervals are in days."""

    intervals: dict[str, float] = Field(default_factory=dict)
    next_review: dict[str, AwareDatetime] = Field(default_factory=dict)
    mastery_levels: dict[str, int] = Field(default_factory=dict)
    last_reviewed: dict[str, AwareDatetime] = Field(default_factory=dict)
    last_seen: dict[str, AwareDatetime] = Field(default_factory=dict)

    def scheduled_units(self) -> set[str]:
        return (
            set(self.intervals)
            | set(self.next_review)
            | set(self.mastery_levels)
            | set(self.last_reviewed)
            | set(self.last_seen)
        )

    def drop(self, unit_id: str) -> None:
        for table in (
            self.intervals,
            self.next_review,
            self.mastery_levels,
            self.last_reviewed,
            self.last_seen,
        ):
            table.pop(unit_id, None)


class ProgressMetrics(_StateModel):
    total_stitches_completed: int = 0
    total_time_spent: float = 0.0  # seconds
    total_questions: int = 0
    total_correct: int = 0
    total_sessions: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    average_accuracy: float = 0.0

    def recompute_accuracy(self) -> None:
        self.average_accuracy = (
            self.total_correct / self.total_questions if self.total_questions else 0.0
        )


# ========================================
# User State
# ========================================


class UserState(_StateModel):
    """The versioned learner state record."""

    user_id: str
    stitch_positions: dict[int, dict[int, str]] = Field(default_factory=dict)
    triple_helix_state: TripleHelixState = Field(default_factory=TripleHelixState)
    spaced_repetition_state: SpacedRepetitionState = Field(default_factory=SpacedRepetitionState)
    progress_metrics: ProgressMetrics = Field(default_factory=ProgressMetrics)
    version: int = 1
    last_sync_time: AwareDatetime | None = None
    updated_at: AwareDatetime | None = None
    sync_source: SyncSource = SyncSource.USER_INITIALIZATION

    def copy_state(self) -> UserState:
        """Deep copy; every transition works on one of these."""
        return self.model_copy(deep=True)

    def known_units(self) -> set[str]:
        return {unit for queue in self.stitch_positions.values() for unit in queue.values()}

    def to_wire(self) -> dict:
        """JSON-ready camelCase payload."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_wire(cls, data: dict) -> UserState:
        return cls.model_validate(data)


CONTENT_FIELDS = {
    "user_id",
    "stitch_positions",
    "triple_helix_state",
    "spaced_repetition_state",
    "progress_metrics",
}


def content_equal(a: UserState, b: UserState) -> bool:
    """Structural equality of the learner-facing content, ignoring sync metadata."""
    return a.model_dump(include=CONTENT_FIELDS) == b.model_dump(include=CONTENT_FIELDS)


def queue_end(state: UserState, tube: int) -> int:
    """Position one past the last queued unit (1 for an empty tube)."""
    queue = state.stitch_positions.get(tube) or {}
    return max(queue) + 1 if queue else 1


def validate(state: UserState) -> None:
    """
    Check every invariant of a single state.

    Raises:
        InvalidStateError: naming the first violated invariant
    """
    if not state.user_id:
        raise InvalidStateError("user_id must not be empty")
    if state.version < 1:
        raise InvalidStateError(f"version must be >= 1, got {state.version}")

    for tube, queue in state.stitch_positions.items():
        if tube not in TUBES:
            raise InvalidStateError(f"unknown tube {tube} in stitch_positions")
        for position in queue:
            if position < 1:
                raise InvalidStateError(f"tube {tube} has non-positive position {position}")

    helix = state.triple_helix_state
    if helix.current_tube not in TUBES:
        raise InvalidStateError(f"current_tube must be 1, 2 or 3, got {helix.current_tube}")

    seen_tubes: set[int] = set()
    seen_sessions: set[str] = set()
    for ref in helix.active_sessions:
        if ref.tube not in TUBES:
            raise InvalidStateError(f"session {ref.session_id} on unknown tube {ref.tube}")
        if ref.tube in seen_tubes:
            raise InvalidStateError(f"tube {ref.tube} has more than one active session")
        if ref.session_id in seen_sessions:
            raise InvalidStateError(f"duplicate active session {ref.session_id}")
        seen_tubes.add(ref.tube)
        seen_sessions.add(ref.session_id)

    for tube, cursor in helix.cursors.items():
        if tube not in TUBES:
            raise InvalidStateError(f"cursor for unknown tube {tube}")
        if not 1 <= cursor <= queue_end(state, tube):
            raise InvalidStateError(f"cursor {cursor} out of range for tube {tube}")

    sr = state.spaced_repetition_state
    orphans = sr.scheduled_units() - state.known_units()
    if orphans:
        raise InvalidStateError(
            f"schedule entries without a tube position: {', '.join(sorted(orphans))}"
        )
    for unit_id, level in sr.mastery_levels.items():
        if not 0 <= level <= MAX_MASTERY_LEVEL:
            raise InvalidStateError(f"mastery level {level} out of range for {unit_id}")
    for unit_id, interval in sr.intervals.items():
        if interval <= 0:
            raise InvalidStateError(f"interval for {unit_id} must be positive")

    metrics = state.progress_metrics
    counters = (
        metrics.total_stitches_completed,
        metrics.total_time_spent,
        metrics.total_questions,
        metrics.total_correct,
        metrics.total_sessions,
        metrics.current_streak,
        metrics.longest_streak,
    )
    if any(value < 0 for value in counters):
        raise InvalidStateError("progress metrics must be non-negative")
    if metrics.total_correct > metrics.total_questions:
        raise InvalidStateError("total_correct exceeds total_questions")
    if metrics.current_streak > metrics.longest_streak:
        raise InvalidStateError("current_streak exceeds longest_streak")


def create_default(user_id: str, content: ContentConfig | None = None) -> UserState:
    """
    Build the version-1 seed record for a new learner.

    Deterministic: the same content configuration always yields the same
    state, so the seed is reproducible in tests.

    Args:
        user_id: Learner identifier
        content: Seed content source (defaults to StaticContentConfig())

    Returns:
        A validated UserState at version 1
    """
    content = content or StaticContentConfig()
    positions = positions_from_defaults(content.get_default_tube_positions())

    state = UserState(
        user_id=user_id,
        stitch_positions=positions,
        triple_helix_state=TripleHelixState(
            current_tube=1,
            cursors={tube: (min(queue) if queue else 1) for tube, queue in positions.items()},
        ),
        version=1,
        sync_source=SyncSource.USER_INITIALIZATION,
    )
    validate(state)
    return state

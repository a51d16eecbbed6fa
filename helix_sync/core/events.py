"""
Learning events.

A closed, tagged union of event payloads (discriminator: `kind`). Raw
payloads are validated here, at the boundary, before anything reaches the
scheduler or helix machine. Every event carries its own timestamp, which
is the `now` used by the transition it triggers, so replaying the same
events in order always yields the same state.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from helix_sync.core import helix
from helix_sync.core.errors import InvalidStateError
from helix_sync.core.scheduler import Outcome, ReviewScheduler
from helix_sync.core.state import SyncSource, UserState


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    timestamp: AwareDatetime


class SessionStarted(_Event):
    kind: Literal["session_started"] = "session_started"
    tube: int = Field(ge=1, le=3)
    session_id: str = Field(min_length=1)


class StitchCompleted(_Event):
    kind: Literal["stitch_completed"] = "stitch_completed"
    tube: int = Field(ge=1, le=3)
    content_unit_id: str = Field(min_length=1)
    time_spent_seconds: float = Field(default=0.0, ge=0)


class ReviewRecorded(_Event):
    kind: Literal["review_recorded"] = "review_recorded"
    content_unit_id: str = Field(min_length=1)
    outcome: Outcome


class GroupingCompleted(_Event):
    kind: Literal["grouping_completed"] = "grouping_completed"
    tube: int = Field(ge=1, le=3)
    group_id: str = Field(min_length=1)


class SessionEnded(_Event):
    kind: Literal["session_ended"] = "session_ended"
    tube: int = Field(ge=1, le=3)


LearningEvent = Annotated[
    Union[SessionStarted, StitchCompleted, ReviewRecorded, GroupingCompleted, SessionEnded],
    Field(discriminator="kind"),
]

_event_adapter: TypeAdapter[LearningEvent] = TypeAdapter(LearningEvent)


def parse_learning_event(payload: LearningEvent | dict[str, Any]) -> LearningEvent:
    """
    Validate a raw payload into a typed learning event.

    Raises:
        InvalidStateError: If the payload matches no event kind
    """
    if isinstance(payload, _Event):
        return payload
    try:
        return _event_adapter.validate_python(payload)
    except ValidationError as exc:
        raise InvalidStateError(f"invalid learning event: {exc}") from exc


def apply_event(
    state: UserState,
    event: LearningEvent,
    scheduler: ReviewScheduler,
    grouping_size: int = helix.DEFAULT_GROUPING_SIZE,
) -> tuple[UserState, SyncSource]:
    """
    Route an event to the helix machine or the scheduler.

    Returns the resulting state (the input itself for a no-op) and the
    sync source tag for the write. Version and updated_at are stamped by
    the caller that commits the result.
    """
    now = event.timestamp
    if isinstance(event, SessionStarted):
        return helix.start_session(state, event.tube, event.session_id, now), SyncSource.CLIENT
    if isinstance(event, StitchCompleted):
        new_state = helix.advance_position(
            state, event.tube, event.content_unit_id, now, event.time_spent_seconds
        )
        return new_state, SyncSource.CLIENT
    if isinstance(event, ReviewRecorded):
        new_state = scheduler.record_outcome(state, event.content_unit_id, event.outcome, now)
        return new_state, SyncSource.SCHEDULER
    if isinstance(event, GroupingCompleted):
        new_state = helix.complete_grouping(state, event.tube, event.group_id, now, grouping_size)
        return new_state, SyncSource.CLIENT
    if isinstance(event, SessionEnded):
        new_state = helix.end_session(state, event.tube)
        if new_state is not state:
            new_state.progress_metrics.total_sessions += 1
        return new_state, SyncSource.CLIENT
    raise InvalidStateError(f"unsupported learning event: {event!r}")

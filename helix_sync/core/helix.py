"""
Triple-Helix tube rotation.

The three tubes are persistent content queues worked in round-robin so
practice interleaves across three parallel tracks. The machine's state is
the active tube pointer, one read cursor per tube and session bookkeeping,
all stored in UserState.triple_helix_state.

Transitions (all pure, each returns a new state):
- start_session     - open a session on a tube (one per tube)
- advance_position  - move the tube's cursor past a completed unit
- complete_grouping - mark a finished grouping done and rotate to the next tube
- end_session       - close the tube's session

Rotation order from tube t is (t % 3) + 1, then the tube after that, then t
itself; exhausted tubes are skipped. If nothing is left anywhere the caller
gets AllTubesExhausted.
"""

from __future__ import annotations

from datetime import datetime

from loguru import logger

from helix_sync.core.content import TUBES
from helix_sync.core.errors import AllTubesExhausted, InvalidStateError
from helix_sync.core.state import (
    GroupingCompletion,
    SessionProgress,
    SessionRef,
    UserState,
    queue_end,
)

DEFAULT_GROUPING_SIZE = 5


def _check_tube(tube: int) -> None:
    if tube not in TUBES:
        raise InvalidStateError(f"tube must be 1, 2 or 3, got {tube}")


def cursor_of(state: UserState, tube: int) -> int:
    queue = state.stitch_positions.get(tube) or {}
    default = min(queue) if queue else 1
    return state.triple_helix_state.cursors.get(tube, default)


def unit_at_cursor(state: UserState, tube: int) -> str | None:
    """Next unit to work on in `tube`, or None when the tube is exhausted."""
    queue = state.stitch_positions.get(tube) or {}
    return queue.get(cursor_of(state, tube))


def is_exhausted(state: UserState, tube: int) -> bool:
    return unit_at_cursor(state, tube) is None


def rotation_order(current_tube: int) -> list[int]:
    """Tubes to try after finishing a grouping on `current_tube`."""
    first = (current_tube % 3) + 1
    second = (first % 3) + 1
    return [first, second, current_tube]


def grouping_id(tube: int, position: int, grouping_size: int) -> str:
    """Canonical id of the grouping a position belongs to, e.g. t2-g3."""
    return f"t{tube}-g{(position - 1) // grouping_size + 1}"


def start_session(state: UserState, tube: int, session_id: str, now: datetime) -> UserState:
    """
    Open a session on `tube`.

    Raises:
        InvalidStateError: If the tube already has an active session or the
            session id is already in use
    """
    _check_tube(tube)
    helix = state.triple_helix_state
    existing = helix.active_session_for(tube)
    if existing is not None:
        raise InvalidStateError(
            f"tube {tube} already has active session {existing.session_id}"
        )
    if session_id in helix.session_progress:
        raise InvalidStateError(f"session id {session_id} already used")

    new_state = state.copy_state()
    new_helix = new_state.triple_helix_state
    new_helix.active_sessions.append(SessionRef(session_id=session_id, tube=tube, started_at=now))
    new_helix.session_progress[session_id] = SessionProgress(
        tube=tube, started_at=now, updated_at=now
    )
    logger.debug("Session {} started on tube {}", session_id, tube)
    return new_state


def advance_position(
    state: UserState,
    tube: int,
    completed_unit_id: str,
    now: datetime,
    time_spent_seconds: float = 0.0,
) -> UserState:
    """
    Move the read cursor of `tube` one slot past `completed_unit_id`.

    The completed unit must be the one under the cursor, so stale or
    out-of-order completions are rejected instead of skipping content.

    Raises:
        InvalidStateError: No active session, tube exhausted, or the unit is
            not the one under the cursor
    """
    _check_tube(tube)
    if time_spent_seconds < 0:
        raise InvalidStateError("time spent must be non-negative")

    session = state.triple_helix_state.active_session_for(tube)
    if session is None:
        raise InvalidStateError(f"no active session on tube {tube}")

    expected = unit_at_cursor(state, tube)
    if expected is None:
        raise InvalidStateError(f"tube {tube} has no queued content left")
    if expected != completed_unit_id:
        raise InvalidStateError(
            f"tube {tube} cursor is at {expected}, not {completed_unit_id}"
        )

    new_state = state.copy_state()
    helix = new_state.triple_helix_state
    queue = new_state.stitch_positions[tube]
    cursor = cursor_of(state, tube)
    later = [position for position in queue if position > cursor]
    helix.cursors[tube] = min(later) if later else queue_end(new_state, tube)

    progress = helix.session_progress[session.session_id]
    progress.completed_units.append(completed_unit_id)
    progress.updated_at = now

    metrics = new_state.progress_metrics
    metrics.total_stitches_completed += 1
    metrics.total_time_spent += time_spent_seconds
    return new_state


def finished_grouping(
    state: UserState, tube: int, grouping_size: int = DEFAULT_GROUPING_SIZE
) -> str | None:
    """
    Id of the grouping the cursor of `tube` has just worked through.

    None while nothing has been worked yet or the grouping of the last
    worked position still has queued units at or past the cursor.
    """
    queue = state.stitch_positions.get(tube) or {}
    cursor = cursor_of(state, tube)
    worked = [position for position in queue if position < cursor]
    if not worked:
        return None
    group = grouping_id(tube, max(worked), grouping_size)
    remaining = [position for position in queue if position >= cursor]
    if any(grouping_id(tube, position, grouping_size) == group for position in remaining):
        return None
    return group


def complete_grouping(
    state: UserState,
    tube: int,
    group_id: str,
    now: datetime,
    grouping_size: int = DEFAULT_GROUPING_SIZE,
) -> UserState:
    """
    Mark `group_id` complete and rotate to the next tube with content.

    The grouping must be the one the tube's cursor has just worked through
    (see finished_grouping). Completing an already completed grouping
    returns the state unchanged.

    Raises:
        InvalidStateError: If `tube` is not the current tube or `group_id`
            is not a finished grouping of it
        AllTubesExhausted: If no tube has queued content left; the exception
            carries the state with the grouping recorded
    """
    _check_tube(tube)
    helix = state.triple_helix_state
    if group_id in helix.completed_groupings:
        logger.debug("Grouping {} already completed - ignoring", group_id)
        return state
    if tube != helix.current_tube:
        raise InvalidStateError(
            f"grouping completed on tube {tube} but tube {helix.current_tube} is active"
        )
    finished = finished_grouping(state, tube, grouping_size)
    if group_id != finished:
        raise InvalidStateError(
            f"grouping {group_id} is not finished on tube {tube} "
            f"(cursor at position {cursor_of(state, tube)}, last finished: {finished or 'none'})"
        )

    new_state = state.copy_state()
    new_helix = new_state.triple_helix_state
    new_helix.completed_groupings[group_id] = GroupingCompletion(tube=tube, completed_at=now)

    for candidate in rotation_order(tube):
        if not is_exhausted(new_state, candidate):
            if candidate != tube:
                new_helix.current_tube = candidate
                new_helix.rotation_count += 1
                new_helix.last_rotation_time = now
            logger.debug("Rotated tube {} -> {} after {}", tube, candidate, group_id)
            return new_state

    logger.info("All tubes exhausted for {}", state.user_id)
    raise AllTubesExhausted(new_state)


def end_session(state: UserState, tube: int) -> UserState:
    """Close the session on `tube`; a tube without one is left as is."""
    _check_tube(tube)
    helix = state.triple_helix_state
    if helix.active_session_for(tube) is None:
        return state

    new_state = state.copy_state()
    new_helix = new_state.triple_helix_state
    new_helix.active_sessions = [ref for ref in new_helix.active_sessions if ref.tube != tube]
    return new_state

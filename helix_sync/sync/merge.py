"""
Field-group merge of two diverged learner states.

Used when both the local copy and the backend record changed since the
last agreed state (the base):

- progress_metrics: additive counters merge as remote + (local - base),
  longest_streak takes the max, current_streak follows the later writer,
  average_accuracy is recomputed from the merged counters
- stitch_positions and triple_helix_state: last writer wins by updated_at
  (ties go to remote)
- spaced_repetition_state: per content unit, the entry with the more recent
  review wins; last_seen takes the later of the two
"""

from __future__ import annotations

from datetime import datetime, timezone

from loguru import logger

from helix_sync.core.errors import InvalidStateError
from helix_sync.core.state import ProgressMetrics, SpacedRepetitionState, UserState

ADDITIVE_COUNTERS = (
    "total_stitches_completed",
    "total_time_spent",
    "total_questions",
    "total_correct",
    "total_sessions",
)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _written_at(state: UserState) -> datetime:
    return state.updated_at or _EPOCH


def local_wins(local: UserState, remote: UserState) -> bool:
    """True when local is the later writer."""
    return _written_at(local) > _written_at(remote)


def merge_metrics(
    local: ProgressMetrics,
    remote: ProgressMetrics,
    base: ProgressMetrics | None,
    prefer_local: bool,
) -> ProgressMetrics:
    """Merge counters; the result is the same whichever side is called local."""
    base = base or ProgressMetrics()
    merged = ProgressMetrics()
    for name in ADDITIVE_COUNTERS:
        base_value = getattr(base, name)
        local_delta = max(getattr(local, name) - base_value, 0)
        remote_delta = max(getattr(remote, name) - base_value, 0)
        setattr(merged, name, base_value + local_delta + remote_delta)

    merged.current_streak = local.current_streak if prefer_local else remote.current_streak
    merged.longest_streak = max(local.longest_streak, remote.longest_streak, merged.current_streak)
    merged.recompute_accuracy()
    return merged


def _review_key(sr: SpacedRepetitionState, unit_id: str) -> tuple[datetime, datetime]:
    return (
        sr.last_reviewed.get(unit_id, _EPOCH),
        sr.next_review.get(unit_id, _EPOCH),
    )


def merge_schedules(local: SpacedRepetitionState, remote: SpacedRepetitionState) -> SpacedRepetitionState:
    """Per-unit merge keeping the entry that reflects the more recent review."""
    merged = SpacedRepetitionState()
    for unit_id in sorted(local.scheduled_units() | remote.scheduled_units()):
        winner = local if _review_key(local, unit_id) > _review_key(remote, unit_id) else remote
        if unit_id in winner.intervals:
            merged.intervals[unit_id] = winner.intervals[unit_id]
        if unit_id in winner.next_review:
            merged.next_review[unit_id] = winner.next_review[unit_id]
        if unit_id in winner.mastery_levels:
            merged.mastery_levels[unit_id] = winner.mastery_levels[unit_id]
        if unit_id in winner.last_reviewed:
            merged.last_reviewed[unit_id] = winner.last_reviewed[unit_id]

        seen = [s.last_seen[unit_id] for s in (local, remote) if unit_id in s.last_seen]
        if seen:
            merged.last_seen[unit_id] = max(seen)
    return merged


def merge_states(local: UserState, remote: UserState, base: UserState | None) -> UserState:
    """
    Merge diverged local and remote states.

    Args:
        local: This device's state
        remote: The backend record
        base: Last state both sides agreed on (None if never synced)

    Returns:
        Merged state. Version and sync metadata are left for the caller.

    Raises:
        InvalidStateError: If the two states belong to different learners
    """
    if local.user_id != remote.user_id:
        raise InvalidStateError(
            f"cannot merge states of different learners: {local.user_id} / {remote.user_id}"
        )

    prefer_local = local_wins(local, remote)
    positional = local if prefer_local else remote

    merged = remote.copy_state()
    merged.stitch_positions = positional.copy_state().stitch_positions
    merged.triple_helix_state = positional.triple_helix_state.model_copy(deep=True)
    merged.spaced_repetition_state = merge_schedules(
        local.spaced_repetition_state, remote.spaced_repetition_state
    )
    merged.progress_metrics = merge_metrics(
        local.progress_metrics,
        remote.progress_metrics,
        base.progress_metrics if base else None,
        prefer_local,
    )
    stamps = [s.updated_at for s in (local, remote) if s.updated_at]
    merged.updated_at = max(stamps) if stamps else None

    orphans = merged.spaced_repetition_state.scheduled_units() - merged.known_units()
    for unit_id in sorted(orphans):
        logger.warning("Dropping schedule for {}: no longer queued in any tube", unit_id)
        merged.spaced_repetition_state.drop(unit_id)

    logger.debug(
        "Merged {} (positions from {}, {} schedule entries)",
        local.user_id,
        "local" if prefer_local else "remote",
        len(merged.spaced_repetition_state.intervals),
    )
    return merged

"""
Mastery-based Spaced Repetition Scheduler.

Pure functions over UserState: every call returns a new state and leaves
the input untouched. Persistence is the sync engine's job.

Outcomes:
- CORRECT   - mastery +1 (capped), interval grows by the factor for the new level
- INCORRECT - mastery resets to 0, interval resets to the base interval
- SKIPPED   - schedule untouched, only last_seen moves

Growth factors shrink as mastery rises:
  level 1 -> 2.0x, 2 -> 1.8x, 3 -> 1.5x, 4 -> 1.3x, 5 -> 1.2x
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from loguru import logger

from helix_sync.core.errors import InvalidStateError
from helix_sync.core.state import MAX_MASTERY_LEVEL, UserState

DEFAULT_GROWTH_FACTORS = {1: 2.0, 2: 1.8, 3: 1.5, 4: 1.3, 5: 1.2}


class Outcome(str, Enum):
    CORRECT = "correct"
    INCORRECT = "incorrect"
    SKIPPED = "skipped"


@dataclass
class SchedulerConfig:
    """Configuration for the review scheduler."""

    base_interval_days: float = 1.0
    max_level: int = MAX_MASTERY_LEVEL
    growth_factors: dict[int, float] = field(default_factory=lambda: dict(DEFAULT_GROWTH_FACTORS))

    def growth_factor(self, level: int) -> float:
        """Interval multiplier applied when a unit reaches `level`."""
        if level in self.growth_factors:
            return self.growth_factors[level]
        # Levels beyond the table keep the last (smallest) factor
        return self.growth_factors[max(self.growth_factors)]


class ReviewScheduler:
    """
    Applies review outcomes to the spaced-repetition part of a UserState.

    Each content unit has:
    - Mastery level: 0..max_level
    - Interval: days until the next review
    - Next review: timestamp the unit becomes due
    """

    def __init__(self, config: SchedulerConfig | None = None):
        """
        Initialize scheduler.

        Args:
            config: Custom configuration (uses defaults if None)
        """
        self.config = config or SchedulerConfig()

    def record_outcome(
        self,
        state: UserState,
        content_unit_id: str,
        outcome: Outcome,
        now: datetime,
    ) -> UserState:
        """
        Record a review outcome for one content unit.

        Args:
            state: State before the review
            content_unit_id: Unit that was reviewed
            outcome: Correct, Incorrect or Skipped
            now: Time of the review (the event's own timestamp)

        Returns:
            New state with schedule and metrics updated

        Raises:
            InvalidStateError: If the unit is not queued in any tube
        """
        outcome = Outcome(outcome)
        if content_unit_id not in state.known_units():
            raise InvalidStateError(
                f"cannot schedule {content_unit_id}: not present in any tube"
            )

        new_state = state.copy_state()
        sr = new_state.spaced_repetition_state
        metrics = new_state.progress_metrics
        level = sr.mastery_levels.get(content_unit_id, 0)
        interval = sr.intervals.get(content_unit_id, self.config.base_interval_days)

        sr.last_seen[content_unit_id] = now

        if outcome is Outcome.SKIPPED:
            logger.debug("Skipped {} - schedule unchanged", content_unit_id)
            return new_state

        if outcome is Outcome.CORRECT:
            new_level = min(level + 1, self.config.max_level)
            new_interval = interval * self.config.growth_factor(new_level)
            metrics.total_correct += 1
            metrics.current_streak += 1
            metrics.longest_streak = max(metrics.longest_streak, metrics.current_streak)
        else:
            new_level = 0
            new_interval = self.config.base_interval_days
            metrics.current_streak = 0

        metrics.total_questions += 1
        metrics.recompute_accuracy()

        sr.mastery_levels[content_unit_id] = new_level
        sr.intervals[content_unit_id] = new_interval
        sr.next_review[content_unit_id] = now + timedelta(days=new_interval)
        sr.last_reviewed[content_unit_id] = now

        check_mastery_transition(state, new_state, outcome)

        logger.debug(
            "{} on {}: mastery {} -> {}, interval {:.2f}d",
            outcome.value,
            content_unit_id,
            level,
            new_level,
            new_interval,
        )
        return new_state

    def due_items(self, state: UserState, now: datetime) -> list[str]:
        """
        Units whose next review is at or before `now`.

        Ordered earliest-due first, ties broken by unit id.
        """
        schedule = state.spaced_repetition_state.next_review
        due = [(when, unit_id) for unit_id, when in schedule.items() if when <= now]
        return [unit_id for _, unit_id in sorted(due)]


def check_mastery_transition(before: UserState, after: UserState, outcome: Outcome) -> None:
    """Mastery may only drop on an Incorrect outcome."""
    if outcome is Outcome.INCORRECT:
        return
    old_levels = before.spaced_repetition_state.mastery_levels
    for unit_id, level in after.spaced_repetition_state.mastery_levels.items():
        if level < old_levels.get(unit_id, 0):
            raise InvalidStateError(
                f"mastery for {unit_id} decreased from {old_levels[unit_id]} to {level} "
                f"on a {outcome.value} outcome"
            )


_default_scheduler = ReviewScheduler()


def record_outcome(
    state: UserState,
    content_unit_id: str,
    outcome: Outcome,
    now: datetime,
    config: SchedulerConfig | None = None,
) -> UserState:
    """Module-level shortcut for ReviewScheduler.record_outcome."""
    scheduler = ReviewScheduler(config) if config else _default_scheduler
    return scheduler.record_outcome(state, content_unit_id, outcome, now)


def due_items(state: UserState, now: datetime) -> list[str]:
    """Module-level shortcut for ReviewScheduler.due_items."""
    return _default_scheduler.due_items(state, now)

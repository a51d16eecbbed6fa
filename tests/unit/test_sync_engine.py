"""
Tests for the sync engine.

Covers:
- Reconcile decision table
- Compare-and-set conflicts and the single retry
- Transport retry with backoff
- Permanent store errors
"""

from datetime import datetime, timedelta, timezone

import pytest

from helix_sync.core.errors import (
    InvalidStateError,
    PermanentStoreError,
    RemoteRecordMissing,
    SyncFailure,
    TransportError,
    VersionConflict,
)
from helix_sync.core.state import SyncSource, content_equal, create_default
from helix_sync.store.memory import InMemoryRecordStore
from helix_sync.sync.engine import SyncAction, SyncEngine, has_local_progress

T0 = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


def bump(state, at, **metrics):
    """Simulate one local event: new version, new writer time, metric changes."""
    state = state.copy_state()
    state.version += 1
    state.updated_at = at
    state.sync_source = SyncSource.CLIENT
    for name, value in metrics.items():
        setattr(state.progress_metrics, name, value)
    return state


class FlakyStore(InMemoryRecordStore):
    """Fails the first `failures` get() calls with the given error."""

    def __init__(self, failures, error=TransportError("connection reset")):
        super().__init__()
        self.failures = failures
        self.error = error
        self.get_calls = 0

    def get(self, user_id):
        self.get_calls += 1
        if self.get_calls <= self.failures:
            raise self.error
        return super().get(user_id)


class AlwaysConflictingStore(InMemoryRecordStore):
    def compare_and_set(self, user_id, expected_version, new_state):
        raise VersionConflict(user_id, expected_version, expected_version + 1)


# =============================================================================
# has_local_progress
# =============================================================================


class TestHasLocalProgress:
    def test_pristine_seed(self, default_state):
        assert not has_local_progress(default_state, None)

    def test_touched_without_base(self, default_state):
        assert has_local_progress(bump(default_state, T0), None)

    def test_against_base(self, default_state):
        assert not has_local_progress(default_state, default_state)
        assert has_local_progress(bump(default_state, T0), default_state)


# =============================================================================
# Reconcile
# =============================================================================


class TestReconcile:
    """Tests for the pure decision table."""

    def test_create_when_no_record(self, engine, default_state):
        plan = engine.reconcile(default_state, None, None)
        assert plan.action is SyncAction.CREATE
        assert plan.state.version == 1

    def test_missing_record_after_sync(self, engine, default_state):
        with pytest.raises(RemoteRecordMissing):
            engine.reconcile(default_state, None, default_state)

    def test_adopt_newer_remote(self, engine, default_state):
        remote = bump(bump(default_state, T0), T0 + timedelta(minutes=1), total_sessions=2)

        plan = engine.reconcile(default_state, remote, None)

        assert plan.action is SyncAction.ADOPT_REMOTE
        assert plan.state.version == 3
        assert plan.state.progress_metrics.total_sessions == 2

    def test_noop_when_identical(self, engine, default_state):
        synced = bump(default_state, T0)
        plan = engine.reconcile(synced, synced.copy_state(), synced)
        assert plan.action is SyncAction.NOOP

    def test_fast_forward(self, engine, default_state):
        base = bump(default_state, T0)
        local = bump(base, T0 + timedelta(minutes=1), total_stitches_completed=1)

        plan = engine.reconcile(local, base.copy_state(), base)

        assert plan.action is SyncAction.COMMIT
        assert plan.expected_version == 2
        assert plan.state.version == 3
        assert plan.state.sync_source is SyncSource.CLIENT
        assert content_equal(plan.state, local)

    def test_merge_when_both_changed(self, engine, default_state):
        base = bump(default_state, T0, total_stitches_completed=1)
        local = bump(base, T0 + timedelta(minutes=2), total_stitches_completed=3)
        remote = bump(base, T0 + timedelta(minutes=1), total_stitches_completed=2)

        plan = engine.reconcile(local, remote, base)

        assert plan.action is SyncAction.COMMIT
        assert plan.expected_version == 3
        assert plan.state.version == 4
        assert plan.state.sync_source is SyncSource.SYNC_MERGE
        assert plan.state.progress_metrics.total_stitches_completed == 4

    def test_unsynced_local_merges_with_existing_record(self, engine, default_state):
        """A device that started offline must not overwrite another device's record."""
        local = bump(default_state, T0 + timedelta(minutes=1), total_sessions=1)
        remote = bump(default_state, T0, total_sessions=2)

        plan = engine.reconcile(local, remote, None)

        assert plan.action is SyncAction.COMMIT
        assert plan.state.version == 3
        assert plan.state.progress_metrics.total_sessions == 3

    def test_different_learner_rejected(self, engine, default_state):
        with pytest.raises(InvalidStateError, match="belongs to u2"):
            engine.reconcile(default_state, create_default("u2"), None)


# =============================================================================
# Synchronize
# =============================================================================


class TestSynchronize:
    """Tests for the full fetch/reconcile/commit cycle."""

    def test_creates_record(self, engine, memory_store, default_state):
        outcome = engine.synchronize(default_state)

        assert outcome.action is SyncAction.CREATE
        assert outcome.state.last_sync_time == T0
        stored = memory_store.get("u1")
        assert stored.version == 1
        assert stored.last_sync_time == T0

    def test_commits_local_progress(self, engine, memory_store, default_state):
        memory_store.insert(default_state)
        local = bump(default_state, T0, total_stitches_completed=1)

        outcome = engine.synchronize(local, default_state)

        assert outcome.action is SyncAction.COMMIT
        assert outcome.conflicts == 0
        assert memory_store.get("u1").version == 2

    def test_conflict_is_merged_once(self, engine, memory_store, default_state):
        memory_store.insert(default_state)
        local = bump(default_state, T0 + timedelta(minutes=2), total_questions=1, total_correct=1)
        plan = engine.reconcile(local, memory_store.get("u1"), default_state)

        # another device commits first
        other = bump(default_state, T0 + timedelta(minutes=1), total_questions=2)
        memory_store.compare_and_set("u1", 1, other)

        outcome = engine.commit(plan)

        assert outcome.conflicts == 1
        assert outcome.action is SyncAction.COMMIT
        assert outcome.state.version == 3
        stored = memory_store.get("u1")
        assert stored.progress_metrics.total_questions == 3
        assert stored.progress_metrics.total_correct == 1

    def test_second_conflict_gives_up(self, default_state):
        store = AlwaysConflictingStore()
        store.insert(default_state)
        engine = SyncEngine(store, sleep=lambda _: None, clock=lambda: T0)

        with pytest.raises(SyncFailure) as exc_info:
            engine.synchronize(bump(default_state, T0), default_state)

        assert exc_info.value.retryable
        assert isinstance(exc_info.value.cause, VersionConflict)

    def test_create_race_adopts_winner(self, engine, memory_store, default_state):
        plan = engine.reconcile(default_state, None, None)
        memory_store.insert(create_default("u1"))

        outcome = engine.commit(plan)

        assert outcome.conflicts == 1
        assert outcome.action is SyncAction.NOOP
        assert len(memory_store) == 1

    def test_transport_errors_retried_with_backoff(self, default_state, sleeps):
        store = FlakyStore(failures=2)
        engine = SyncEngine(store, max_attempts=3, backoff_seconds=0.5, sleep=sleeps.append, clock=lambda: T0)

        outcome = engine.synchronize(default_state)

        assert outcome.action is SyncAction.CREATE
        assert sleeps == [0.5, 1.0]
        assert store.get_calls == 3

    def test_transport_retries_exhausted(self, default_state, sleeps):
        store = FlakyStore(failures=10)
        engine = SyncEngine(store, max_attempts=3, backoff_seconds=0.5, sleep=sleeps.append, clock=lambda: T0)

        with pytest.raises(SyncFailure) as exc_info:
            engine.synchronize(default_state)

        assert exc_info.value.retryable
        assert isinstance(exc_info.value.cause, TransportError)
        assert sleeps == [0.5, 1.0]
        assert len(store) == 0

    def test_permanent_error_not_retried(self, default_state, sleeps):
        store = FlakyStore(failures=10, error=PermanentStoreError("401 Unauthorized"))
        engine = SyncEngine(store, sleep=sleeps.append, clock=lambda: T0)

        with pytest.raises(SyncFailure) as exc_info:
            engine.synchronize(default_state)

        assert not exc_info.value.retryable
        assert sleeps == []
        assert store.get_calls == 1

    def test_deleted_record_not_recreated(self, engine, memory_store, default_state):
        outcome = engine.synchronize(default_state)
        memory_store.delete("u1")

        with pytest.raises(RemoteRecordMissing):
            engine.synchronize(bump(outcome.state, T0), outcome.state)
        assert len(memory_store) == 0

    def test_rejects_zero_attempts(self, memory_store):
        with pytest.raises(ValueError):
            SyncEngine(memory_store, max_attempts=0)

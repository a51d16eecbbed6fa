"""
Tests for anonymous-to-registered learner migration.
"""

from datetime import datetime, timezone

import pytest

from helix_sync.core.errors import RecordAlreadyExists, RecordNotFoundError
from helix_sync.core.state import SyncSource, create_default
from helix_sync.session.migration import migrate_anonymous_user

T0 = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def anonymous(memory_store):
    state = create_default("anon-42")
    state.version = 6
    state.progress_metrics.total_stitches_completed = 12
    state.triple_helix_state.current_tube = 3
    memory_store.insert(state)
    return state


class TestMigrateAnonymousUser:
    def test_preserves_progress(self, memory_store, anonymous):
        result = migrate_anonymous_user(memory_store, "anon-42", "u1", now=T0)

        stored = memory_store.get("u1")
        assert stored.version == 1
        assert stored.sync_source is SyncSource.MIGRATION
        assert stored.last_sync_time == T0
        assert stored.progress_metrics.total_stitches_completed == 12
        assert stored.triple_helix_state.current_tube == 3
        assert result.preserved
        assert result.state.user_id == "u1"
        assert result.migrated_at == T0

    def test_anonymous_record_left_in_place(self, memory_store, anonymous):
        migrate_anonymous_user(memory_store, "anon-42", "u1", now=T0)
        assert memory_store.get("anon-42").version == 6

    def test_fresh_start(self, memory_store, anonymous):
        result = migrate_anonymous_user(memory_store, "anon-42", "u1", preserve_data=False, now=T0)

        assert not result.preserved
        stored = memory_store.get("u1")
        assert stored.progress_metrics.total_stitches_completed == 0
        assert stored.triple_helix_state.current_tube == 1
        assert stored.sync_source is SyncSource.MIGRATION

    def test_unknown_anonymous_user(self, memory_store):
        with pytest.raises(RecordNotFoundError):
            migrate_anonymous_user(memory_store, "anon-404", "u1", now=T0)

    def test_registered_id_taken(self, memory_store, anonymous):
        memory_store.insert(create_default("u1"))
        with pytest.raises(RecordAlreadyExists):
            migrate_anonymous_user(memory_store, "anon-42", "u1", now=T0)

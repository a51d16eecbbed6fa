"""
Anonymous-to-registered learner migration.

When a learner who started anonymously signs up, their progress moves to
the registered id. The anonymous record is left in place; removing it is
an administrative action.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from loguru import logger

from helix_sync.core.content import ContentConfig
from helix_sync.core.errors import RecordAlreadyExists, RecordNotFoundError
from helix_sync.core.state import SyncSource, UserState, create_default, utcnow, validate
from helix_sync.store.base import RecordStore


@dataclass
class MigrationResult:
    anonymous_id: str
    registered_id: str
    preserved: bool
    state: UserState
    migrated_at: datetime


def migrate_anonymous_user(
    store: RecordStore,
    anonymous_id: str,
    registered_id: str,
    preserve_data: bool = True,
    content: ContentConfig | None = None,
    now: datetime | None = None,
) -> MigrationResult:
    """
    Create the registered learner's record from an anonymous one.

    Args:
        store: Backend record store
        anonymous_id: Id the learner used before registering
        registered_id: New permanent id
        preserve_data: Carry progress over; otherwise start from a fresh seed
        content: Seed content when preserve_data is False
        now: Migration timestamp

    Returns:
        MigrationResult with the newly created state (version 1)

    Raises:
        RecordNotFoundError: No record for anonymous_id
        RecordAlreadyExists: registered_id already has a record
    """
    now = now or utcnow()
    anonymous = store.get(anonymous_id)
    if anonymous is None:
        raise RecordNotFoundError(anonymous_id)
    if store.get(registered_id) is not None:
        raise RecordAlreadyExists(registered_id)

    if preserve_data:
        state = anonymous.copy_state()
        state.user_id = registered_id
    else:
        state = create_default(registered_id, content)

    state.version = 1
    state.sync_source = SyncSource.MIGRATION
    state.last_sync_time = now
    validate(state)

    store.insert(state)

    logger.info(
        "Migrated {} -> {} ({})",
        anonymous_id,
        registered_id,
        "progress preserved" if preserve_data else "fresh start",
    )
    return MigrationResult(
        anonymous_id=anonymous_id,
        registered_id=registered_id,
        preserved=preserve_data,
        state=state,
        migrated_at=now,
    )

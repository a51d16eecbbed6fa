"""
Session Module - the consumer-facing side of the core.

Components:
- manager: SessionManager (initialize, get_state, apply_learning_event, force_sync)
- notifications: observer registry for state-changed / sync-status-changed
- migration: anonymous-to-registered learner migration
"""

from helix_sync.session.manager import SessionManager, SessionNotInitialized
from helix_sync.session.migration import MigrationResult, migrate_anonymous_user
from helix_sync.session.notifications import (
    ChangeSource,
    EventKind,
    NotificationRegistry,
    StateChange,
    SubscriptionHandle,
)

__all__ = [
    "ChangeSource",
    "EventKind",
    "MigrationResult",
    "NotificationRegistry",
    "SessionManager",
    "SessionNotInitialized",
    "StateChange",
    "SubscriptionHandle",
    "migrate_anonymous_user",
]

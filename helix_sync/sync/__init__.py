"""
Sync Module - reconciliation with the backend record.

Components:
- engine: SyncEngine (fetch_remote, reconcile, commit, synchronize)
- merge: field-group merge policy for diverged states
- background: daemon-thread worker and SyncStatus
"""

from helix_sync.sync.background import BackgroundSync, SyncStatus
from helix_sync.sync.engine import SyncAction, SyncEngine, SyncOutcome, SyncPlan
from helix_sync.sync.merge import merge_states

__all__ = [
    "BackgroundSync",
    "SyncAction",
    "SyncEngine",
    "SyncOutcome",
    "SyncPlan",
    "SyncStatus",
    "merge_states",
]

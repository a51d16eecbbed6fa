"""
Record Stores - where learner state is persisted.

Components:
- base: RecordStore protocol (get / insert / compare_and_set / delete)
- memory: thread-safe in-process store
- sql: SQLAlchemy store with state history audit
- http: backend REST API client
- local_cache: offline JSON copy of local state and its sync base
"""

from __future__ import annotations

from helix_sync.store.base import RecordStore
from helix_sync.store.local_cache import CachedState, LocalStateCache
from helix_sync.store.memory import InMemoryRecordStore


def build_record_store(settings) -> RecordStore:
    """Create the adapter selected by settings.store_backend."""
    if settings.store_backend == "memory":
        return InMemoryRecordStore()
    if settings.store_backend == "http":
        from helix_sync.store.http import HttpRecordStore

        return HttpRecordStore(
            settings.api_base_url,
            token=settings.api_token,
            timeout_seconds=settings.api_timeout_seconds,
        )

    from helix_sync.store.sql import SqlRecordStore

    if settings.database_url.startswith("sqlite:///"):
        # Make sure the directory for a file-based SQLite database exists
        from pathlib import Path

        Path(settings.database_url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
    return SqlRecordStore(settings.database_url)


__all__ = [
    "CachedState",
    "InMemoryRecordStore",
    "LocalStateCache",
    "RecordStore",
    "build_record_store",
]
